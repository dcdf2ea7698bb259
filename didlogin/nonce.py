"""
Replay protection for wallet messages.

Every signed message carries a ``jti``. Once a message has been accepted its
``jti`` is remembered until the message itself expires, so the same signed
presentation cannot log in a second time.
"""

import time
import asyncio
import logging
from collections import OrderedDict

logger = logging.getLogger(__name__)


class MemoryNonceTracker:
    """
    Remembers accepted message ids in process memory.

    When ``max_size`` ids are tracked the oldest one is forgotten first.
    Expired ids are purged at most every ``cleanup_interval`` seconds.

    Example:
        >>> tracker = MemoryNonceTracker()
        >>> if not await tracker.check_and_mark(claims["jti"], claims["exp"]):
        ...     raise ValidationError("Replayed message")
    """

    def __init__(self, max_size: int = 100000, cleanup_interval: int = 60):
        self._seen: "OrderedDict[str, float]" = OrderedDict()
        self._max_size = max_size
        self._cleanup_interval = cleanup_interval
        self._next_cleanup = time.time() + cleanup_interval
        self._lock = asyncio.Lock()

    async def check_and_mark(self, jti: str, expires_at: float) -> bool:
        """
        Accept ``jti`` unless it was seen before.

        Returns:
            False for a replay, True if the id was fresh and is now remembered.
        """
        async with self._lock:
            now = time.time()
            if self._seen_recently(jti, now):
                return False
            self._remember(jti, expires_at, now)
            return True

    def _seen_recently(self, jti: str, now: float) -> bool:
        expires_at = self._seen.get(jti)
        if expires_at is None:
            return False
        if now >= expires_at:
            del self._seen[jti]
            return False
        return True

    def _remember(self, jti: str, expires_at: float, now: float) -> None:
        if now >= self._next_cleanup:
            self._purge(now)
            self._next_cleanup = now + self._cleanup_interval

        self._seen.pop(jti, None)
        while len(self._seen) >= self._max_size:
            self._seen.popitem(last=False)

        self._seen[jti] = float(expires_at)

    def _purge(self, now: float) -> None:
        expired = [jti for jti, expires_at in self._seen.items() if now >= expires_at]
        for jti in expired:
            del self._seen[jti]
        if expired:
            logger.debug(f"Forgot {len(expired)} expired message ids")
