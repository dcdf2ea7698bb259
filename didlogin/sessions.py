"""
Session storage.

Sessions are created by the HTTP layer on a visitor's first request and
destroyed on logout. The login listener only looks sessions up and updates
them, always inside ``lock(session_id)`` so the read-modify-write of the
``did`` field is serialized per session.

Supports in-memory and Redis-backed storage.
"""

import json
import time
import asyncio
import logging
import secrets
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, asdict
from typing import AsyncIterator, Dict, Iterable, Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """
    A visitor session.

    Attributes:
        session_id: Opaque identifier, also the login request tag.
        did: Authenticated identity, unset until the wallet responds.
        views: Count of counted page views.
        created_at: Unix timestamp of creation.
        login_expires_at: Expiry of the most recent login request, if any.
    """

    session_id: str
    did: Optional[str] = None
    views: int = 0
    created_at: float = field(default_factory=time.time)
    login_expires_at: Optional[int] = None

    @property
    def authenticated(self) -> bool:
        return bool(self.did)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        return cls(**data)


def new_session_id() -> str:
    return secrets.token_urlsafe(24)


class SessionStoreInterface(ABC):
    """Abstract interface for session storage backends."""

    @abstractmethod
    async def create(self) -> Session:
        """Create and persist a fresh session."""
        pass

    @abstractmethod
    async def get(self, session_id: str) -> Optional[Session]:
        """Get a session. Returns None if unknown or expired."""
        pass

    @abstractmethod
    async def set(self, session: Session) -> None:
        """Persist a session."""
        pass

    @abstractmethod
    async def destroy(self, session_id: str) -> bool:
        """Delete a session. Returns True if it existed."""
        pass

    @abstractmethod
    def lock(self, session_id: str):
        """Async context manager serializing updates to one session."""
        pass

    async def increment_views(self, session_id: str) -> Optional[Session]:
        """Add one to the view counter. Returns the updated session."""
        async with self.lock(session_id):
            session = await self.get(session_id)
            if session is None:
                return None
            session.views += 1
            await self.set(session)
            return session


class MemorySessionStore(SessionStoreInterface):
    """
    In-memory session store for single-instance deployments.

    Expired sessions are purged at most every ``cleanup_interval`` seconds
    when sessions are written. A session lock lives only while some task
    holds it or waits for it.

    Example:
        >>> store = MemorySessionStore(ttl_seconds=3600)
        >>> session = await store.create()
        >>> async with store.lock(session.session_id):
        ...     session = await store.get(session.session_id)
        ...     session.did = "did:key:z6Mk..."
        ...     await store.set(session)
    """

    def __init__(self, ttl_seconds: int = 86400, cleanup_interval: int = 60):
        self._ttl = ttl_seconds
        self._cleanup_interval = cleanup_interval
        self._next_cleanup = time.time() + cleanup_interval
        self._sessions: Dict[str, Session] = {}
        self._expires: Dict[str, float] = {}
        # session id -> (lock, number of tasks holding or awaiting it)
        self._locks: Dict[str, Tuple[asyncio.Lock, int]] = {}

    async def create(self) -> Session:
        session = Session(session_id=new_session_id())
        await self.set(session)
        logger.debug(f"Created session {session.session_id}")
        return session

    async def get(self, session_id: str) -> Optional[Session]:
        session = self._sessions.get(session_id)
        if session is None:
            return None

        if time.time() >= self._expires[session_id]:
            self._drop(session_id)
            return None

        return Session.from_dict(session.to_dict())

    async def set(self, session: Session) -> None:
        now = time.time()
        if now >= self._next_cleanup:
            self._purge(now)
            self._next_cleanup = now + self._cleanup_interval

        self._sessions[session.session_id] = Session.from_dict(session.to_dict())
        self._expires[session.session_id] = now + self._ttl

    async def destroy(self, session_id: str) -> bool:
        existed = session_id in self._sessions
        self._drop(session_id)
        return existed

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[None]:
        lock, users = self._locks.get(session_id, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[session_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[session_id]
            if users > 1:
                self._locks[session_id] = (lock, users - 1)
            else:
                del self._locks[session_id]

    def _drop(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._expires.pop(session_id, None)

    def _purge(self, now: float) -> int:
        expired = [sid for sid, expires_at in self._expires.items() if now >= expires_at]
        for session_id in expired:
            self._drop(session_id)
        if expired:
            logger.debug(f"Purged {len(expired)} expired sessions")
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)


class RedisSessionStore(SessionStoreInterface):
    """
    Redis-backed session store for multi-instance deployments.

    Sessions are stored as JSON with a TTL; ``lock`` uses the client's
    distributed lock so updates are serialized across instances.

    Example:
        >>> import redis.asyncio as redis
        >>> client = redis.Redis(host='localhost', port=6379)
        >>> store = RedisSessionStore(client)
    """

    def __init__(
        self,
        redis_client,
        key_prefix: str = "didlogin:session:",
        ttl_seconds: int = 86400,
        lock_timeout: int = 10,
    ):
        """
        Initialize Redis session store.

        Args:
            redis_client: An async Redis client (redis.asyncio.Redis).
            key_prefix: Prefix for session keys.
            ttl_seconds: Session lifetime, refreshed on every write.
            lock_timeout: Seconds before an abandoned lock is released.
        """
        self._redis = redis_client
        self._prefix = key_prefix
        self._ttl = ttl_seconds
        self._lock_timeout = lock_timeout

    def _key(self, session_id: str) -> str:
        return f"{self._prefix}{session_id}"

    async def create(self) -> Session:
        session = Session(session_id=new_session_id())
        await self.set(session)
        return session

    async def get(self, session_id: str) -> Optional[Session]:
        value = await self._redis.get(self._key(session_id))
        if not value:
            return None
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return Session.from_dict(json.loads(value))

    async def set(self, session: Session) -> None:
        await self._redis.setex(
            self._key(session.session_id), self._ttl, json.dumps(session.to_dict())
        )

    async def destroy(self, session_id: str) -> bool:
        return await self._redis.delete(self._key(session_id)) > 0

    def lock(self, session_id: str):
        return self._redis.lock(f"{self._key(session_id)}:lock", timeout=self._lock_timeout)


class SessionMiddleware(BaseHTTPMiddleware):
    """
    Binds a session to every HTTP request through a cookie.

    A session is created on the first request that carries no valid cookie.
    Requests to ``exempt_paths`` (endpoints wallets and crawlers call) never
    create sessions. The session id is exposed as ``request.state.session_id``.
    """

    def __init__(
        self,
        app,
        store: SessionStoreInterface,
        cookie_name: str = "didlogin_sid",
        max_age: int = 86400,
        exempt_paths: Iterable[str] = (),
    ):
        super().__init__(app)
        self.store = store
        self.cookie_name = cookie_name
        self.max_age = max_age
        self.exempt_paths = frozenset(exempt_paths)

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        session_id = request.cookies.get(self.cookie_name)
        created = False
        if not session_id or await self.store.get(session_id) is None:
            session = await self.store.create()
            session_id = session.session_id
            created = True

        request.state.session_id = session_id
        response = await call_next(request)

        if created:
            response.set_cookie(
                self.cookie_name,
                session_id,
                max_age=self.max_age,
                httponly=True,
                samesite="lax",
            )
        return response
