"""
Cache of resolved DID documents.

Remote did:web documents are fetched over HTTPS. Keeping them for a while
keeps message validation off the network for wallets that reply repeatedly.
"""

import time
import asyncio
import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

Document = Dict[str, Any]


class DocumentCache(ABC):
    """Where the resolver keeps DID documents between lookups."""

    @abstractmethod
    async def get(self, did: str) -> Optional[Document]:
        """The cached document for ``did``, or None if absent or stale."""

    @abstractmethod
    async def put(self, did: str, document: Document, ttl: Optional[int] = None) -> None:
        pass


class MemoryDocumentCache(DocumentCache):
    """
    Bounded in-process document cache.

    The least recently resolved DID is dropped when the cache is full.

    Example:
        >>> cache = MemoryDocumentCache(max_documents=500, default_ttl=600)
        >>> await cache.put("did:web:wallet.example", {"id": "did:web:wallet.example"})
        >>> doc = await cache.get("did:web:wallet.example")
    """

    def __init__(self, max_documents: int = 1000, default_ttl: int = 300):
        if max_documents <= 0:
            raise ValueError("max_documents must be positive")

        self._documents: "OrderedDict[str, Tuple[float, Document]]" = OrderedDict()
        self._max_documents = max_documents
        self._default_ttl = default_ttl
        self._lock = asyncio.Lock()

    async def get(self, did: str) -> Optional[Document]:
        async with self._lock:
            entry = self._documents.get(did)
            if entry is None or time.time() >= entry[0]:
                self._documents.pop(did, None)
                return None

            self._documents.move_to_end(did)
            return dict(entry[1])

    async def put(self, did: str, document: Document, ttl: Optional[int] = None) -> None:
        expires_at = time.time() + (self._default_ttl if ttl is None else ttl)
        async with self._lock:
            self._documents.pop(did, None)
            while len(self._documents) >= self._max_documents:
                evicted, _ = self._documents.popitem(last=False)
                logger.debug(f"Evicted DID document {evicted}")
            self._documents[did] = (expires_at, dict(document))
