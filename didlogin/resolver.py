"""
DID Resolution

Resolves the DIDs that appear on inbound messages to DID Documents.

Supported methods:
    did:key  - decoded locally, no network access
    did:web  - fetched from the domain, cached
    anything registered with ``DIDResolver.register`` (the service's own identity)

Usage:
    resolver = DIDResolver()
    doc = await resolver.resolve("did:web:wallet.example")
    public_key = doc.get_public_key_jwk()
"""

from __future__ import annotations

import json
import logging
import urllib.parse
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx

from didlogin.cache import DocumentCache, MemoryDocumentCache
from didlogin.keys import public_jwk_from_did_key

logger = logging.getLogger(__name__)

DID_CONTEXT = "https://www.w3.org/ns/did/v1"


@dataclass
class VerificationMethod:
    """A verification method from a DID Document."""

    id: str
    type: str
    controller: str
    public_key_jwk: Optional[dict] = None


@dataclass
class ServiceEndpoint:
    """A service entry from a DID Document."""

    id: str
    type: str
    service_endpoint: str
    description: Optional[str] = None


@dataclass
class DIDDocument:
    """Parsed DID Document."""

    id: str
    verification_methods: List[VerificationMethod] = field(default_factory=list)
    authentication: List[str] = field(default_factory=list)
    assertion_method: List[str] = field(default_factory=list)
    services: List[ServiceEndpoint] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: dict) -> "DIDDocument":
        """Parse a DID Document from JSON."""
        methods = [
            VerificationMethod(
                id=vm.get("id", ""),
                type=vm.get("type", ""),
                controller=vm.get("controller", ""),
                public_key_jwk=vm.get("publicKeyJwk"),
            )
            for vm in data.get("verificationMethod", [])
        ]
        services = [
            ServiceEndpoint(
                id=svc.get("id", ""),
                type=svc.get("type", ""),
                service_endpoint=svc.get("serviceEndpoint", ""),
                description=svc.get("description"),
            )
            for svc in data.get("service", [])
        ]

        return cls(
            id=data.get("id", ""),
            verification_methods=methods,
            authentication=data.get("authentication", []),
            assertion_method=data.get("assertionMethod", []),
            services=services,
        )

    @classmethod
    def for_public_key(cls, did: str, public_key_jwk: str) -> "DIDDocument":
        """Build a single-key document controlled by ``did``."""
        key_id = f"{did}#controller"
        return cls(
            id=did,
            verification_methods=[
                VerificationMethod(
                    id=key_id,
                    type="JsonWebKey2020",
                    controller=did,
                    public_key_jwk=json.loads(public_key_jwk),
                )
            ],
            authentication=[key_id],
            assertion_method=[key_id],
        )

    def to_json(self) -> dict:
        """Serialize to the W3C JSON representation."""
        data = {
            "@context": [DID_CONTEXT],
            "id": self.id,
            "verificationMethod": [
                {
                    "id": vm.id,
                    "type": vm.type,
                    "controller": vm.controller,
                    "publicKeyJwk": vm.public_key_jwk,
                }
                for vm in self.verification_methods
            ],
            "authentication": list(self.authentication),
            "assertionMethod": list(self.assertion_method),
        }
        if self.services:
            entries = []
            for svc in self.services:
                entry = {"id": svc.id, "type": svc.type, "serviceEndpoint": svc.service_endpoint}
                if svc.description:
                    entry["description"] = svc.description
                entries.append(entry)
            data["service"] = entries
        return data

    def get_public_key_jwk(self, key_id: Optional[str] = None) -> Optional[dict]:
        """
        Get a public key JWK from the document.

        Args:
            key_id: Optional specific key ID to find. If None, returns first available.

        Returns:
            JWK dict or None if not found.
        """
        for vm in self.verification_methods:
            if key_id and vm.id != key_id:
                continue
            if vm.public_key_jwk:
                return vm.public_key_jwk
        return None

    def get_service(self, service_type: str) -> Optional[ServiceEndpoint]:
        """Return the first service entry of the given type."""
        for svc in self.services:
            if svc.type == service_type:
                return svc
        return None


def did_web_to_url(did: str) -> str:
    """
    Convert a did:web identifier to a URL.

    Examples:
        did:web:example.com → https://example.com/.well-known/did.json
        did:web:example.com:user:alice → https://example.com/user/alice/did.json
        did:web:example.com%3A8080 → https://example.com:8080/.well-known/did.json

    Raises:
        ValueError: If the DID is not a valid did:web identifier
    """
    if not did.startswith("did:web:"):
        raise ValueError(f"Not a did:web identifier: {did}")

    parts = did[8:].split(":")
    domain = urllib.parse.unquote(parts[0])
    if not domain:
        raise ValueError(f"Not a did:web identifier: {did}")

    path_segments = parts[1:]
    if path_segments:
        path = "/" + "/".join(path_segments) + "/did.json"
    else:
        path = "/.well-known/did.json"

    return f"https://{domain}{path}"


class DIDResolver:
    """
    Resolves DIDs to documents with caching of remote lookups.

    Example:
        >>> resolver = DIDResolver(cache=MemoryDocumentCache(default_ttl=600))
        >>> doc = await resolver.resolve("did:key:z6Mk...")
    """

    def __init__(
        self,
        cache: Optional[DocumentCache] = None,
        http_timeout: float = 10.0,
        cache_ttl: int = 300,
    ):
        self._cache = cache or MemoryDocumentCache()
        self._http_timeout = http_timeout
        self._cache_ttl = cache_ttl
        self._registered: Dict[str, DIDDocument] = {}

    def register(self, document: DIDDocument) -> None:
        """Make a locally controlled document resolvable without network access."""
        self._registered[document.id] = document
        logger.debug(f"Registered DID document: {document.id}")

    async def resolve(self, did: str) -> DIDDocument:
        """
        Resolve a DID to its document.

        Raises:
            ValueError: If the DID method is unsupported or the DID is malformed.
            httpx.HTTPError: If a did:web document cannot be fetched.
        """
        if did in self._registered:
            return self._registered[did]

        if did.startswith("did:key:"):
            return DIDDocument.for_public_key(did, public_jwk_from_did_key(did))

        if did.startswith("did:web:"):
            return await self._resolve_did_web(did)

        raise ValueError(f"Unsupported DID method: {did}")

    async def public_key_jwk(self, did: str) -> str:
        """Return the first public key of ``did`` as a JWK JSON string."""
        doc = await self.resolve(did)
        key = doc.get_public_key_jwk()
        if not key:
            raise ValueError(f"No public key found for {did}")
        return json.dumps(key)

    async def _resolve_did_web(self, did: str) -> DIDDocument:
        cached = await self._cache.get(did)
        if cached is not None:
            return DIDDocument.from_json(cached)

        url = did_web_to_url(did)
        async with httpx.AsyncClient(timeout=self._http_timeout) as client:
            response = await client.get(
                url,
                headers={"Accept": "application/did+json, application/json"},
            )
            response.raise_for_status()
            data = response.json()

        logger.info(f"Resolved {did} from {url}")
        await self._cache.put(did, data, ttl=self._cache_ttl)
        return DIDDocument.from_json(data)
