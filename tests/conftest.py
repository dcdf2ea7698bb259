"""
Shared pytest fixtures for DID login tests.
"""

import pytest

from didlogin import Signer, generate_identity, KeyPair
from didlogin.cache import MemoryDocumentCache
from didlogin.config import Settings
from didlogin.events import EventBus
from didlogin.messages import MessageHandler, MessageStore
from didlogin.nonce import MemoryNonceTracker
from didlogin.realtime import RoomBroadcaster
from didlogin.resolver import DIDResolver
from didlogin.server import Agent
from didlogin.sessions import MemorySessionStore


class FakeSocket:
    """Records everything sent to it, like a connected browser."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise ConnectionError("socket closed")
        self.sent.append(data)


@pytest.fixture
def keypair() -> KeyPair:
    """Generate a fresh wallet keypair for testing."""
    return generate_identity()


@pytest.fixture
def wallet_signer(keypair: KeyPair) -> Signer:
    """Signer acting as the visitor's wallet."""
    return Signer(private_key=keypair.private_key_jwk, did=keypair.did)


@pytest.fixture
def service_keypair() -> KeyPair:
    """Keypair of the service identity."""
    return generate_identity()


@pytest.fixture
def service_signer(service_keypair: KeyPair) -> Signer:
    return Signer(private_key=service_keypair.private_key_jwk, did=service_keypair.did)


@pytest.fixture
def settings(service_keypair: KeyPair) -> Settings:
    return Settings(
        host="http://test",
        port=8080,
        private_key=service_keypair.private_key_jwk,
        did=service_keypair.did,
    )


@pytest.fixture
def memory_cache() -> MemoryDocumentCache:
    """Create a document cache for testing."""
    return MemoryDocumentCache(max_documents=100, default_ttl=60)


@pytest.fixture
def nonce_tracker() -> MemoryNonceTracker:
    """Create a nonce tracker for testing."""
    return MemoryNonceTracker(max_size=1000)


@pytest.fixture
def session_store() -> MemorySessionStore:
    return MemorySessionStore(ttl_seconds=3600)


@pytest.fixture
def broadcaster() -> RoomBroadcaster:
    return RoomBroadcaster()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def message_store() -> MessageStore:
    return MessageStore()


@pytest.fixture
def message_handler(message_store: MessageStore, event_bus: EventBus) -> MessageHandler:
    return MessageHandler(DIDResolver(), message_store, event_bus)


@pytest.fixture
def agent(settings: Settings) -> Agent:
    return Agent(settings)


@pytest.fixture
def make_presentation(wallet_signer: Signer):
    """Build a wallet presentation answering the login request tagged ``tag``."""

    def _make(tag, /, signer: Signer = None, **overrides) -> str:
        signer = signer or wallet_signer
        claims = {
            "tag": tag,
            "vp": {
                "@context": ["https://www.w3.org/2018/credentials/v1"],
                "type": ["VerifiablePresentation"],
                "verifiableCredential": [],
            },
        }
        if tag is None:
            del claims["tag"]
        claims.update(overrides)
        return signer.sign(claims)

    return _make


@pytest.fixture
def socket_factory():
    """Factory for fake browser sockets."""
    return FakeSocket
