"""
Unit tests for the login listener and the access guard.
"""

import asyncio
import time

import pytest

from didlogin.auth import AccessGuard, Allow, LoginListener, Redirect, LOGGED_IN_EVENT
from didlogin.errors import ConfigurationError
from didlogin.events import MessageSaved
from didlogin.messages import Message, MessageType
from didlogin.sessions import MemorySessionStore


class SlowSessionStore(MemorySessionStore):
    """Session store that yields to the event loop on every access."""

    async def get(self, session_id):
        await asyncio.sleep(0)
        return await super().get(session_id)

    async def set(self, session):
        await asyncio.sleep(0)
        await super().set(session)


def saved(thread_id, sender="did:example:abc", type=MessageType.VP) -> MessageSaved:
    message = Message(
        id=f"msg-{sender}-{thread_id}",
        raw="",
        type=type,
        sender=sender,
        data={},
        thread_id=thread_id,
    )
    return MessageSaved(message=message)


@pytest.fixture
def listener(session_store, broadcaster):
    return LoginListener(session_store, broadcaster)


class TestLoginListener:
    """Tests for the Unauthenticated -> Authenticated transition."""

    @pytest.mark.asyncio
    async def test_matching_presentation_authenticates(self, listener, session_store, broadcaster, socket_factory):
        """A VP whose thread id is the session id sets the DID and notifies the room."""
        session = await session_store.create()
        socket = socket_factory()
        await broadcaster.join(session.session_id, socket)

        assert await listener.on_message_saved(saved(session.session_id)) is True

        assert (await session_store.get(session.session_id)).did == "did:example:abc"
        assert socket.sent == [{"event": LOGGED_IN_EVENT, "data": {"did": "did:example:abc"}}]

    @pytest.mark.asyncio
    async def test_other_thread_leaves_session_unchanged(self, listener, session_store):
        """A VP for another thread does not touch the session."""
        session = await session_store.create()

        assert await listener.on_message_saved(saved("someone-else")) is False
        assert await session_store.get(session.session_id) == session

    @pytest.mark.asyncio
    async def test_unknown_thread_is_ignored(self, listener, broadcaster, socket_factory):
        """Unknown thread ids change nothing, emit nothing and raise nothing."""
        socket = socket_factory()
        await broadcaster.join("sess-gone", socket)

        assert await listener.on_message_saved(saved("sess-gone")) is False
        assert socket.sent == []

    @pytest.mark.asyncio
    async def test_unknown_threads_leave_no_locks(self, listener, session_store):
        """Presentations for made-up thread ids do not grow the store."""
        for i in range(100):
            await listener.on_message_saved(saved(f"made-up-{i}"))

        assert session_store._locks == {}
        assert len(session_store) == 0

    @pytest.mark.asyncio
    async def test_non_presentation_is_ignored(self, listener, session_store):
        session = await session_store.create()
        event = saved(session.session_id, type=MessageType.VC)

        assert await listener.on_message_saved(event) is False
        assert (await session_store.get(session.session_id)).did is None

    @pytest.mark.asyncio
    async def test_missing_thread_is_ignored(self, listener, session_store):
        await session_store.create()
        assert await listener.on_message_saved(saved(None)) is False

    @pytest.mark.asyncio
    async def test_authenticated_session_not_overwritten(self, listener, session_store, broadcaster, socket_factory):
        """A second presentation cannot replace the DID of an authenticated session."""
        session = await session_store.create()
        socket = socket_factory()
        await broadcaster.join(session.session_id, socket)

        await listener.on_message_saved(saved(session.session_id, sender="did:example:first"))
        assert await listener.on_message_saved(saved(session.session_id, sender="did:example:second")) is False

        assert (await session_store.get(session.session_id)).did == "did:example:first"
        assert len(socket.sent) == 1

    @pytest.mark.asyncio
    async def test_expired_login_request(self, listener, session_store):
        """Responses to an expired login request do not authenticate."""
        session = await session_store.create()
        session.login_expires_at = int(time.time()) - 1
        await session_store.set(session)

        assert await listener.on_message_saved(saved(session.session_id)) is False
        assert (await session_store.get(session.session_id)).did is None

    @pytest.mark.asyncio
    async def test_concurrent_presentations(self, broadcaster, socket_factory):
        """Two concurrent VPs for one session produce exactly one transition."""
        store = SlowSessionStore()
        listener = LoginListener(store, broadcaster)
        session = await store.create()
        socket = socket_factory()
        await broadcaster.join(session.session_id, socket)

        results = await asyncio.gather(
            listener.on_message_saved(saved(session.session_id, sender="did:example:one")),
            listener.on_message_saved(saved(session.session_id, sender="did:example:two")),
        )

        assert sorted(results) == [False, True]
        final = await store.get(session.session_id)
        assert final.did in ("did:example:one", "did:example:two")
        assert socket.sent == [{"event": LOGGED_IN_EVENT, "data": {"did": final.did}}]


class TestAccessGuard:
    """Tests for AccessGuard.check()."""

    @pytest.mark.asyncio
    async def test_authenticated_allowed(self, session_store):
        session = await session_store.create()
        session.did = "did:example:abc"
        await session_store.set(session)

        decision = await AccessGuard(session_store).check(session.session_id)

        assert isinstance(decision, Allow)
        assert decision.session.did == "did:example:abc"

    @pytest.mark.asyncio
    async def test_anonymous_redirected(self, session_store):
        session = await session_store.create()
        decision = await AccessGuard(session_store).check(session.session_id)
        assert decision == Redirect("/login")

    @pytest.mark.asyncio
    async def test_unknown_session_redirected(self, session_store):
        assert await AccessGuard(session_store).check("unknown") == Redirect("/login")

    @pytest.mark.asyncio
    async def test_custom_login_route(self, session_store):
        guard = AccessGuard(session_store, login_route="/signin")
        assert await guard.check("unknown") == Redirect("/signin")

    @pytest.mark.asyncio
    async def test_no_session_store(self):
        """Missing session mechanism is a configuration error."""
        with pytest.raises(ConfigurationError, match="Session not configured"):
            await AccessGuard(None).check("sess-1")

    @pytest.mark.asyncio
    async def test_no_session_id(self, session_store):
        with pytest.raises(ConfigurationError):
            await AccessGuard(session_store).check(None)
