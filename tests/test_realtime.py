"""
Unit tests for room broadcasting.
"""

import pytest


class TestRoomBroadcaster:
    """Tests for RoomBroadcaster."""

    @pytest.mark.asyncio
    async def test_emit_to_room_only(self, broadcaster, socket_factory):
        """Events reach the sockets of one room only."""
        mine, other = socket_factory(), socket_factory()
        await broadcaster.join("sess-1", mine)
        await broadcaster.join("sess-2", other)

        delivered = await broadcaster.emit("sess-1", "loggedin", {"did": "did:example:abc"})

        assert delivered == 1
        assert mine.sent == [{"event": "loggedin", "data": {"did": "did:example:abc"}}]
        assert other.sent == []

    @pytest.mark.asyncio
    async def test_emit_to_empty_room(self, broadcaster):
        assert await broadcaster.emit("nobody", "loggedin", {}) == 0

    @pytest.mark.asyncio
    async def test_failed_socket_dropped(self, broadcaster, socket_factory):
        """Sockets that fail to receive leave the room."""
        good, bad = socket_factory(), socket_factory(fail=True)
        await broadcaster.join("sess-1", good)
        await broadcaster.join("sess-1", bad)

        assert await broadcaster.emit("sess-1", "loggedin", {}) == 1
        assert broadcaster.members("sess-1") == 1

    @pytest.mark.asyncio
    async def test_leave(self, broadcaster, socket_factory):
        socket = socket_factory()
        await broadcaster.join("sess-1", socket)
        await broadcaster.leave("sess-1", socket)

        assert broadcaster.members("sess-1") == 0
        assert await broadcaster.emit("sess-1", "loggedin", {}) == 0
