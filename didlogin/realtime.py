"""
Real-time push to browsers.

A browser waiting on the login page holds a websocket that joins the room
named after its session id. The login listener emits ``loggedin`` to that
room once the wallet's presentation has been accepted.
"""

import asyncio
import logging
from typing import Any, Dict, Protocol, Set

logger = logging.getLogger(__name__)


class Socket(Protocol):
    async def send_json(self, data: Any) -> None: ...


class RoomBroadcaster:
    """Fan-out of named events to the sockets in a room."""

    def __init__(self) -> None:
        self._rooms: Dict[str, Set[Socket]] = {}
        self._lock = asyncio.Lock()

    async def join(self, room: str, socket: Socket) -> None:
        async with self._lock:
            self._rooms.setdefault(room, set()).add(socket)

    async def leave(self, room: str, socket: Socket) -> None:
        async with self._lock:
            members = self._rooms.get(room)
            if members is None:
                return
            members.discard(socket)
            if not members:
                del self._rooms[room]

    def members(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    async def emit(self, room: str, event: str, data: Dict[str, Any]) -> int:
        """
        Send ``{"event": event, "data": data}`` to every socket in ``room``.

        Sockets that fail to receive are removed from the room.

        Returns:
            Number of sockets the event was delivered to.
        """
        async with self._lock:
            sockets = list(self._rooms.get(room, ()))

        delivered = 0
        for socket in sockets:
            try:
                await socket.send_json({"event": event, "data": data})
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping socket from room {room}: {e}")
                await self.leave(room, socket)

        logger.debug(f"Emitted {event} to {delivered} socket(s) in room {room}")
        return delivered
