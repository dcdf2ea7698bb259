"""
Session authentication.

``LoginListener`` is the state machine that turns a pending session into an
authenticated one when the wallet's presentation arrives:

    Unauthenticated --(VP with thread id == session id)--> Authenticated

There is no reverse transition; logout destroys the session record.
``AccessGuard`` decides whether a request may see a protected view.
"""

import time
import logging
from dataclasses import dataclass
from typing import Optional, Union

from didlogin.errors import ConfigurationError
from didlogin.events import MessageSaved
from didlogin.messages import MessageType
from didlogin.realtime import RoomBroadcaster
from didlogin.sessions import Session, SessionStoreInterface

logger = logging.getLogger(__name__)

LOGGED_IN_EVENT = "loggedin"


class LoginListener:
    """
    Subscribes to saved messages and authenticates matching sessions.

    Example:
        >>> listener = LoginListener(sessions, broadcaster)
        >>> events.subscribe(EventType.SAVED_MESSAGE, listener.on_message_saved)
    """

    def __init__(self, sessions: SessionStoreInterface, broadcaster: RoomBroadcaster):
        self._sessions = sessions
        self._broadcaster = broadcaster

    async def on_message_saved(self, event: MessageSaved) -> bool:
        """
        Handle one saved message.

        Returns:
            True if a session transitioned to authenticated.
        """
        message = event.message
        if message.type != MessageType.VP or not message.thread_id:
            return False

        session_id = message.thread_id
        did = message.sender

        async with self._sessions.lock(session_id):
            session = await self._sessions.get(session_id)

            if session is None:
                logger.info(f"No pending session for thread {session_id}, ignoring message {message.id}")
                return False

            if session.authenticated:
                logger.warning(
                    f"Session {session_id} already authenticated as {session.did}, "
                    f"ignoring presentation from {did}"
                )
                return False

            if session.login_expires_at is not None and time.time() > session.login_expires_at:
                logger.info(f"Login request for session {session_id} expired, ignoring message {message.id}")
                return False

            session.did = did
            await self._sessions.set(session)

        logger.info(f"Session {session_id} authenticated as {did}")
        await self._broadcaster.emit(session_id, LOGGED_IN_EVENT, {"did": did})
        return True


@dataclass(frozen=True)
class Allow:
    session: Session


@dataclass(frozen=True)
class Redirect:
    target: str


GuardDecision = Union[Allow, Redirect]


class AccessGuard:
    """
    Gate in front of protected views.

    Example:
        >>> guard = AccessGuard(sessions)
        >>> decision = await guard.check(request.state.session_id)
        >>> if isinstance(decision, Redirect):
        ...     return RedirectResponse(decision.target)
    """

    def __init__(self, sessions: Optional[SessionStoreInterface], login_route: str = "/login"):
        self._sessions = sessions
        self.login_route = login_route

    async def check(self, session_id: Optional[str]) -> GuardDecision:
        """
        Allow iff the session exists and carries a DID.

        Raises:
            ConfigurationError: If no session mechanism is configured.
        """
        if self._sessions is None or session_id is None:
            raise ConfigurationError("Session not configured")

        session = await self._sessions.get(session_id)
        if session is None or not session.authenticated:
            return Redirect(self.login_route)
        return Allow(session)
