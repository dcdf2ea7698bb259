"""
DID Login Web Service

Wires the login handshake to HTTP:

    GET  /login            - Sign a login request (SDR) tagged with the session id
    POST /handle-message   - Wallet replies land here (any content type)
    WS   /socket           - Browser waits here for the ``loggedin`` event
    GET  /home, /history   - Protected views (redirect to /login when anonymous)
    GET  /credential       - Issue a VP with credentials to the logged-in DID
    GET  /about            - Link to the public profile
    GET  /public-profile   - Signed VC describing this service
    GET  /logout           - Destroy the session
    GET  /.well-known/did.json - The service's DID document

Usage:
    from didlogin.config import load_settings
    from didlogin.server import create_app

    app = create_app(load_settings())
    # uvicorn didlogin.server:app --factory ... or `didlogin serve`
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse, RedirectResponse
from pydantic import BaseModel

from didlogin import __version__
from didlogin.actions import ActionHandler, SignCredential, SignPresentation
from didlogin.auth import AccessGuard, LoginListener, Redirect
from didlogin.config import MESSAGING_PATH, Settings
from didlogin.errors import ConfigurationError, SigningError, ValidationError
from didlogin.events import EventBus, EventType
from didlogin.identity import ServiceIdentity, load_identity, publish_service_endpoint
from didlogin.issuer import LoginRequestIssuer, SignedRequest, login_url
from didlogin.messages import MessageHandler, MessageStore
from didlogin.realtime import RoomBroadcaster
from didlogin.resolver import DIDResolver
from didlogin.sessions import (
    MemorySessionStore,
    Session,
    SessionMiddleware,
    SessionStoreInterface,
)

logger = logging.getLogger(__name__)

PUBLIC_PROFILE = {
    "name": "DID Login Demo",
    "description": "Demo application",
    "profileImage": "https://i.imgur.com/IMn3dIg.png",
}

DEMO_KYC_ID = "123XZY"


# =============================================================================
# Pydantic Models
# =============================================================================


class MessageIdResponse(BaseModel):
    """Result of an accepted wallet message."""

    id: str


class ProfileResponse(BaseModel):
    """Protected view of the logged-in identity."""

    did: str
    views: int
    name: Optional[str] = None


class HistoryResponse(ProfileResponse):
    """Messages the logged-in identity has sent."""

    messages: List[Dict[str, Any]]


class LinkResponse(BaseModel):
    """A page offering a deep link (login request, credentials, profile)."""

    views: int
    url: str
    expires_at: Optional[int] = None


# =============================================================================
# Agent
# =============================================================================


class Agent:
    """
    Explicitly constructed set of collaborators behind the HTTP routes.

    Nothing here is process-global: every app gets its own agent, and tests
    build one with whatever stores they need.
    """

    def __init__(
        self,
        settings: Settings,
        identity: Optional[ServiceIdentity] = None,
        sessions: Optional[SessionStoreInterface] = None,
        resolver: Optional[DIDResolver] = None,
        store: Optional[MessageStore] = None,
        events: Optional[EventBus] = None,
        broadcaster: Optional[RoomBroadcaster] = None,
    ):
        self.settings = settings
        self.identity = identity or load_identity(settings)
        self.sessions = sessions or MemorySessionStore(ttl_seconds=settings.session_ttl_seconds)
        self.resolver = resolver or DIDResolver()
        self.store = store or MessageStore()
        self.events = events or EventBus()
        self.broadcaster = broadcaster or RoomBroadcaster()

        self.actions = ActionHandler(self.identity.signer)
        self.issuer = LoginRequestIssuer(
            self.actions,
            validity_seconds=settings.sdr_validity_seconds,
            reply_url=settings.messaging_endpoint,
        )
        self.messages = MessageHandler(self.resolver, self.store, self.events)
        self.listener = LoginListener(self.sessions, self.broadcaster)
        self.guard = AccessGuard(self.sessions)
        self._started = False

    async def start(self) -> None:
        """
        Publish the messaging endpoint and start listening for messages.

        Raises:
            ServiceEndpointPublicationError: If the endpoint cannot be published.
        """
        if self._started:
            return
        self.resolver.register(self.identity.document)
        publish_service_endpoint(self.identity, self.settings.messaging_endpoint, self.resolver)
        self.events.subscribe(EventType.SAVED_MESSAGE, self.listener.on_message_saved)
        self._started = True
        logger.info(f"Messaging service endpoint {self.settings.messaging_endpoint}")

    async def stop(self) -> None:
        """Stop listening and wait for in-flight event handlers."""
        if not self._started:
            return
        self.events.unsubscribe(EventType.SAVED_MESSAGE, self.listener.on_message_saved)
        await self.events.drain()
        self._started = False

    async def begin_login(self, session_id: str) -> SignedRequest:
        """Issue a login request for a session and remember its expiry."""
        request = self.issuer.issue_login_request(session_id)
        async with self.sessions.lock(session_id):
            session = await self.sessions.get(session_id)
            if session is not None:
                session.login_expires_at = request.expires_at
                await self.sessions.set(session)
        return request

    async def issue_credentials(self, did: str) -> str:
        """Sign a name and a KYC credential for ``did`` and present them to it."""
        name = await self.store.short_id(did)
        name_jwt = self.actions.handle_action(
            SignCredential(subject=did, credential_subject={"name": name})
        )
        kyc_jwt = self.actions.handle_action(
            SignCredential(subject=did, credential_subject={"kycId": DEMO_KYC_ID})
        )
        return self.actions.handle_action(
            SignPresentation(audience=did, credentials=[name_jwt, kyc_jwt])
        )

    def public_profile(self) -> str:
        return self.actions.handle_action(
            SignCredential(subject=self.identity.did, credential_subject=PUBLIC_PROFILE)
        )


class LoginRequired(Exception):
    """Raised by the access guard dependency to redirect anonymous visitors."""

    def __init__(self, target: str):
        super().__init__(target)
        self.target = target


# =============================================================================
# FastAPI Application
# =============================================================================


def create_app(settings: Settings, agent: Optional[Agent] = None) -> FastAPI:
    """Build the web application around an agent."""
    agent = agent or Agent(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await agent.start()
        yield
        await agent.stop()

    app = FastAPI(
        title="DID Login",
        description="Session login through DID wallets and verifiable presentations",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.agent = agent

    app.add_middleware(
        SessionMiddleware,
        store=agent.sessions,
        cookie_name=settings.session_cookie,
        max_age=settings.session_ttl_seconds,
        exempt_paths=(MESSAGING_PATH, "/public-profile", "/.well-known/did.json"),
    )

    # -------------------------------------------------------------------------
    # Error handling
    # -------------------------------------------------------------------------

    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError):
        logger.info(f"Rejected message: {exc}")
        return PlainTextResponse(str(exc), status_code=400)

    @app.exception_handler(SigningError)
    async def signing_error(request: Request, exc: SigningError):
        logger.error(f"Signing failed: {exc}")
        return PlainTextResponse(str(exc), status_code=500)

    @app.exception_handler(LoginRequired)
    async def login_required(request: Request, exc: LoginRequired):
        return RedirectResponse(exc.target, status_code=302)

    # -------------------------------------------------------------------------
    # Dependencies
    # -------------------------------------------------------------------------

    def current_session_id(request: Request) -> str:
        session_id = getattr(request.state, "session_id", None)
        if session_id is None:
            raise ConfigurationError("Session not configured")
        return session_id

    async def counted_session(session_id: str = Depends(current_session_id)) -> Session:
        # Counting views to show that the session is working
        session = await agent.sessions.increment_views(session_id)
        if session is None:
            raise LoginRequired(agent.guard.login_route)
        return session

    async def authenticated_session(session: Session = Depends(counted_session)) -> Session:
        decision = await agent.guard.check(session.session_id)
        if isinstance(decision, Redirect):
            raise LoginRequired(decision.target)
        return decision.session

    # -------------------------------------------------------------------------
    # Endpoints
    # -------------------------------------------------------------------------

    @app.post(MESSAGING_PATH, response_model=MessageIdResponse)
    async def handle_message(request: Request):
        """Accept a wallet message of any content type."""
        message = await agent.messages.handle_message(await request.body())
        return MessageIdResponse(id=message.id)

    @app.get("/")
    async def index(session: Session = Depends(authenticated_session)):
        return RedirectResponse("/home", status_code=302)

    @app.get("/home", response_model=ProfileResponse)
    async def home(session: Session = Depends(authenticated_session)):
        name = await agent.store.short_id(session.did)
        return ProfileResponse(did=session.did, views=session.views, name=name)

    @app.get("/history", response_model=HistoryResponse)
    async def history(session: Session = Depends(authenticated_session)):
        name = await agent.store.short_id(session.did)
        messages = await agent.store.find_messages(sender=session.did)
        return HistoryResponse(
            did=session.did,
            views=session.views,
            name=name,
            messages=[m.to_dict() for m in messages],
        )

    @app.get("/login", response_model=LinkResponse)
    async def login(session: Session = Depends(counted_session)):
        request = await agent.begin_login(session.session_id)
        return LinkResponse(
            views=session.views,
            url=login_url(settings.host, request.token),
            expires_at=request.expires_at,
        )

    @app.get("/credential", response_model=LinkResponse)
    async def credential(session: Session = Depends(authenticated_session)):
        vp_jwt = await agent.issue_credentials(session.did)
        return LinkResponse(views=session.views, url=login_url(settings.host, vp_jwt))

    @app.get("/about", response_model=LinkResponse)
    async def about(session: Session = Depends(counted_session)):
        return LinkResponse(views=session.views, url=settings.host.rstrip("/") + "/public-profile")

    @app.get("/public-profile", response_class=PlainTextResponse)
    async def public_profile():
        return agent.public_profile()

    @app.get("/logout")
    async def logout(session_id: str = Depends(current_session_id)):
        await agent.sessions.destroy(session_id)
        response = RedirectResponse("/", status_code=302)
        response.delete_cookie(settings.session_cookie)
        return response

    @app.get("/.well-known/did.json")
    async def did_document():
        return agent.identity.document.to_json()

    @app.websocket("/socket")
    async def socket(websocket: WebSocket):
        room = websocket.cookies.get(settings.session_cookie)
        if not room:
            await websocket.close(code=1008)
            return

        await websocket.accept()
        await agent.broadcaster.join(room, websocket)
        logger.debug(f"Socket joined room {room} ({agent.broadcaster.members(room)} open)")
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            await agent.broadcaster.leave(room, websocket)

    return app
