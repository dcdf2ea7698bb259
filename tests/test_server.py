"""
Integration tests for the web service.

The ASGI transport does not run the lifespan, so each test starts the agent
explicitly before issuing requests.
"""

import httpx
import pytest
import pytest_asyncio
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from didlogin.auth import LOGGED_IN_EVENT
from didlogin.config import Settings
from didlogin.errors import ServiceEndpointPublicationError
from didlogin.identity import MESSAGING_SERVICE_TYPE
from didlogin.messages import unverified_claims
from didlogin.server import Agent, create_app

COOKIE = "didlogin_sid"


@pytest_asyncio.fixture
async def client(settings, agent):
    app = create_app(settings, agent)
    await agent.start()
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    await agent.stop()


def session_id_from(client: httpx.AsyncClient) -> str:
    return client.cookies[COOKIE]


def token_from(url: str) -> str:
    return url.split("c_i=", 1)[1]


class TestLoginFlow:
    """End-to-end login handshake."""

    @pytest.mark.asyncio
    async def test_full_login(self, client, agent, make_presentation, wallet_signer, socket_factory):
        """Login request, wallet reply, loggedin push and protected view."""
        response = await client.get("/login")
        assert response.status_code == 200
        sid = session_id_from(client)

        sdr = unverified_claims(token_from(response.json()["url"]))
        assert sdr["tag"] == sid
        assert sdr["replyUrl"] == "http://test/handle-message"

        socket = socket_factory()
        await agent.broadcaster.join(sid, socket)

        reply = await client.post(
            "/handle-message",
            content=make_presentation(sid),
            headers={"content-type": "text/plain"},
        )
        assert reply.status_code == 200
        assert reply.json()["id"]
        await agent.events.drain()

        assert socket.sent == [{"event": LOGGED_IN_EVENT, "data": {"did": wallet_signer.did}}]

        home = await client.get("/home")
        assert home.status_code == 200
        assert home.json()["did"] == wallet_signer.did

    @pytest.mark.asyncio
    async def test_history_lists_presentation(self, client, agent, make_presentation, wallet_signer):
        await client.get("/login")
        sid = session_id_from(client)
        await client.post("/handle-message", content=make_presentation(sid))
        await agent.events.drain()

        history = (await client.get("/history")).json()

        assert history["did"] == wallet_signer.did
        assert [m["thread_id"] for m in history["messages"]] == [sid]

    @pytest.mark.asyncio
    async def test_unknown_thread_accepted_without_login(self, client, agent, make_presentation):
        """A presentation for no known session is stored but logs nobody in."""
        await client.get("/login")

        reply = await client.post("/handle-message", content=make_presentation("not-a-session"))
        await agent.events.drain()

        assert reply.status_code == 200
        home = await client.get("/home")
        assert home.status_code == 302

    @pytest.mark.asyncio
    async def test_invalid_message(self, client):
        reply = await client.post("/handle-message", content=b"garbage")

        assert reply.status_code == 400
        assert reply.headers["content-type"].startswith("text/plain")
        assert "Invalid message format" in reply.text

    @pytest.mark.asyncio
    async def test_mistyped_expiry_is_client_error(self, client, make_presentation):
        reply = await client.post("/handle-message", content=make_presentation("sess-1", exp="tomorrow"))

        assert reply.status_code == 400
        assert reply.text == "Invalid message format: exp claim has type str"

    @pytest.mark.asyncio
    async def test_messaging_creates_no_session(self, client, make_presentation):
        await client.post("/handle-message", content=make_presentation("sess-1"))
        assert COOKIE not in client.cookies

    @pytest.mark.asyncio
    async def test_credential_for_logged_in_did(self, client, agent, make_presentation, wallet_signer):
        await client.get("/login")
        sid = session_id_from(client)
        await client.post("/handle-message", content=make_presentation(sid))
        await agent.events.drain()

        response = await client.get("/credential")
        vp = unverified_claims(token_from(response.json()["url"]))

        assert vp["aud"] == wallet_signer.did
        assert len(vp["vp"]["verifiableCredential"]) == 2


class TestAccessControl:
    """Guarded routes and the view counter."""

    @pytest.mark.asyncio
    async def test_anonymous_redirected(self, client):
        for path in ("/", "/home", "/history", "/credential"):
            response = await client.get(path)
            assert response.status_code == 302
            assert response.headers["location"] == "/login"

    @pytest.mark.asyncio
    async def test_views_counted(self, client):
        """Every page view increments the counter, redirects included."""
        assert (await client.get("/login")).json()["views"] == 1
        assert (await client.get("/about")).json()["views"] == 2
        await client.get("/home")
        assert (await client.get("/login")).json()["views"] == 4

    @pytest.mark.asyncio
    async def test_logout(self, client, agent, make_presentation):
        await client.get("/login")
        sid = session_id_from(client)
        await client.post("/handle-message", content=make_presentation(sid))
        await agent.events.drain()

        response = await client.get("/logout")

        assert response.status_code == 302
        assert response.headers["location"] == "/"
        assert await agent.sessions.get(sid) is None
        assert (await client.get("/home")).status_code == 302


class TestPublicEndpoints:
    """Endpoints that need no session."""

    @pytest.mark.asyncio
    async def test_public_profile(self, client, agent):
        response = await client.get("/public-profile")
        claims = unverified_claims(response.text)

        assert claims["iss"] == agent.identity.did
        assert claims["vc"]["credentialSubject"]["name"] == "DID Login Demo"

    @pytest.mark.asyncio
    async def test_did_document_advertises_endpoint(self, client, agent):
        doc = (await client.get("/.well-known/did.json")).json()

        assert doc["id"] == agent.identity.did
        services = [s for s in doc["service"] if s["type"] == MESSAGING_SERVICE_TYPE]
        assert services[0]["serviceEndpoint"] == "http://test/handle-message"


class TestAgent:
    """Agent lifecycle."""

    @pytest.mark.asyncio
    async def test_start_fails_without_publishable_endpoint(self, service_keypair):
        settings = Settings(
            host="not a url",
            port=8080,
            private_key=service_keypair.private_key_jwk,
            did=service_keypair.did,
        )
        with pytest.raises(ServiceEndpointPublicationError):
            await Agent(settings).start()

    @pytest.mark.asyncio
    async def test_begin_login_records_expiry(self, agent):
        session = await agent.sessions.create()
        request = await agent.begin_login(session.session_id)

        assert (await agent.sessions.get(session.session_id)).login_expires_at == request.expires_at


class TestSocket:
    """The browser's websocket receives the loggedin event."""

    def test_loggedin_pushed_over_websocket(self, settings, make_presentation, wallet_signer):
        with TestClient(create_app(settings)) as client:
            client.get("/login")
            sid = client.cookies[COOKIE]

            with client.websocket_connect("/socket", headers={"cookie": f"{COOKIE}={sid}"}) as ws:
                reply = client.post("/handle-message", content=make_presentation(sid))
                assert reply.status_code == 200

                assert ws.receive_json() == {"event": LOGGED_IN_EVENT, "data": {"did": wallet_signer.did}}

    def test_socket_without_session_rejected(self, settings):
        with TestClient(create_app(settings)) as client:
            with pytest.raises(WebSocketDisconnect):
                with client.websocket_connect("/socket"):
                    pass
