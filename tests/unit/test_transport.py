"""
Unit tests for the aiohttp transport.

Uses a local aiohttp test server so that real HTTP round trips, timeouts
and connection failures are exercised.
"""

import asyncio
import socket
from contextlib import asynccontextmanager

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from switchboard.core.credentials import InMemoryCredentialStore
from switchboard.core.models import Credential
from switchboard.gateway.client import GatewayClient
from switchboard.providers.registry import ProviderRegistry
from switchboard.providers.wazuh import WazuhProvider
from switchboard.transport import HttpRequest, HttpResponse, HttpTransport, TransportError, redact_url


@asynccontextmanager
async def serve(app):
    server = TestServer(app)
    await server.start_server()
    try:
        yield server
    finally:
        await server.close()


def unused_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class TestHttpTransport:

    @pytest.mark.asyncio
    async def test_get_json(self):
        seen = {}

        async def handler(request):
            seen["user_agent"] = request.headers.get("User-Agent")
            seen["query"] = dict(request.query)
            return web.json_response({"items": [1, 2]}, headers={"X-Request-Id": "r-1"})

        app = web.Application()
        app.router.add_get("/items", handler)

        async with serve(app) as server, HttpTransport(user_agent="switchboard-tests") as transport:
            response = await transport.request(HttpRequest(
                method="GET",
                url=str(server.make_url("/items")),
                params={"limit": "5"},
            ))

        assert response.status == 200
        assert response.ok
        assert response.json() == {"items": [1, 2]}
        assert response.header("x-request-id") == "r-1"
        assert seen == {"user_agent": "switchboard-tests", "query": {"limit": "5"}}

    @pytest.mark.asyncio
    async def test_post_json_and_form(self):
        received = []

        async def json_handler(request):
            received.append(await request.json())
            return web.json_response({})

        async def form_handler(request):
            received.append(dict(await request.post()))
            return web.json_response({})

        app = web.Application()
        app.router.add_post("/json", json_handler)
        app.router.add_post("/form", form_handler)

        async with serve(app) as server, HttpTransport() as transport:
            await transport.request(HttpRequest("POST", str(server.make_url("/json")), json={"a": 1}))
            await transport.request(HttpRequest("POST", str(server.make_url("/form")), data={"username": "u"}))

        assert received == [{"a": 1}, {"username": "u"}]

    @pytest.mark.asyncio
    async def test_non_2xx_is_a_response(self):
        async def handler(request):
            return web.Response(status=404, text="nope")

        app = web.Application()
        app.router.add_get("/missing", handler)

        async with serve(app) as server, HttpTransport() as transport:
            response = await transport.request(HttpRequest("GET", str(server.make_url("/missing"))))

        assert response.status == 404
        assert not response.ok
        assert response.text() == "nope"

    @pytest.mark.asyncio
    async def test_cookies_are_returned_but_not_stored(self):
        """Test that login cookies are exposed on the response and never replayed."""
        cookie_headers = []

        async def login(request):
            response = web.json_response({})
            response.set_cookie("TOKEN", "abc", max_age=60)
            return response

        async def data(request):
            cookie_headers.append(request.headers.get("Cookie"))
            return web.json_response([])

        app = web.Application()
        app.router.add_post("/login", login)
        app.router.add_get("/data", data)

        async with serve(app) as server, HttpTransport() as transport:
            response = await transport.request(HttpRequest("POST", str(server.make_url("/login"))))
            await transport.request(HttpRequest("GET", str(server.make_url("/data"))))

        assert response.cookies["TOKEN"].value == "abc"
        assert cookie_headers == [None]

    @pytest.mark.asyncio
    async def test_timeout(self):
        async def slow(request):
            await asyncio.sleep(1)
            return web.json_response({})

        app = web.Application()
        app.router.add_get("/slow", slow)

        async with serve(app) as server, HttpTransport() as transport:
            with pytest.raises(TransportError) as exc_info:
                await transport.request(HttpRequest("GET", str(server.make_url("/slow")), timeout=0.1))

        assert exc_info.value.timed_out is True

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        port = unused_port()

        async with HttpTransport() as transport:
            with pytest.raises(TransportError) as exc_info:
                await transport.request(HttpRequest("GET", f"http://127.0.0.1:{port}/", timeout=2.0))

        assert exc_info.value.timed_out is False
        assert exc_info.value.hint == "connection_refused"

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        transport = HttpTransport()
        await transport.close()
        await transport.close()


class TestHttpHelpers:

    def test_redact_url(self):
        url = "https://guac.example.com/api/session/data/mysql/connections?token=C90FA2B1&limit=5"

        assert redact_url(url) == "https://guac.example.com/api/session/data/mysql/connections?token=%2A%2A%2A&limit=5"

    def test_redact_url_without_query(self):
        assert redact_url("https://example.com/api") == "https://example.com/api"

    def test_empty_body_is_not_json(self):
        with pytest.raises(ValueError):
            HttpResponse(status=200).json()

    def test_preview_truncates(self):
        response = HttpResponse(status=500, body=b"x" * 1000)

        assert len(response.preview()) == 500
        assert len(response.preview(10)) == 10


class TestGatewayOverHttp:
    """End-to-end invoke() against a local Wazuh-like API."""

    @staticmethod
    def wazuh_app(state):
        async def authenticate(request):
            if not request.headers.get("Authorization", "").startswith("Basic "):
                return web.json_response({"title": "Unauthorized"}, status=401)
            state["logins"] += 1
            return web.json_response({"data": {"token": f"token-{state['logins']}"}, "error": 0})

        async def agents(request):
            token = request.headers.get("Authorization", "")[len("Bearer "):]
            state["tokens"].append(token)
            if token in state["revoked"]:
                return web.json_response({"title": "Unauthorized"}, status=401)
            return web.json_response({
                "data": {"affected_items": [{"id": "000", "status": "active"}], "total_affected_items": 1},
                "error": 0,
            })

        app = web.Application()
        app.router.add_post("/security/user/authenticate", authenticate)
        app.router.add_get("/agents", agents)
        return app

    @pytest.mark.asyncio
    async def test_invoke_reuses_session(self):
        state = {"logins": 0, "tokens": [], "revoked": set()}

        async with serve(self.wazuh_app(state)) as server:
            credential = Credential("wazuh", str(server.make_url("/")), "wazuh-wui", "pw")
            registry = ProviderRegistry()
            registry.register("wazuh", WazuhProvider())

            async with GatewayClient(InMemoryCredentialStore([credential]), registry) as gateway:
                first = await gateway.invoke("wazuh", "listAgents")
                second = await gateway.invoke("wazuh", "listAgents")

        assert first == second == [{"id": "000", "status": "active"}]
        assert state["logins"] == 1
        assert state["tokens"] == ["token-1", "token-1"]

    @pytest.mark.asyncio
    async def test_invoke_renews_revoked_session(self):
        state = {"logins": 0, "tokens": [], "revoked": set()}

        async with serve(self.wazuh_app(state)) as server:
            credential = Credential("wazuh", str(server.make_url("/")), "wazuh-wui", "pw")
            registry = ProviderRegistry()
            registry.register("wazuh", WazuhProvider())

            async with GatewayClient(InMemoryCredentialStore([credential]), registry) as gateway:
                await gateway.invoke("wazuh", "listAgents")
                state["revoked"].add("token-1")
                result = await gateway.invoke("wazuh", "listAgents")

        assert result == [{"id": "000", "status": "active"}]
        assert state["logins"] == 2
        assert state["tokens"] == ["token-1", "token-1", "token-2"]
