"""
Test doubles shared by the unit tests.
"""

import asyncio
import inspect
import json
from http.cookies import SimpleCookie
from typing import Any, Callable, Dict, List, Optional, Union
from urllib.parse import urlsplit

from switchboard.core.models import Credential, Session, SessionKind
from switchboard.providers.base import (
    Authenticator,
    EndpointCandidate,
    Operation,
    Provider,
    is_mapping,
)
from switchboard.transport import HttpRequest, HttpResponse, HttpTransport, TransportError


def json_response(
    body: Any,
    status: int = 200,
    headers: Optional[Dict[str, str]] = None,
    cookies: Optional[str] = None,
) -> HttpResponse:
    """HttpResponse carrying ``body`` encoded as JSON."""
    jar = SimpleCookie()
    if cookies:
        jar.load(cookies)
    return HttpResponse(
        status=status,
        headers={"Content-Type": "application/json", **(headers or {})},
        body=json.dumps(body).encode("utf-8"),
        cookies=jar,
    )


def text_response(text: str, status: int = 200) -> HttpResponse:
    return HttpResponse(status=status, headers={"Content-Type": "text/html"}, body=text.encode("utf-8"))


Reply = Union[HttpResponse, Exception, Callable[[HttpRequest], Any]]


class FakeTransport(HttpTransport):
    """
    In-memory transport.

    ``routes`` maps URL paths to a response, an exception to raise, or a
    callable (sync or async) receiving the request. Unknown paths get 404.
    """

    def __init__(self, routes: Optional[Dict[str, Reply]] = None):
        super().__init__(user_agent="switchboard-tests")
        self.routes: Dict[str, Reply] = dict(routes or {})
        self.requests: List[HttpRequest] = []
        self.closed = False

    def paths(self) -> List[str]:
        return [urlsplit(request.url).path for request in self.requests]

    async def request(self, request: HttpRequest) -> HttpResponse:
        self.requests.append(request)
        reply = self.routes.get(urlsplit(request.url).path)
        if reply is None:
            return text_response("not found", status=404)
        if callable(reply) and not isinstance(reply, (HttpResponse, Exception)):
            reply = reply(request)
            if inspect.isawaitable(reply):
                reply = await reply
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def close(self) -> None:
        self.closed = True


def timeout_after(delay: float) -> Callable[[HttpRequest], Any]:
    """Route reply that waits ``delay`` seconds and then times out."""

    async def reply(request: HttpRequest):
        await asyncio.sleep(delay)
        return TransportError(f"Timed out after {request.timeout}s", timed_out=True)

    return reply


class CountingAuthenticator(Authenticator):
    """Issues ``token-1``, ``token-2``, ... and counts calls."""

    session_kind = SessionKind.BEARER

    def __init__(self, delay: float = 0.0, error: Optional[Exception] = None, ttl_seconds: float = 3000):
        super().__init__(default_ttl_seconds=ttl_seconds, timeout=5.0)
        self.calls = 0
        self.delay = delay
        self.error = error

    async def authenticate(self, credential: Credential, transport: HttpTransport) -> Session:
        self.calls += 1
        call = self.calls
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.new_session(f"token-{call}")


class InventoryProvider(Provider):
    """Small REST provider with three versions of the same listing."""

    provider_type = "inventory"

    def __init__(self, authenticator: Optional[Authenticator] = None):
        operations = [
            Operation(
                name="listItems",
                candidates=[
                    EndpointCandidate("/api/v2/items", priority=0, timeout=1.0),
                    EndpointCandidate("/api/v1/items", priority=1, timeout=1.0),
                    EndpointCandidate("/items", priority=2, timeout=1.0),
                ],
                critical=True,
            ),
            Operation(
                name="status",
                candidates=[EndpointCandidate("/status", priority=0)],
                validator=is_mapping,
            ),
            Operation(
                name="getItem",
                candidates=[EndpointCandidate("/api/v2/items/{item_id}", priority=0)],
                validator=is_mapping,
            ),
        ]
        super().__init__(authenticator or CountingAuthenticator(), operations)

    def build_request(self, credential, session, operation, candidate, params):
        return self.rest_request(credential, session, candidate, params)


def bearer(request: HttpRequest) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    return header[len("Bearer "):] if header.startswith("Bearer ") else None
