"""
HTTP transport for the integration gateway.

This is the only module that talks to aiohttp. Authenticators and the
endpoint prober build ``HttpRequest`` objects and receive ``HttpResponse``
objects or a ``TransportError``; they never see aiohttp exceptions.
"""

import asyncio
import json
import socket
import ssl
from dataclasses import dataclass, field
from http.cookies import SimpleCookie
from typing import Any, Dict, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import aiohttp
from aiohttp import ClientTimeout, TCPConnector

from switchboard.logging_config import get_logger

logger = get_logger(__name__)

# Query parameters whose values must not reach log output
SENSITIVE_QUERY_KEYS = {"token", "auth", "password", "api_key", "apikey"}


@dataclass
class HttpRequest:
    """One outgoing HTTP request."""
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    json: Any = None
    data: Optional[Mapping[str, str]] = None
    timeout: float = 10.0
    verify_ssl: bool = True


@dataclass
class HttpResponse:
    """A fully read HTTP response."""
    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""
    cookies: SimpleCookie = field(default_factory=SimpleCookie)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return default

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """
        Decode the body as JSON.

        Raises:
            ValueError: If the body is empty or not valid JSON
        """
        if not self.body:
            raise ValueError("empty response body")
        return json.loads(self.body.decode("utf-8"))

    def preview(self, limit: int = 500) -> str:
        """Truncated body text for diagnostics payloads."""
        return self.text()[:limit]


class TransportError(Exception):
    """
    A request produced no HTTP response.

    Attributes:
        reason: Description of the underlying failure
        timed_out: True if the request hit its timeout
        hint: Recognized cause (dns_resolution, connection_refused, tls_certificate)
    """

    def __init__(self, reason: str, timed_out: bool = False, hint: Optional[str] = None):
        self.reason = reason
        self.timed_out = timed_out
        self.hint = hint
        super().__init__(reason)


def redact_url(url: str) -> str:
    """Mask sensitive query parameter values in ``url``."""
    parts = urlsplit(url)
    if not parts.query:
        return url
    query = [
        (key, "***" if key.lower() in SENSITIVE_QUERY_KEYS else value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit(parts._replace(query=urlencode(query)))


def classify_client_error(error: BaseException) -> Optional[str]:
    """Recognize common connection failure causes."""
    if isinstance(error, (aiohttp.ClientConnectorCertificateError, aiohttp.ClientSSLError)):
        return "tls_certificate"
    if isinstance(error, aiohttp.ClientConnectorError):
        os_error = error.os_error
        if isinstance(os_error, socket.gaierror):
            return "dns_resolution"
        if isinstance(os_error, ConnectionRefusedError):
            return "connection_refused"
        if isinstance(os_error, ssl.SSLError):
            return "tls_certificate"
    return None


class HttpTransport:
    """
    Shared aiohttp client for all providers.

    The client session is created on first use. Its cookie jar is disabled:
    cookies belong to sessions, and sessions are attached explicitly per
    request, so nothing leaks between credentials.
    """

    def __init__(
        self,
        user_agent: str = "Switchboard-Gateway",
        verify_ssl: bool = True,
        max_connections: int = 100,
    ):
        """
        Initialize HttpTransport.

        Args:
            user_agent: User-Agent header for every request
            verify_ssl: Default TLS verification; requests may turn it off
            max_connections: Maximum number of pooled connections
        """
        self.user_agent = user_agent
        self.verify_ssl = verify_ssl
        self.max_connections = max_connections
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": self.user_agent},
                connector=TCPConnector(limit=self.max_connections),
                cookie_jar=aiohttp.DummyCookieJar(),
            )
        return self._session

    async def request(self, request: HttpRequest) -> HttpResponse:
        """
        Issue ``request`` and read the full response.

        Raises:
            TransportError: If no HTTP response was received
        """
        session = await self._get_session()
        kwargs: Dict[str, Any] = {
            "headers": request.headers,
            "timeout": ClientTimeout(total=request.timeout),
        }
        if request.params:
            kwargs["params"] = request.params
        if request.json is not None:
            kwargs["json"] = request.json
        elif request.data is not None:
            kwargs["data"] = request.data
        if not (request.verify_ssl and self.verify_ssl):
            kwargs["ssl"] = False

        logger.debug(f"HTTP {request.method} {redact_url(request.url)}")

        try:
            async with session.request(request.method, request.url, **kwargs) as response:
                body = await response.read()
                return HttpResponse(
                    status=response.status,
                    headers=dict(response.headers),
                    body=body,
                    cookies=response.cookies,
                )
        except asyncio.TimeoutError as e:
            raise TransportError(
                f"Timed out after {request.timeout}s", timed_out=True
            ) from e
        except aiohttp.ClientError as e:
            raise TransportError(
                f"{type(e).__name__}: {e}", hint=classify_client_error(e)
            ) from e

    async def close(self) -> None:
        """Close the HTTP session and release resources."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("Closed HTTP transport session")
        self._session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
