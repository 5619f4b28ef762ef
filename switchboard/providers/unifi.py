"""
UniFi Network provider.

Two generations of controllers are supported:

- UniFi OS consoles (UDM, Cloud Key Gen2+): login at ``/api/auth/login``,
  ``TOKEN`` cookie plus an ``X-CSRF-Token`` header, network API under
  ``/proxy/network``
- legacy software controllers: login at ``/api/login``, ``unifises``
  cookie, network API at the root

Both wrap results in ``{"meta": {"rc": "ok"}, "data": [...]}``.
"""

from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from http.cookies import Morsel
from typing import Any, Dict, Optional

from switchboard.core.models import Credential, Session, SessionKind, utcnow
from switchboard.exceptions import AuthExpiredError, AuthFailedError, MalformedResponseError, RemoteRejectedError
from switchboard.logging_config import get_logger
from switchboard.providers.base import (
    AUTH_REJECTION_STATUSES,
    Authenticator,
    EndpointCandidate,
    Operation,
    Provider,
    cookie_header,
    is_mapping,
)
from switchboard.transport import HttpRequest, HttpResponse, HttpTransport

logger = get_logger(__name__)

CSRF_HEADER = "X-CSRF-Token"
LOGIN_REQUIRED = "api.err.LoginRequired"


def cookie_expiry(morsel: Morsel, now: Optional[datetime] = None) -> Optional[datetime]:
    """Expiry of a Set-Cookie entry from ``Max-Age`` or ``Expires``."""
    now = now or utcnow()
    max_age = morsel["max-age"]
    if max_age:
        try:
            return now + timedelta(seconds=int(max_age))
        except ValueError:
            logger.debug(f"Ignoring invalid Max-Age on cookie {morsel.key}")

    expires = morsel["expires"]
    if expires:
        try:
            expiry = parsedate_to_datetime(expires)
        except (TypeError, ValueError):
            logger.debug(f"Ignoring invalid Expires on cookie {morsel.key}")
        else:
            if expiry.tzinfo is None:
                expiry = expiry.replace(tzinfo=timezone.utc)
            return expiry
    return None


def session_cookie_expiry(response: HttpResponse) -> Optional[datetime]:
    """Earliest expiry among the cookies set by a login response."""
    expiries = [
        expiry
        for expiry in (cookie_expiry(morsel) for morsel in response.cookies.values())
        if expiry is not None
    ]
    return min(expiries) if expiries else None


class UniFiAuthenticator(Authenticator):
    """Cookie login, UniFi OS first, legacy controller second."""

    session_kind = SessionKind.COOKIE

    # (login path, network API prefix)
    LOGIN_ENDPOINTS = (
        ("/api/auth/login", "/proxy/network"),
        ("/api/login", ""),
    )

    async def authenticate(self, credential: Credential, transport: HttpTransport) -> Session:
        statuses: Dict[str, Any] = {}

        for path, prefix in self.LOGIN_ENDPOINTS:
            request = HttpRequest(
                method="POST",
                url=credential.root_url + path,
                headers={"Accept": "application/json"},
                json={
                    "username": credential.principal,
                    "password": credential.secret,
                    "remember": False,
                },
                timeout=self.timeout,
                verify_ssl=self.verify_for(credential),
            )
            response = await self.send(transport, request, credential)

            if response.status in AUTH_REJECTION_STATUSES or (response.status == 400 and prefix == ""):
                # Legacy controllers answer 400 api.err.Invalid for bad credentials
                raise self.rejected(response, f"UniFi rejected the credentials (HTTP {response.status})")
            if not response.ok:
                statuses[path] = response.status
                continue

            cookies = cookie_header(response)
            if not cookies:
                raise self.rejected(response, "UniFi login succeeded but set no session cookie")

            attributes = {"api_prefix": prefix}
            csrf_token = response.header(CSRF_HEADER)
            if csrf_token:
                attributes["csrf_token"] = csrf_token

            logger.debug(f"UniFi login via {path}")
            return self.new_session(
                cookies,
                expires_at=session_cookie_expiry(response),
                attributes=attributes,
            )

        raise AuthFailedError(
            "No UniFi login endpoint answered",
            diagnostics={"statuses": statuses},
        )


class UniFiProvider(Provider):
    """UniFi Network controller API."""

    provider_type = "unifi"

    def __init__(self, default_ttl_seconds: float = 3000, auth_timeout: float = 20.0, verify_ssl: bool = True):
        operations = [
            Operation(
                name="listSites",
                candidates=self._both_generations("/api/self/sites"),
                critical=True,
                description="Sites visible to the account",
            ),
            Operation(
                name="listDevices",
                candidates=self._both_generations("/api/s/{site}/stat/device"),
                critical=True,
                description="Adopted network devices",
            ),
            Operation(
                name="listClients",
                candidates=self._both_generations("/api/s/{site}/stat/sta"),
                description="Connected clients",
            ),
            Operation(
                name="systemInfo",
                candidates=self._both_generations("/api/s/{site}/stat/sysinfo"),
                description="Controller version and system information",
            ),
            Operation(
                name="health",
                candidates=self._both_generations("/api/s/{site}/stat/health"),
                description="Subsystem health",
            ),
            Operation(
                name="listEvents",
                candidates=self._both_generations("/api/s/{site}/stat/event?_limit={limit}"),
                defaults={"limit": 50},
                description="Recent controller events",
            ),
            Operation(
                name="restartDevice",
                candidates=self._both_generations("/api/s/{site}/cmd/devmgr", method="POST"),
                description="Restart a device (body: {'cmd': 'restart', 'mac': ...})",
            ),
        ]
        super().__init__(
            UniFiAuthenticator(default_ttl_seconds, auth_timeout, verify_ssl),
            operations,
            verify_ssl=verify_ssl,
        )

    @staticmethod
    def _both_generations(path: str, method: str = "GET"):
        """UniFi OS path first, legacy controller path second."""
        return [
            EndpointCandidate("{api_prefix}" + path, priority=0, method=method),
            EndpointCandidate(path, priority=1, method=method),
        ]

    def build_request(
        self,
        credential: Credential,
        session: Session,
        operation: Operation,
        candidate: EndpointCandidate,
        params: Dict[str, Any],
    ) -> HttpRequest:
        params = dict(params)
        params.setdefault("site", credential.option("site", "default"))
        params.setdefault("api_prefix", session.attributes.get("api_prefix", "/proxy/network"))

        request = self.rest_request(credential, session, candidate, params)
        csrf_token = session.attributes.get("csrf_token")
        if csrf_token and candidate.method != "GET":
            request.headers[CSRF_HEADER] = csrf_token
        return request

    def decode(self, response: HttpResponse, operation: Operation) -> Any:
        body = super().decode(response, operation)
        if not is_mapping(body):
            raise MalformedResponseError("UniFi response is not an object")

        meta = body.get("meta")
        if isinstance(meta, dict) and meta.get("rc") == "error":
            message = str(meta.get("msg", ""))
            if message == LOGIN_REQUIRED:
                raise AuthExpiredError("UniFi session expired (LoginRequired)")
            raise RemoteRejectedError(message or "error", f"UniFi returned an error: {message}")

        if "data" not in body:
            raise MalformedResponseError("UniFi response has no data field")
        return body["data"]
