"""
Provider contract.

A provider bundles everything the gateway needs to talk to one kind of
remote system:

- an ``Authenticator`` that exchanges a credential for a session
- the ordered ``EndpointCandidate`` list of every logical operation
- request building (how a session is attached to a request)
- response decoding (envelope unwrapping, domain error detection)

Providers are registered once at start-up; there is no runtime plugin
protocol.
"""

import base64
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from switchboard.core.models import Credential, Session, SessionKind, expiry_after, utcnow
from switchboard.exceptions import AuthFailedError, MalformedResponseError
from switchboard.transport import HttpRequest, HttpResponse, HttpTransport, TransportError
from switchboard.logging_config import get_logger

logger = get_logger(__name__)

# Status codes that mean "this session/credential is not accepted"
AUTH_REJECTION_STATUSES = (401, 403)


def is_list(payload: Any) -> bool:
    return isinstance(payload, list)


def is_mapping(payload: Any) -> bool:
    return isinstance(payload, dict)


def is_list_or_mapping(payload: Any) -> bool:
    return isinstance(payload, (list, dict))


@dataclass(frozen=True)
class EndpointCandidate:
    """
    One hypothesized implementation of a logical operation.

    Attributes:
        template: URL path (``str.format`` placeholders allowed) or RPC method name
        priority: Lower values are tried first
        method: HTTP method
        timeout: Request timeout in seconds
        authenticated: False for endpoints that must be called without the session
    """
    template: str
    priority: int
    method: str = "GET"
    timeout: float = 10.0
    authenticated: bool = True

    def render(self, params: Dict[str, Any]) -> str:
        """
        Fill the template placeholders from ``params``.

        Raises:
            KeyError: If a placeholder has no value
        """
        return self.template.format_map(params)


@dataclass
class Operation:
    """
    A logical operation and its candidate endpoints.

    Attributes:
        name: Operation name used by callers (e.g. "listJobs")
        candidates: Endpoint candidates, kept sorted by priority
        validator: Structural validation of the decoded payload
        critical: Exercised by diagnostics
        defaults: Parameter defaults merged under caller parameters
        description: Short human-readable description
    """
    name: str
    candidates: List[EndpointCandidate]
    validator: Callable[[Any], bool] = is_list
    critical: bool = False
    defaults: Dict[str, Any] = field(default_factory=dict)
    description: str = ""

    def __post_init__(self) -> None:
        if not self.candidates:
            raise ValueError(f"Operation '{self.name}' declares no endpoint candidates")
        # sorted() is stable, equal priorities keep declaration order
        self.candidates = sorted(self.candidates, key=lambda c: c.priority)

    def probe_order(self, preferred_index: Optional[int] = None) -> List[int]:
        """Candidate indexes in the order they should be tried."""
        order = list(range(len(self.candidates)))
        if preferred_index is not None and 0 <= preferred_index < len(order):
            order.remove(preferred_index)
            order.insert(0, preferred_index)
        return order

    def merge_params(self, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        merged = dict(self.defaults)
        merged.update(params or {})
        return merged


def basic_artifact(credential: Credential) -> str:
    """Base64 ``principal:secret`` for HTTP Basic authentication."""
    raw = f"{credential.principal}:{credential.secret}".encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def cookie_header(response: HttpResponse) -> str:
    """Serialize the cookies set by ``response`` into a Cookie header value."""
    return "; ".join(
        f"{name}={morsel.value}" for name, morsel in response.cookies.items()
    )


class Authenticator(ABC):
    """
    Exchanges a credential for a session.

    Implementations must map every failure to ``AuthFailedError`` and must
    be safe to call concurrently for different credentials. Concurrency for
    the same credential is serialized by the session cache.
    """

    session_kind: SessionKind = SessionKind.BEARER

    def __init__(self, default_ttl_seconds: float = 3000, timeout: float = 20.0, verify_ssl: bool = True):
        """
        Initialize Authenticator.

        Args:
            default_ttl_seconds: Session lifetime when the remote gives no expiry signal
            timeout: Timeout of each login request in seconds
            verify_ssl: Default TLS verification of login requests
        """
        self.default_ttl_seconds = default_ttl_seconds
        self.timeout = timeout
        self.verify_ssl = verify_ssl

    def verify_for(self, credential: Credential) -> bool:
        return credential.flag("verify_ssl", self.verify_ssl)

    @abstractmethod
    async def authenticate(self, credential: Credential, transport: HttpTransport) -> Session:
        """
        Obtain a new session for ``credential``.

        Raises:
            AuthFailedError: On any failure
        """

    def new_session(
        self,
        artifact: str,
        ttl_seconds: Optional[float] = None,
        expires_at: Optional[datetime] = None,
        attributes: Optional[Dict[str, str]] = None,
    ) -> Session:
        """Build a session, falling back to the default TTL when no expiry is known."""
        obtained_at = utcnow()
        if expires_at is None:
            ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds
            expires_at = expiry_after(obtained_at, ttl)
        return Session(
            artifact=artifact,
            kind=self.session_kind,
            obtained_at=obtained_at,
            expires_at=expires_at,
            attributes=dict(attributes or {}),
        )

    async def send(
        self,
        transport: HttpTransport,
        request: HttpRequest,
        credential: Credential,
    ) -> HttpResponse:
        """Issue a login request, mapping transport failures to AuthFailedError."""
        try:
            return await transport.request(request)
        except TransportError as e:
            raise AuthFailedError(
                f"Login request to {credential.root_url} failed: {e.reason}",
                diagnostics={
                    "reason": e.reason,
                    "timed_out": e.timed_out,
                    "hint": e.hint,
                },
            ) from e

    @staticmethod
    def rejected(response: HttpResponse, detail: str) -> AuthFailedError:
        """AuthFailedError preserving the status and body of a failed login."""
        return AuthFailedError(
            detail,
            diagnostics={"status": response.status, "response": response.preview()},
        )


class Provider(ABC):
    """
    Base class of all provider implementations.

    Attributes:
        provider_type: Short type name used in configuration ("zabbix", ...)
        authenticator: Authenticator used for this provider
        operations: Operations by name
    """

    provider_type: str = "generic"

    def __init__(
        self,
        authenticator: Authenticator,
        operations: Iterable[Operation],
        verify_ssl: bool = True,
    ):
        self.authenticator = authenticator
        self.operations: Dict[str, Operation] = {}
        self.verify_ssl = verify_ssl
        for operation in operations:
            if operation.name in self.operations:
                raise ValueError(f"Duplicate operation '{operation.name}'")
            self.operations[operation.name] = operation

    def get_operation(self, name: str) -> Optional[Operation]:
        return self.operations.get(name)

    def critical_operations(self) -> List[Operation]:
        return [op for op in self.operations.values() if op.critical]

    def verify_for(self, credential: Credential) -> bool:
        """TLS verification for requests made with ``credential``."""
        return credential.flag("verify_ssl", self.verify_ssl)

    @abstractmethod
    def build_request(
        self,
        credential: Credential,
        session: Session,
        operation: Operation,
        candidate: EndpointCandidate,
        params: Dict[str, Any],
    ) -> HttpRequest:
        """
        Build the request for one candidate.

        Raises:
            KeyError: If the candidate template needs a parameter that is missing
        """

    def is_auth_rejection(self, response: HttpResponse) -> bool:
        return response.status in AUTH_REJECTION_STATUSES

    def decode(self, response: HttpResponse, operation: Operation) -> Any:
        """
        Decode a 2xx response into the operation payload.

        Subclasses unwrap vendor envelopes here and raise
        ``RemoteRejectedError`` or ``AuthExpiredError`` for domain errors.

        Raises:
            MalformedResponseError: If the body cannot be decoded
        """
        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(
                f"Response is not valid JSON: {e}",
                diagnostics={"response": response.preview(200)},
            ) from e

    def reachability_request(self, credential: Credential, timeout: float) -> HttpRequest:
        """Unauthenticated request used by diagnostics to test reachability."""
        return HttpRequest(
            method="GET",
            url=credential.root_url + "/",
            timeout=timeout,
            verify_ssl=self.verify_for(credential),
        )

    def attach_session(self, request: HttpRequest, session: Session, token_param: str = "token") -> HttpRequest:
        """Attach a REST-style session artifact to ``request``."""
        if session.kind == SessionKind.BEARER:
            request.headers["Authorization"] = f"Bearer {session.artifact}"
        elif session.kind == SessionKind.BASIC:
            request.headers["Authorization"] = f"Basic {session.artifact}"
        elif session.kind == SessionKind.COOKIE:
            request.headers["Cookie"] = session.artifact
        elif session.kind == SessionKind.QUERY_TOKEN:
            request.params[token_param] = session.artifact
        elif session.kind == SessionKind.HEADER_TOKEN:
            request.headers[session.attributes.get("header", "X-Session-Token")] = session.artifact
        return request

    def rest_request(
        self,
        credential: Credential,
        session: Session,
        candidate: EndpointCandidate,
        params: Dict[str, Any],
        prefix: str = "",
    ) -> HttpRequest:
        """Common request building for REST providers."""
        path = candidate.render(params)
        request = HttpRequest(
            method=candidate.method,
            url=f"{credential.root_url}{prefix}{path}",
            headers={"Accept": "application/json"},
            timeout=candidate.timeout,
            verify_ssl=self.verify_for(credential),
        )
        if candidate.method in ("POST", "PUT", "PATCH") and "body" in params:
            request.json = params["body"]
        if candidate.authenticated:
            self.attach_session(request, session)
        return request
