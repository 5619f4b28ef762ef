"""
GLPI provider.

``apirest.php/initSession`` exchanges either a personal API token
(``Authorization: user_token ...``) or a username/password pair (Basic)
for a ``session_token``. Every data call then carries it in the
``Session-Token`` header, next to the ``App-Token`` header when the GLPI
API client requires one.

The credential secret is the user token when no username is set.
``extra.app_token`` holds the application token and ``extra.auth_mode``
may force ``user_token`` or ``basic``.

GLPI reports errors as a two element JSON array,
``["ERROR_SESSION_TOKEN_INVALID", "session_token seems invalid"]``.
"""

from typing import Any, Dict, Optional

from switchboard.core.models import Credential, Session, SessionKind
from switchboard.exceptions import AuthExpiredError, AuthFailedError, RemoteRejectedError
from switchboard.logging_config import get_logger
from switchboard.providers.base import (
    AUTH_REJECTION_STATUSES,
    Authenticator,
    EndpointCandidate,
    Operation,
    Provider,
    basic_artifact,
    is_list_or_mapping,
    is_mapping,
)
from switchboard.transport import HttpRequest, HttpResponse, HttpTransport

logger = get_logger(__name__)

API_PATH = "/apirest.php"
SESSION_HEADER = "Session-Token"
APP_TOKEN_HEADER = "App-Token"

# GLPI sessions follow the PHP session lifetime; renew well before it
SESSION_TTL_SECONDS = 50 * 60

SESSION_LOST_CODES = ("ERROR_SESSION_TOKEN_INVALID", "ERROR_SESSION_TOKEN_MISSING")

# Operation name, itemtype, exercised by diagnostics
ITEM_LISTS = (
    ("listTickets", "Ticket", True),
    ("listComputers", "Computer", False),
    ("listUsers", "User", False),
    ("listProblems", "Problem", False),
    ("listChanges", "Change", False),
    ("listEntities", "Entity", False),
    ("listLocations", "Location", False),
    ("listGroups", "Group", False),
)


def api_root(credential: Credential) -> str:
    """Base URL with any trailing ``/apirest.php`` removed."""
    root = credential.root_url
    if root.endswith(API_PATH):
        root = root[: -len(API_PATH)]
    return root


def glpi_error(payload: Any) -> Optional[tuple]:
    """``(code, message)`` when ``payload`` is a GLPI error array."""
    if (
        isinstance(payload, list)
        and payload
        and isinstance(payload[0], str)
        and payload[0].startswith("ERROR")
    ):
        message = payload[1] if len(payload) > 1 else ""
        return payload[0], str(message)
    return None


class GLPIAuthenticator(Authenticator):
    """``initSession`` with a user token or Basic credentials."""

    session_kind = SessionKind.HEADER_TOKEN

    @staticmethod
    def auth_mode(credential: Credential) -> str:
        mode = credential.option("auth_mode")
        if mode in ("user_token", "basic"):
            return mode
        return "basic" if credential.principal else "user_token"

    async def authenticate(self, credential: Credential, transport: HttpTransport) -> Session:
        if not credential.secret:
            raise AuthFailedError("GLPI integration has neither a password nor a user token")

        mode = self.auth_mode(credential)
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if mode == "user_token":
            headers["Authorization"] = f"user_token {credential.secret}"
        else:
            headers["Authorization"] = f"Basic {basic_artifact(credential)}"
        app_token = credential.option("app_token")
        if app_token:
            headers[APP_TOKEN_HEADER] = app_token

        request = HttpRequest(
            method="POST",
            url=f"{api_root(credential)}{API_PATH}/initSession",
            headers=headers,
            timeout=self.timeout,
            verify_ssl=self.verify_for(credential),
        )
        response = await self.send(transport, request, credential)

        if not response.ok:
            detail = f"GLPI initSession returned HTTP {response.status}"
            try:
                error = glpi_error(response.json())
            except ValueError:
                error = None
            if error is not None:
                detail = f"{detail}: {error[0]} {error[1]}".rstrip()
            if response.status in AUTH_REJECTION_STATUSES:
                detail = f"{detail}; check the App-Token and the {mode.replace('_', ' ')}"
            raise self.rejected(response, detail)

        try:
            body = response.json()
        except ValueError:
            raise self.rejected(response, "GLPI initSession returned a non-JSON body") from None

        token = body.get("session_token") if isinstance(body, dict) else None
        if not isinstance(token, str) or not token:
            raise self.rejected(response, "GLPI initSession returned no session_token")

        logger.debug(f"GLPI session opened for {credential.provider_id} ({mode})")
        return self.new_session(
            token,
            ttl_seconds=SESSION_TTL_SECONDS,
            attributes={"header": SESSION_HEADER, "mode": mode},
        )


class GLPIProvider(Provider):
    """GLPI legacy REST API (``apirest.php``), GLPI 9.x and 10.x."""

    provider_type = "glpi"

    def __init__(self, default_ttl_seconds: float = 3000, auth_timeout: float = 20.0, verify_ssl: bool = True):
        operations = [
            Operation(
                name=name,
                candidates=[EndpointCandidate(f"{API_PATH}/{itemtype}?range={{range}}", priority=0)],
                critical=critical,
                defaults={"range": "0-49"},
                description=f"{itemtype} items",
            )
            for name, itemtype, critical in ITEM_LISTS
        ]
        operations += [
            Operation(
                name="getTicket",
                candidates=[EndpointCandidate(f"{API_PATH}/Ticket/{{ticket_id}}", priority=0)],
                validator=is_mapping,
                description="One ticket by id",
            ),
            Operation(
                name="getUser",
                candidates=[EndpointCandidate(f"{API_PATH}/User/{{user_id}}", priority=0)],
                validator=is_mapping,
                description="One user by id",
            ),
            Operation(
                name="createTicket",
                candidates=[EndpointCandidate(f"{API_PATH}/Ticket", priority=0, method="POST")],
                validator=is_list_or_mapping,
                description="Create a ticket from the ``body`` parameter",
            ),
            Operation(
                name="getFullSession",
                candidates=[EndpointCandidate(f"{API_PATH}/getFullSession", priority=0)],
                validator=is_mapping,
                description="Profile and entities of the session user",
            ),
        ]
        super().__init__(
            GLPIAuthenticator(default_ttl_seconds, auth_timeout, verify_ssl),
            operations,
            verify_ssl=verify_ssl,
        )

    def build_request(
        self,
        credential: Credential,
        session: Session,
        operation: Operation,
        candidate: EndpointCandidate,
        params: Dict[str, Any],
    ) -> HttpRequest:
        path = candidate.render(params)
        request = HttpRequest(
            method=candidate.method,
            url=f"{api_root(credential)}{path}",
            headers={"Accept": "application/json"},
            timeout=candidate.timeout,
            verify_ssl=self.verify_for(credential),
        )
        if candidate.method in ("POST", "PUT") and "body" in params:
            body = params["body"]
            request.json = body if isinstance(body, dict) and "input" in body else {"input": body}
        app_token = credential.option("app_token")
        if app_token:
            request.headers[APP_TOKEN_HEADER] = app_token
        return self.attach_session(request, session)

    def is_auth_rejection(self, response: HttpResponse) -> bool:
        if super().is_auth_rejection(response):
            return True
        try:
            error = glpi_error(response.json())
        except ValueError:
            return False
        return error is not None and error[0] in SESSION_LOST_CODES

    def decode(self, response: HttpResponse, operation: Operation) -> Any:
        if not response.body.strip():
            return {}
        payload = super().decode(response, operation)
        error = glpi_error(payload)
        if error is not None:
            code, message = error
            if code in SESSION_LOST_CODES:
                raise AuthExpiredError(f"GLPI session no longer valid: {message}", diagnostics={"code": code})
            raise RemoteRejectedError(code, message)
        return payload

    def reachability_request(self, credential: Credential, timeout: float) -> HttpRequest:
        return HttpRequest(
            method="GET",
            url=f"{api_root(credential)}{API_PATH}/",
            timeout=timeout,
            verify_ssl=self.verify_for(credential),
        )
