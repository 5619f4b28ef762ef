"""
Bacula provider.

Covers both Baculum (``/api/v2``, ``/api/v1``) and the older Bacula-Web
REST API (``/api``). Both use HTTP Basic authentication, so the session
is the pre-computed Basic credential; authentication only verifies it
against the first info endpoint the server exposes.
"""

from typing import Any, Dict

from switchboard.core.models import Credential, Session, SessionKind
from switchboard.exceptions import AuthFailedError, MalformedResponseError, RemoteRejectedError
from switchboard.logging_config import get_logger
from switchboard.providers.base import (
    AUTH_REJECTION_STATUSES,
    Authenticator,
    EndpointCandidate,
    Operation,
    Provider,
    basic_artifact,
)
from switchboard.transport import HttpRequest, HttpResponse, HttpTransport

logger = get_logger(__name__)

# Keys under which the APIs wrap result lists
ENVELOPE_KEYS = ("output", "jobs", "clients", "volumes", "result", "data")


class BaculaAuthenticator(Authenticator):
    """Verifies Basic credentials against the info endpoint of each API generation."""

    session_kind = SessionKind.BASIC

    VERIFY_PATHS = (
        "/api/v2/config/api/info",
        "/api/v1/config/api/info",
        "/api/v2/info",
        "/api/version",
    )

    async def authenticate(self, credential: Credential, transport: HttpTransport) -> Session:
        if not credential.principal:
            raise AuthFailedError("Bacula integration has no username")

        artifact = basic_artifact(credential)
        statuses: Dict[str, int] = {}

        for path in self.VERIFY_PATHS:
            request = HttpRequest(
                method="GET",
                url=credential.root_url + path,
                headers={"Accept": "application/json", "Authorization": f"Basic {artifact}"},
                timeout=self.timeout,
                verify_ssl=self.verify_for(credential),
            )
            response = await self.send(transport, request, credential)

            if response.status in AUTH_REJECTION_STATUSES:
                raise self.rejected(response, f"Bacula rejected the credentials (HTTP {response.status})")
            if response.ok:
                logger.debug(f"Bacula credentials verified via {path}")
                return self.new_session(artifact, attributes={"verified_by": path})

            statuses[path] = response.status

        raise AuthFailedError(
            "No Bacula API info endpoint answered; credentials could not be verified",
            diagnostics={"statuses": statuses},
        )


class BaculaProvider(Provider):
    """Baculum and Bacula-Web REST APIs."""

    provider_type = "bacula"

    def __init__(self, default_ttl_seconds: float = 3000, auth_timeout: float = 20.0, verify_ssl: bool = True):
        operations = [
            Operation(
                name="listJobs",
                candidates=[
                    EndpointCandidate("/api/v2/jobs?limit={limit}", priority=0),
                    EndpointCandidate("/api/v1/jobs?limit={limit}", priority=1),
                    EndpointCandidate("/api/v2/jobs?age=86400&limit={limit}", priority=2),
                    EndpointCandidate("/api/jobs?limit={limit}", priority=3),
                ],
                critical=True,
                defaults={"limit": 100},
                description="Recent backup jobs",
            ),
            Operation(
                name="listClients",
                candidates=[
                    EndpointCandidate("/api/v2/clients", priority=0),
                    EndpointCandidate("/api/v1/clients", priority=1),
                    EndpointCandidate("/api/clients", priority=2),
                ],
                description="File daemons known to the director",
            ),
            Operation(
                name="listVolumes",
                candidates=[
                    EndpointCandidate("/api/v2/volumes", priority=0),
                    EndpointCandidate("/api/v1/volumes", priority=1),
                    EndpointCandidate("/api/volumes", priority=2),
                ],
                description="Storage volumes",
            ),
        ]
        super().__init__(
            BaculaAuthenticator(default_ttl_seconds, auth_timeout, verify_ssl),
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
        return self.rest_request(credential, session, candidate, params)

    def decode(self, response: HttpResponse, operation: Operation) -> Any:
        body = super().decode(response, operation)
        if isinstance(body, list):
            return body
        if not isinstance(body, dict):
            raise MalformedResponseError(f"Unexpected Bacula response ({type(body).__name__})")

        # Baculum reports failures as {"output": "...", "error": <non-zero>}
        error = body.get("error")
        if error not in (None, 0, "0"):
            raise RemoteRejectedError(error, str(body.get("output", "")))

        for key in ENVELOPE_KEYS:
            if key in body:
                return body[key]
        return body
