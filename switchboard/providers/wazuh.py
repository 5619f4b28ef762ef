"""
Wazuh manager provider.

``POST /security/user/authenticate`` with Basic credentials returns a JWT
used as a Bearer token. The token's ``exp`` claim sets the session
expiry. API results come wrapped as
``{"data": {"affected_items": [...]}, "error": 0}``.
"""

import base64
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from switchboard.core.models import Credential, Session, SessionKind
from switchboard.exceptions import MalformedResponseError, RemoteRejectedError
from switchboard.logging_config import get_logger
from switchboard.providers.base import (
    Authenticator,
    EndpointCandidate,
    Operation,
    Provider,
    basic_artifact,
    is_mapping,
)
from switchboard.transport import HttpRequest, HttpResponse, HttpTransport

logger = get_logger(__name__)


def jwt_expiry(token: str) -> Optional[datetime]:
    """
    ``exp`` claim of a JWT, without verifying the signature.

    Returns None when the token is not a JWT or carries no ``exp``.
    """
    parts = token.split(".")
    if len(parts) != 3:
        return None
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload.encode("ascii")))
        return datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc)
    except (ValueError, KeyError, TypeError, OverflowError, OSError):
        return None


class WazuhAuthenticator(Authenticator):
    """JWT login against the Wazuh API."""

    session_kind = SessionKind.BEARER

    async def authenticate(self, credential: Credential, transport: HttpTransport) -> Session:
        request = HttpRequest(
            method="POST",
            url=credential.root_url + "/security/user/authenticate",
            headers={
                "Accept": "application/json",
                "Authorization": f"Basic {basic_artifact(credential)}",
            },
            timeout=self.timeout,
            verify_ssl=self.verify_for(credential),
        )
        response = await self.send(transport, request, credential)
        if not response.ok:
            raise self.rejected(response, f"Wazuh login returned HTTP {response.status}")

        try:
            body = response.json()
        except ValueError:
            raise self.rejected(response, "Wazuh login returned a non-JSON body") from None

        data = body.get("data") if isinstance(body, dict) else None
        token = data.get("token") if isinstance(data, dict) else None
        if not isinstance(token, str) or not token:
            raise self.rejected(response, "Wazuh login returned no token")

        expires_at = jwt_expiry(token)
        if expires_at is None:
            logger.debug("Wazuh token has no readable exp claim, using the default TTL")
        return self.new_session(token, expires_at=expires_at)


class WazuhProvider(Provider):
    """Wazuh REST API (4.x)."""

    provider_type = "wazuh"

    def __init__(self, default_ttl_seconds: float = 3000, auth_timeout: float = 20.0, verify_ssl: bool = True):
        operations = [
            Operation(
                name="listAgents",
                candidates=[
                    EndpointCandidate("/agents?limit={limit}&sort=-dateAdd", priority=0),
                    EndpointCandidate("/agents?limit={limit}", priority=1),
                ],
                critical=True,
                defaults={"limit": 500},
                description="Registered agents",
            ),
            Operation(
                name="managerInfo",
                candidates=[EndpointCandidate("/manager/info", priority=0)],
                description="Manager version and configuration",
            ),
            Operation(
                name="managerStatus",
                candidates=[EndpointCandidate("/manager/status", priority=0)],
                critical=True,
                description="State of the manager daemons",
            ),
            Operation(
                name="agentsSummary",
                candidates=[
                    EndpointCandidate("/agents/summary/status", priority=0),
                    EndpointCandidate("/overview/agents", priority=1),
                ],
                validator=is_mapping,
                description="Agent counts by connection status",
            ),
        ]
        super().__init__(
            WazuhAuthenticator(default_ttl_seconds, auth_timeout, verify_ssl),
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
        if not isinstance(body, dict) or "data" not in body:
            raise MalformedResponseError("Wazuh response has no data field")

        data = body["data"]
        if body.get("error", 0) not in (0, None):
            failed = data.get("failed_items") if isinstance(data, dict) else None
            if not (isinstance(data, dict) and data.get("affected_items")):
                raise RemoteRejectedError(
                    body.get("error"),
                    str(body.get("message", "")),
                    diagnostics={"failed_items": failed or []},
                )

        if isinstance(data, dict) and "affected_items" in data:
            return data["affected_items"]
        return data
