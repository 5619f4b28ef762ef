"""
Apache Guacamole provider.

Logs in by posting the username and password as a form to
``/api/tokens``; the returned ``authToken`` is passed as the ``token``
query parameter on every REST call. Guacamole is often deployed under
the ``/guacamole`` context path, so login is tried at the root first and
under the context path second; the prefix that worked is kept in the
session for the data calls.
"""

from typing import Any, Dict

from switchboard.core.models import Credential, Session, SessionKind
from switchboard.exceptions import AuthFailedError
from switchboard.logging_config import get_logger
from switchboard.providers.base import (
    AUTH_REJECTION_STATUSES,
    Authenticator,
    EndpointCandidate,
    Operation,
    Provider,
    is_list_or_mapping,
    is_mapping,
)
from switchboard.transport import HttpRequest, HttpTransport

logger = get_logger(__name__)

CONTEXT_PATH = "/guacamole"
DEFAULT_DATA_SOURCE = "postgresql"

# Guacamole tokens expire after 60 minutes of inactivity
TOKEN_TTL_SECONDS = 50 * 60


class GuacamoleAuthenticator(Authenticator):
    """Token login with and without the ``/guacamole`` context path."""

    session_kind = SessionKind.QUERY_TOKEN

    def _prefixes(self, credential: Credential):
        if credential.root_url.endswith(CONTEXT_PATH):
            return ("",)
        return ("", CONTEXT_PATH)

    async def authenticate(self, credential: Credential, transport: HttpTransport) -> Session:
        statuses: Dict[str, Any] = {}

        for prefix in self._prefixes(credential):
            url = f"{credential.root_url}{prefix}/api/tokens"
            request = HttpRequest(
                method="POST",
                url=url,
                headers={"Accept": "application/json"},
                data={"username": credential.principal, "password": credential.secret},
                timeout=self.timeout,
                verify_ssl=self.verify_for(credential),
            )
            response = await self.send(transport, request, credential)

            if response.status in AUTH_REJECTION_STATUSES:
                raise self.rejected(response, f"Guacamole rejected the credentials (HTTP {response.status})")
            if not response.ok:
                statuses[url] = response.status
                continue

            try:
                body = response.json()
            except ValueError:
                # Not Guacamole at this prefix (an HTML page, a proxy placeholder)
                statuses[url] = f"{response.status} (not JSON)"
                continue

            token = body.get("authToken") if isinstance(body, dict) else None
            if not isinstance(token, str) or not token:
                raise self.rejected(response, "Guacamole login returned no authToken")

            data_source = credential.option("data_source") or str(body.get("dataSource") or DEFAULT_DATA_SOURCE)
            logger.debug(f"Guacamole login at prefix '{prefix}' using data source {data_source}")
            return self.new_session(
                token,
                ttl_seconds=TOKEN_TTL_SECONDS,
                attributes={"api_prefix": prefix, "data_source": data_source},
            )

        raise AuthFailedError(
            "Guacamole token endpoint not found; check the base URL and context path",
            diagnostics={"statuses": statuses},
        )


class GuacamoleProvider(Provider):
    """Guacamole REST API."""

    provider_type = "guacamole"

    def __init__(self, default_ttl_seconds: float = 3000, auth_timeout: float = 20.0, verify_ssl: bool = True):
        data = "/api/session/data/{data_source}"
        operations = [
            Operation(
                name="listConnections",
                candidates=[EndpointCandidate(f"{data}/connections", priority=0)],
                validator=is_mapping,
                critical=True,
                description="Configured connections by identifier",
            ),
            Operation(
                name="listConnectionGroups",
                candidates=[EndpointCandidate(f"{data}/connectionGroups", priority=0)],
                validator=is_mapping,
                description="Connection groups",
            ),
            Operation(
                name="activeConnections",
                candidates=[EndpointCandidate(f"{data}/activeConnections", priority=0)],
                validator=is_mapping,
                description="Connections currently in use",
            ),
            Operation(
                name="listUsers",
                candidates=[EndpointCandidate(f"{data}/users", priority=0)],
                validator=is_mapping,
                description="Users of the data source",
            ),
            Operation(
                name="history",
                candidates=[
                    EndpointCandidate(f"{data}/history/connections", priority=0),
                    EndpointCandidate(f"{data}/history", priority=1),
                ],
                validator=is_list_or_mapping,
                description="Connection history",
            ),
        ]
        super().__init__(
            GuacamoleAuthenticator(default_ttl_seconds, auth_timeout, verify_ssl),
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
        params = dict(params)
        params.setdefault(
            "data_source",
            session.attributes.get("data_source") or credential.option("data_source", DEFAULT_DATA_SOURCE),
        )
        return self.rest_request(
            credential,
            session,
            candidate,
            params,
            prefix=session.attributes.get("api_prefix", ""),
        )
