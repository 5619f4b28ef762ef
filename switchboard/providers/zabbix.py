"""
Zabbix provider.

Everything goes through one JSON-RPC endpoint (``api_jsonrpc.php``);
endpoint candidates are RPC method names. The session token travels in
the request body ``auth`` field, or as a Bearer header when the
integration sets ``auth_header`` (Zabbix 6.4 and later).

Credentials either hold a username/password pair, exchanged through
``user.login``, or an API token (``auth_mode: token``) used directly.
"""

from typing import Any, Dict, Optional

from switchboard.core.models import Credential, Session, SessionKind
from switchboard.exceptions import (
    AuthExpiredError,
    AuthFailedError,
    EndpointNotFoundError,
    GatewayError,
    MalformedResponseError,
    RemoteRejectedError,
)
from switchboard.logging_config import get_logger
from switchboard.providers.base import (
    Authenticator,
    EndpointCandidate,
    Operation,
    Provider,
)
from switchboard.transport import HttpRequest, HttpResponse, HttpTransport

logger = get_logger(__name__)

RPC_PATH = "/api_jsonrpc.php"

# JSON-RPC "Method not found"
METHOD_NOT_FOUND = -32601

# Error texts meaning the session token is no longer valid
SESSION_LOST_MARKERS = ("re-login", "not authorised", "not authorized", "session terminated")

# Fixed parameters per RPC method; caller parameters are merged over them
METHOD_PARAMS: Dict[str, Dict[str, Any]] = {
    "problem.get": {
        "output": "extend",
        "recent": True,
        "sortfield": ["eventid"],
        "sortorder": "DESC",
    },
    "trigger.get": {
        "output": "extend",
        "only_true": 1,
        "monitored": 1,
        "expandDescription": 1,
        "sortfield": "lastchange",
        "sortorder": "DESC",
    },
    "host.get": {
        "output": ["hostid", "host", "name", "status"],
    },
    "hostgroup.get": {
        "output": ["groupid", "name"],
    },
    "event.get": {
        "output": "extend",
        "sortfield": ["clock"],
        "sortorder": "DESC",
    },
}


def is_text(payload: Any) -> bool:
    return isinstance(payload, str) and bool(payload)


def rpc_url(credential: Credential) -> str:
    root = credential.root_url
    if root.endswith(RPC_PATH):
        return root
    return root + RPC_PATH


def rpc_body(method: str, params: Any, auth: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"jsonrpc": "2.0", "method": method, "params": params, "id": 1}
    if auth is not None:
        body["auth"] = auth
    return body


class ZabbixAuthenticator(Authenticator):
    """
    ``user.login`` exchange.

    Zabbix 5.4 renamed the login parameter from ``user`` to ``username``;
    the new name is tried first and the old one only when the server
    rejects the parameter itself.
    """

    session_kind = SessionKind.RPC_AUTH

    LOGIN_FIELDS = ("username", "user")

    async def authenticate(self, credential: Credential, transport: HttpTransport) -> Session:
        if credential.option("auth_mode") == "token" or not credential.principal:
            if not credential.secret:
                raise AuthFailedError("Zabbix integration has neither a login nor an API token")
            return self.new_session(credential.secret, attributes={"mode": "token"})

        url = rpc_url(credential)
        last_error: Optional[Dict[str, Any]] = None

        for login_field in self.LOGIN_FIELDS:
            request = HttpRequest(
                method="POST",
                url=url,
                headers={"Accept": "application/json"},
                json=rpc_body(
                    "user.login",
                    {login_field: credential.principal, "password": credential.secret},
                ),
                timeout=self.timeout,
                verify_ssl=self.verify_for(credential),
            )
            response = await self.send(transport, request, credential)
            if not response.ok:
                raise self.rejected(response, f"Zabbix login returned HTTP {response.status}")

            try:
                body = response.json()
            except ValueError:
                raise self.rejected(response, "Zabbix login returned a non-JSON body") from None

            error = body.get("error") if isinstance(body, dict) else None
            if error is None:
                token = body.get("result") if isinstance(body, dict) else None
                if not is_text(token):
                    raise self.rejected(response, "Zabbix login returned no session token")
                return self.new_session(token, attributes={"mode": "login", "login_field": login_field})

            if not isinstance(error, dict):
                raise self.rejected(response, f"Zabbix login returned a malformed error: {error!r:.200}")

            last_error = error
            data = str(error.get("data", ""))
            if "unexpected parameter" not in data:
                break
            logger.debug(f"Zabbix rejected login parameter '{login_field}', trying the next one")

        raise AuthFailedError(
            f"Zabbix login failed: {last_error.get('data') or last_error.get('message')}",
            diagnostics={"code": last_error.get("code"), "message": last_error.get("message")},
        )


class ZabbixProvider(Provider):
    """Zabbix JSON-RPC API."""

    provider_type = "zabbix"

    def __init__(self, default_ttl_seconds: float = 3000, auth_timeout: float = 20.0, verify_ssl: bool = True):
        operations = [
            Operation(
                name="listProblems",
                candidates=[
                    EndpointCandidate("problem.get", priority=0, method="POST"),
                    EndpointCandidate("trigger.get", priority=1, method="POST"),
                ],
                critical=True,
                defaults={"limit": 100},
                description="Current problems, newest first",
            ),
            Operation(
                name="listHosts",
                candidates=[EndpointCandidate("host.get", priority=0, method="POST")],
                critical=True,
                description="Monitored hosts",
            ),
            Operation(
                name="listHostGroups",
                candidates=[EndpointCandidate("hostgroup.get", priority=0, method="POST")],
                description="Host groups",
            ),
            Operation(
                name="listEvents",
                candidates=[EndpointCandidate("event.get", priority=0, method="POST")],
                defaults={"limit": 100},
                description="Recent events",
            ),
            Operation(
                name="apiVersion",
                candidates=[
                    EndpointCandidate("apiinfo.version", priority=0, method="POST", authenticated=False),
                ],
                validator=is_text,
                description="Remote API version",
            ),
        ]
        super().__init__(
            ZabbixAuthenticator(default_ttl_seconds, auth_timeout, verify_ssl),
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
        method = candidate.render(params)
        rpc_params: Any = [] if method == "apiinfo.version" else {**METHOD_PARAMS.get(method, {}), **params}

        request = HttpRequest(
            method="POST",
            url=rpc_url(credential),
            headers={"Accept": "application/json"},
            timeout=candidate.timeout,
            verify_ssl=self.verify_for(credential),
        )

        # apiinfo.version must be called without any authentication
        if not candidate.authenticated:
            request.json = rpc_body(method, rpc_params)
        elif credential.flag("auth_header"):
            request.headers["Authorization"] = f"Bearer {session.artifact}"
            request.json = rpc_body(method, rpc_params)
        else:
            request.json = rpc_body(method, rpc_params, auth=session.artifact)
        return request

    def decode(self, response: HttpResponse, operation: Operation) -> Any:
        body = super().decode(response, operation)
        if not isinstance(body, dict):
            raise MalformedResponseError("JSON-RPC response is not an object")

        error = body.get("error")
        if error is not None:
            if not isinstance(error, dict):
                raise MalformedResponseError(
                    "JSON-RPC error member is not an object",
                    diagnostics={"response": response.preview(200)},
                )
            raise self._map_error(error)

        if "result" not in body:
            raise MalformedResponseError(
                "JSON-RPC response has neither result nor error",
                diagnostics={"response": response.preview(200)},
            )
        return body["result"]

    @staticmethod
    def _map_error(error: Dict[str, Any]) -> GatewayError:
        code = error.get("code")
        message = str(error.get("message", ""))
        data = str(error.get("data", ""))
        text = f"{message} {data}".lower()

        if code == METHOD_NOT_FOUND:
            return EndpointNotFoundError(f"RPC method not available: {data or message}")
        if any(marker in text for marker in SESSION_LOST_MARKERS):
            return AuthExpiredError(
                f"Zabbix session no longer valid: {data or message}",
                diagnostics={"code": code},
            )
        return RemoteRejectedError(code, f"{message} {data}".strip())
