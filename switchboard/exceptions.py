"""
Exception hierarchy for Switchboard.

Every failure that crosses the gateway boundary is a ``GatewayError``
subclass carrying one tag of the flat error taxonomy. Provider specific
errors (aiohttp exceptions, JSON-RPC error objects, vendor status codes)
are mapped into one of these classes before they leave an authenticator
or the endpoint prober.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class SwitchboardError(Exception):
    """Base class for all Switchboard exceptions."""
    pass


class ConfigurationError(SwitchboardError):
    """Raised when the configuration file or provider registration is invalid."""
    pass


class CredentialNotFoundError(SwitchboardError):
    """Raised by a credential store when no record exists for a provider id."""

    def __init__(self, provider_id: str):
        self.provider_id = provider_id
        super().__init__(f"No credential stored for provider '{provider_id}'")


class ProviderNotRegisteredError(SwitchboardError):
    """Raised when a provider id has no registered implementation."""

    def __init__(self, provider_id: str):
        self.provider_id = provider_id
        super().__init__(f"Provider '{provider_id}' is not registered")


class ErrorTag(str, Enum):
    """Stable tags of the gateway error taxonomy."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    AUTH_FAILED = "auth_failed"
    AUTH_EXPIRED = "auth_expired"
    ENDPOINT_NOT_FOUND = "endpoint_not_found"
    MALFORMED_RESPONSE = "malformed_response"
    REMOTE_REJECTED = "remote_rejected"


class GatewayError(SwitchboardError):
    """
    Base class of the gateway error taxonomy.

    Attributes:
        tag: Taxonomy tag, fixed per subclass
        detail: Human-readable explanation
        provider_id: Provider the failing call targeted (set by GatewayClient)
        operation: Logical operation name (set by GatewayClient)
        diagnostics: Underlying status codes, messages and probe attempts
    """

    tag: ErrorTag = ErrorTag.NETWORK

    def __init__(
        self,
        detail: str,
        provider_id: Optional[str] = None,
        operation: Optional[str] = None,
        diagnostics: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.detail = detail
        self.provider_id = provider_id
        self.operation = operation
        self.diagnostics: Dict[str, Any] = dict(diagnostics or {})
        super().__init__(detail)

    def with_context(self, provider_id: str, operation: Optional[str]) -> "GatewayError":
        """Tag the error with the provider and operation it belongs to."""
        if self.provider_id is None:
            self.provider_id = provider_id
        if self.operation is None:
            self.operation = operation
        return self

    def __str__(self) -> str:
        prefix = self.tag.value
        if self.provider_id:
            prefix = f"{prefix} [{self.provider_id}"
            if self.operation:
                prefix = f"{prefix}/{self.operation}"
            prefix = f"{prefix}]"
        return f"{prefix}: {self.detail}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.tag.value,
            "provider_id": self.provider_id,
            "operation": self.operation,
            "detail": self.detail,
            "diagnostics": self.diagnostics,
        }


class NetworkError(GatewayError):
    """The remote host could not be reached on any candidate."""

    tag = ErrorTag.NETWORK


class GatewayTimeoutError(GatewayError):
    """A call did not complete within its deadline."""

    tag = ErrorTag.TIMEOUT


class AuthFailedError(GatewayError):
    """Credentials were rejected, missing, inactive, or login failed."""

    tag = ErrorTag.AUTH_FAILED


class AuthExpiredError(GatewayError):
    """A previously valid session was rejected by the remote system."""

    tag = ErrorTag.AUTH_EXPIRED


class EndpointNotFoundError(GatewayError):
    """
    No endpoint candidate produced a valid response.

    Attributes:
        attempts: Per-candidate failure records, in the order tried
    """

    tag = ErrorTag.ENDPOINT_NOT_FOUND

    def __init__(
        self,
        detail: str,
        attempts: Optional[List[Dict[str, Any]]] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(detail, **kwargs)
        self.attempts = list(attempts or [])
        self.diagnostics.setdefault("attempts", self.attempts)


class MalformedResponseError(GatewayError):
    """The remote answered 2xx but the body was unparseable or had the wrong shape."""

    tag = ErrorTag.MALFORMED_RESPONSE


class RemoteRejectedError(GatewayError):
    """
    The remote system explicitly returned a domain error.

    Attributes:
        code: Remote error code (JSON-RPC code, vendor status string)
        message: Remote error message
    """

    tag = ErrorTag.REMOTE_REJECTED

    def __init__(self, code: Any, message: str, **kwargs: Any) -> None:
        self.code = code
        self.message = message
        super().__init__(f"Remote rejected request ({code}): {message}", **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["code"] = self.code
        data["message"] = self.message
        return data
