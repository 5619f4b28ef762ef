"""
Core data model for the integration gateway.

Credential snapshots come from the credential store, sessions are produced
by authenticators and owned by the session cache.
"""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Credential:
    """
    Immutable snapshot of one provider's connection record.

    Read fresh from the credential store on every gateway call so that
    rotated credentials take effect without a restart. The gateway never
    persists it.

    Attributes:
        provider_id: Identifier of the integration record
        base_url: Root URL of the remote system
        principal: Username or API token identifier
        secret: Password or API token (never logged or rendered)
        extra: Provider specific options (site, data source, verify_ssl, ...)
        active: Inactive records are refused by the gateway
    """
    provider_id: str
    base_url: str
    principal: str = ""
    secret: str = field(default="", repr=False)
    extra: Mapping[str, str] = field(default_factory=dict)
    active: bool = True

    @property
    def root_url(self) -> str:
        """Base URL without trailing slash."""
        return self.base_url.rstrip("/")

    def fingerprint(self) -> str:
        """
        Stable digest of everything that identifies the remote identity.

        Two snapshots with the same fingerprint may share a session; a
        rotated password or a changed base URL yields a new fingerprint.
        """
        parts = [self.root_url, self.principal, self.secret]
        parts.extend(f"{key}={self.extra[key]}" for key in sorted(self.extra))
        digest = hashlib.sha256("\x00".join(parts).encode("utf-8"))
        return digest.hexdigest()

    def option(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Return an entry of ``extra`` or ``default``."""
        return self.extra.get(name, default)

    def flag(self, name: str, default: bool = False) -> bool:
        """Interpret an ``extra`` entry as a boolean."""
        value = self.extra.get(name)
        if value is None:
            return default
        return str(value).strip().lower() in ("1", "true", "yes", "on")


class SessionKind(str, Enum):
    """How a session artifact is attached to outgoing requests."""

    BEARER = "bearer"
    COOKIE = "cookie"
    RPC_AUTH = "rpc_auth"
    BASIC = "basic"
    QUERY_TOKEN = "query_token"
    HEADER_TOKEN = "header_token"


@dataclass
class Session:
    """
    Authenticated session artifact.

    Attributes:
        artifact: Opaque token, cookie header value or JSON-RPC auth string
        kind: How the artifact is attached to requests
        obtained_at: When the authenticator produced the session
        expires_at: When the session stops being usable (None = no expiry)
        attributes: Context discovered during login (CSRF token, API prefix, ...)
    """
    artifact: str = field(repr=False)
    kind: SessionKind
    obtained_at: datetime = field(default_factory=utcnow)
    expires_at: Optional[datetime] = None
    attributes: Dict[str, str] = field(default_factory=dict)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at

    def remaining_seconds(self, now: Optional[datetime] = None) -> Optional[float]:
        """Seconds until expiry, or None for sessions without expiry."""
        if self.expires_at is None:
            return None
        return (self.expires_at - (now or utcnow())).total_seconds()

    def describe(self) -> Dict[str, Any]:
        """Loggable description that omits the artifact itself."""
        return {
            "kind": self.kind.value,
            "obtained_at": self.obtained_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


def expiry_after(obtained_at: datetime, ttl_seconds: float) -> datetime:
    """Expiry timestamp ``ttl_seconds`` after ``obtained_at``."""
    return obtained_at + timedelta(seconds=ttl_seconds)
