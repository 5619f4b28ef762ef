"""
Unit tests for credentials, sessions and the error taxonomy.
"""

from dataclasses import replace
from datetime import timedelta

import pytest

from switchboard.core.models import Session, SessionKind, utcnow
from switchboard.exceptions import (
    AuthFailedError,
    EndpointNotFoundError,
    ErrorTag,
    GatewayTimeoutError,
    RemoteRejectedError,
)


class TestCredential:

    def test_fingerprint_is_stable(self, credential):
        assert credential.fingerprint() == replace(credential).fingerprint()

    def test_fingerprint_ignores_trailing_slash(self, credential):
        assert credential.fingerprint() == replace(credential, base_url="https://inventory.example.com").fingerprint()

    @pytest.mark.parametrize("change", [
        {"secret": "rotated"},
        {"principal": "other-user"},
        {"base_url": "https://inventory-2.example.com"},
        {"extra": {"site": "branch"}},
    ])
    def test_fingerprint_changes_with_identity(self, credential, change):
        assert credential.fingerprint() != replace(credential, **change).fingerprint()

    def test_fingerprint_does_not_contain_secret(self, credential):
        assert "s3cret" not in credential.fingerprint()

    def test_repr_hides_secret(self, credential):
        assert "s3cret" not in repr(credential)

    def test_flag(self, credential):
        flagged = replace(credential, extra={"verify_ssl": "no", "auth_header": "TRUE"})

        assert flagged.flag("verify_ssl", True) is False
        assert flagged.flag("auth_header") is True
        assert flagged.flag("missing", True) is True


class TestSession:

    def test_expiry(self):
        now = utcnow()
        session = Session(artifact="t", kind=SessionKind.BEARER, obtained_at=now,
                          expires_at=now + timedelta(seconds=60))

        assert not session.is_expired(now)
        assert session.is_expired(now + timedelta(seconds=60))
        assert session.remaining_seconds(now) == 60

    def test_no_expiry(self):
        session = Session(artifact="t", kind=SessionKind.RPC_AUTH)

        assert not session.is_expired()
        assert session.remaining_seconds() is None

    def test_artifact_hidden(self):
        session = Session(artifact="very-secret", kind=SessionKind.COOKIE, attributes={"api_prefix": ""})

        assert "very-secret" not in repr(session)
        assert "very-secret" not in repr(session.describe())


class TestGatewayErrors:

    def test_str_includes_context(self):
        error = AuthFailedError("bad password").with_context("zabbix-prod", "listHosts")

        assert str(error) == "auth_failed [zabbix-prod/listHosts]: bad password"

    def test_with_context_keeps_existing_values(self):
        error = GatewayTimeoutError("slow", provider_id="a", operation="b")
        error.with_context("c", "d")

        assert (error.provider_id, error.operation) == ("a", "b")

    def test_to_dict(self):
        error = GatewayTimeoutError("slow", provider_id="wazuh", diagnostics={"timeout_seconds": 5})

        assert error.to_dict() == {
            "error": "timeout",
            "provider_id": "wazuh",
            "operation": None,
            "detail": "slow",
            "diagnostics": {"timeout_seconds": 5},
        }

    def test_endpoint_not_found_carries_attempts(self):
        attempts = [{"index": 0, "template": "/a", "outcome": "http_status", "status": 404}]

        error = EndpointNotFoundError("nothing worked", attempts=attempts)

        assert error.tag == ErrorTag.ENDPOINT_NOT_FOUND
        assert error.attempts == attempts
        assert error.diagnostics["attempts"] == attempts

    def test_remote_rejected(self):
        error = RemoteRejectedError(-32500, "No permissions to referred object")

        data = error.to_dict()
        assert data["error"] == "remote_rejected"
        assert data["code"] == -32500
        assert data["message"] == "No permissions to referred object"
