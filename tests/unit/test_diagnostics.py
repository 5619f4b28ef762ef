"""
Unit tests for connection diagnostics.
"""

import json
from dataclasses import replace
from unittest.mock import AsyncMock

import pytest

from helpers import json_response, text_response
from switchboard.exceptions import AuthFailedError
from switchboard.gateway.diagnostics import Diagnostics
from switchboard.transport import TransportError

ITEMS = [{"id": 1}]


def statuses(report):
    return {step.name: step.status for step in report.steps}


class TestDiagnosticsHealthy:

    @pytest.mark.asyncio
    async def test_all_steps_pass(self, gateway, transport):
        transport.routes["/"] = json_response({"service": "inventory"})
        transport.routes["/api/v2/items"] = json_response(ITEMS)

        report = await Diagnostics(gateway).run("inventory")

        assert statuses(report) == {
            "credential": "ok",
            "reachability": "ok",
            "authentication": "ok",
            "operation:listItems": "ok",
        }
        assert report.overall_status == "healthy"
        assert report.recommendations == []
        assert report.step("operation:listItems").data["candidate"] == "/api/v2/items"

    @pytest.mark.asyncio
    async def test_does_not_touch_cache_or_memo(self, gateway, transport):
        """Test that diagnostics leave the shared session cache and memo unchanged."""
        transport.routes["/"] = json_response({})
        transport.routes["/items"] = json_response(ITEMS)

        await Diagnostics(gateway).run("inventory")

        assert gateway.session_cache.get_stats().size == 0
        assert gateway.memo.snapshot() == {}

    @pytest.mark.asyncio
    async def test_report_is_json_serializable(self, gateway, transport):
        transport.routes["/"] = json_response({})
        transport.routes["/api/v1/items"] = json_response(ITEMS)

        report = await gateway.run_diagnostics("inventory")

        encoded = json.dumps(report)
        assert "s3cret" not in encoded
        assert "token-1" not in encoded
        assert report["finished_at"] is not None


class TestDiagnosticsFailures:

    @pytest.mark.asyncio
    async def test_unreachable_host(self, gateway, transport, authenticator):
        """Test that a refused connection is critical and names the cause."""
        refused = TransportError("Cannot connect", hint="connection_refused")
        transport.routes["/"] = refused
        transport.routes["/api/v2/items"] = refused
        transport.routes["/api/v1/items"] = refused
        transport.routes["/items"] = refused

        report = await Diagnostics(gateway).run("inventory")

        reachability = report.step("reachability")
        assert reachability.status == "fail"
        assert reachability.data["hint"] == "connection_refused"
        assert report.overall_status == "critical"
        assert any("connectivity" in r for r in report.recommendations)
        assert any("connection was refused" in r for r in report.recommendations)

    @pytest.mark.asyncio
    async def test_authentication_failure(self, gateway, transport, authenticator):
        transport.routes["/"] = json_response({})
        authenticator.error = AuthFailedError("invalid credentials", diagnostics={"status": 401})

        report = await Diagnostics(gateway).run("inventory")

        authentication = report.step("authentication")
        assert authentication.status == "fail"
        assert authentication.data["status"] == 401
        assert report.step("operation:listItems").detail == "Skipped: authentication unavailable"
        assert report.overall_status == "critical"
        assert any("password" in r for r in report.recommendations)

    @pytest.mark.asyncio
    async def test_missing_credential(self, gateway, transport, authenticator, credential_store):
        """Test that every later step still runs and reports why it was skipped."""
        credential_store.remove_credential("inventory")

        report = await Diagnostics(gateway).run("inventory")

        assert statuses(report) == {
            "credential": "fail",
            "reachability": "fail",
            "authentication": "fail",
            "operation:listItems": "fail",
        }
        assert report.step("reachability").detail == "Skipped: credential unavailable"
        assert authenticator.calls == 0
        assert transport.requests == []
        assert len(report.recommendations) == 1

    @pytest.mark.asyncio
    async def test_unregistered_provider(self, gateway, credential_store, credential):
        credential_store.set_credential(replace(credential, provider_id="mystery"))

        report = await Diagnostics(gateway).run("mystery")

        assert [step.name for step in report.steps] == ["credential", "reachability", "authentication"]
        assert report.step("authentication").detail == "Skipped: provider not registered"
        assert report.overall_status == "critical"

    @pytest.mark.asyncio
    async def test_server_errors_warn(self, gateway, transport):
        transport.routes["/"] = text_response("bad gateway", status=502)
        transport.routes["/api/v2/items"] = json_response(ITEMS)

        report = await Diagnostics(gateway).run("inventory")

        assert report.step("reachability").status == "warn"
        assert report.overall_status == "degraded"
        assert any("server errors" in r for r in report.recommendations)

    @pytest.mark.asyncio
    async def test_operation_failure_is_degraded(self, gateway, transport):
        """Test that a broken operation with a healthy foundation is degraded."""
        transport.routes["/"] = json_response({})

        report = await Diagnostics(gateway).run("inventory")

        operation = report.step("operation:listItems")
        assert operation.status == "fail"
        assert operation.data["error"] == "endpoint_not_found"
        assert len(operation.data["diagnostics"]["attempts"]) == 3
        assert report.overall_status == "degraded"
        assert any("API version" in r for r in report.recommendations)

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_failed_step(self, gateway, transport, credential_store, monkeypatch):
        transport.routes["/"] = json_response({})
        transport.routes["/api/v2/items"] = json_response(ITEMS)

        monkeypatch.setattr(gateway, "fetch_credential", AsyncMock(side_effect=RuntimeError("database offline")))

        report = await Diagnostics(gateway).run("inventory")

        credential_step = report.step("credential")
        assert credential_step.status == "fail"
        assert credential_step.detail == "Unexpected error: RuntimeError: database offline"
        assert report.overall_status == "critical"
