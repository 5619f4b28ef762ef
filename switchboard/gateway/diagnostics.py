"""
Connection diagnostics.

A read-only "test connection" pass over one provider. Every check runs
even when an earlier one failed, so a single report shows everything that
is wrong. Diagnostics authenticate with a private session and probe
without the candidate memo: running them never changes what ``invoke``
will do next.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Tuple

from switchboard.core.models import Credential, Session, utcnow
from switchboard.exceptions import ErrorTag, GatewayError
from switchboard.logging_config import get_logger
from switchboard.providers.base import Operation, Provider
from switchboard.transport import TransportError

if TYPE_CHECKING:
    from switchboard.gateway.client import GatewayClient

logger = get_logger(__name__)

OK = "ok"
FAIL = "fail"
WARN = "warn"

HEALTHY = "healthy"
DEGRADED = "degraded"
CRITICAL = "critical"

HINT_RECOMMENDATIONS = {
    "dns_resolution": "The host name could not be resolved; check the base URL and DNS configuration",
    "connection_refused": "The connection was refused; check that the service is running and the port is correct",
    "tls_certificate": "TLS verification failed; install a trusted certificate or set verify_ssl to false for this integration",
}

StepOutcome = Tuple[str, str, Dict[str, Any]]


@dataclass
class DiagnosticStep:
    """Result of one diagnostic check."""
    name: str
    status: str
    detail: str = ""
    duration_ms: float = 0.0
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "detail": self.detail,
            "duration_ms": self.duration_ms,
            "data": self.data,
        }


@dataclass
class DiagnosticReport:
    """Full diagnostics report of one provider."""
    provider_id: str
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    steps: List[DiagnosticStep] = field(default_factory=list)
    overall_status: str = CRITICAL
    recommendations: List[str] = field(default_factory=list)

    def step(self, name: str) -> Optional[DiagnosticStep]:
        for step in self.steps:
            if step.name == name:
                return step
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "overall_status": self.overall_status,
            "steps": [step.to_dict() for step in self.steps],
            "recommendations": list(self.recommendations),
        }


class _Context:
    """What earlier steps discovered."""

    def __init__(self):
        self.credential: Optional[Credential] = None
        self.provider: Optional[Provider] = None
        self.session: Optional[Session] = None
        self.missing_reason = "credential unavailable"


class Diagnostics:
    """Runs the diagnostic checks of a provider through a GatewayClient's parts."""

    def __init__(self, client: "GatewayClient"):
        self.client = client

    async def run(self, provider_id: str) -> DiagnosticReport:
        """
        Run every check for ``provider_id``.

        Never raises; unexpected errors become failed steps.
        """
        report = DiagnosticReport(provider_id=provider_id)
        context = _Context()
        logger.info(f"Running diagnostics for {provider_id}")

        await self._run_step(report, "credential", lambda: self._check_credential(provider_id, context))
        await self._run_step(report, "reachability", lambda: self._check_reachability(context))
        await self._run_step(report, "authentication", lambda: self._check_authentication(provider_id, context))

        if context.provider is not None:
            for operation in context.provider.critical_operations():
                await self._run_step(
                    report,
                    f"operation:{operation.name}",
                    lambda op=operation: self._check_operation(context, op),
                )

        report.finished_at = utcnow()
        report.overall_status = self._overall_status(report)
        report.recommendations = self._recommendations(report, context)

        logger.info(
            f"Diagnostics for {provider_id} finished: {report.overall_status} "
            f"({len(report.steps)} steps)"
        )
        return report

    async def _run_step(
        self,
        report: DiagnosticReport,
        name: str,
        check: Callable[[], Awaitable[StepOutcome]],
    ) -> DiagnosticStep:
        started = time.monotonic()
        try:
            status, detail, data = await check()
        except Exception as e:
            logger.error(f"Diagnostic step {name} raised unexpectedly: {e}", exc_info=True)
            status, detail, data = FAIL, f"Unexpected error: {type(e).__name__}: {e}", {}

        step = DiagnosticStep(
            name=name,
            status=status,
            detail=detail,
            duration_ms=round((time.monotonic() - started) * 1000, 1),
            data=data,
        )
        report.steps.append(step)
        return step

    async def _check_credential(self, provider_id: str, context: _Context) -> StepOutcome:
        try:
            provider = self.client.resolve_provider(provider_id)
        except GatewayError as e:
            context.missing_reason = "provider not registered"
            return FAIL, e.detail, {}
        context.provider = provider

        try:
            credential = await self.client.fetch_credential(provider_id)
        except GatewayError as e:
            context.missing_reason = "credential unavailable"
            return FAIL, e.detail, {"provider_type": provider.provider_type}

        context.credential = credential
        return OK, "Credential found and active", {
            "base_url": credential.root_url,
            "principal": credential.principal,
            "provider_type": provider.provider_type,
        }

    async def _check_reachability(self, context: _Context) -> StepOutcome:
        if context.credential is None:
            return FAIL, f"Skipped: {context.missing_reason}", {}

        request = context.provider.reachability_request(
            context.credential, self.client.config.reachability_timeout_seconds
        )
        try:
            response = await self.client.transport.request(request)
        except TransportError as e:
            data: Dict[str, Any] = {"timed_out": e.timed_out}
            if e.hint:
                data["hint"] = e.hint
            return FAIL, f"Unreachable: {e.reason}", data

        data = {"status": response.status}
        if response.status >= 500:
            return WARN, f"Reachable but answered HTTP {response.status}", data
        return OK, f"Reachable (HTTP {response.status})", data

    async def _check_authentication(self, provider_id: str, context: _Context) -> StepOutcome:
        if context.credential is None:
            return FAIL, f"Skipped: {context.missing_reason}", {}

        try:
            # Private session; the shared cache is not touched
            session = await self.client.authenticate(provider_id, context.provider, context.credential)
        except GatewayError as e:
            return FAIL, e.detail, dict(e.diagnostics)

        context.session = session
        return OK, f"Authenticated ({session.kind.value} session)", session.describe()

    async def _check_operation(self, context: _Context, operation: Operation) -> StepOutcome:
        if context.session is None:
            return FAIL, "Skipped: authentication unavailable", {}

        try:
            result = await self.client.prober.execute(
                context.provider, context.credential, context.session, operation
            )
        except GatewayError as e:
            return FAIL, e.detail, {"error": e.tag.value, "diagnostics": e.diagnostics}

        return OK, f"Answered by {result.candidate.template}", {
            "candidate": result.candidate.template,
            "candidate_index": result.candidate_index,
            "attempts": [attempt.to_dict() for attempt in result.attempts],
        }

    @staticmethod
    def _overall_status(report: DiagnosticReport) -> str:
        if all(step.status == OK for step in report.steps):
            return HEALTHY

        foundation = [report.step(name) for name in ("credential", "reachability", "authentication")]
        if any(step is None or step.status == FAIL for step in foundation):
            return CRITICAL
        return DEGRADED

    @staticmethod
    def _recommendations(report: DiagnosticReport, context: _Context) -> List[str]:
        recommendations: List[str] = []

        credential = report.step("credential")
        if credential is not None and credential.status == FAIL:
            recommendations.append(
                f"Create or activate the integration record for '{report.provider_id}' "
                "and make sure its provider type is registered"
            )

        reachability = report.step("reachability")
        if reachability is not None and context.credential is not None:
            if reachability.status == FAIL:
                recommendations.append(
                    f"Check network connectivity from the gateway to {context.credential.root_url}"
                )
                hint = reachability.data.get("hint")
                if hint in HINT_RECOMMENDATIONS:
                    recommendations.append(HINT_RECOMMENDATIONS[hint])
            elif reachability.status == WARN:
                recommendations.append("The remote system answers with server errors; check its health")

        authentication = report.step("authentication")
        if authentication is not None and authentication.status == FAIL and context.credential is not None:
            recommendations.append("Verify the username and password or API token of this integration")

        for step in report.steps:
            if not step.name.startswith("operation:") or step.status != FAIL:
                continue
            if step.data.get("error") in (ErrorTag.ENDPOINT_NOT_FOUND.value, ErrorTag.MALFORMED_RESPONSE.value):
                operation = step.name.split(":", 1)[1]
                recommendations.append(
                    f"No endpoint of '{operation}' returned a valid response; "
                    "check that the remote API version is supported"
                )

        return recommendations
