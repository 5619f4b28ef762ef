"""
Endpoint prober.

Executes one logical operation by trying its endpoint candidates in order
until one returns a structurally valid response. The winning index is
reported back so the caller can try it first next time (``CandidateMemo``).

Classification of each attempt:

- request cannot be built from the parameters: record and try the next candidate
- transport failure or timeout: record and try the next candidate
- HTTP 401/403: abort immediately with ``AuthExpiredError``
- other non-2xx status: record and try the next candidate
- 2xx failing decoding or structural validation (including unexpected
  errors raised by the provider while decoding): record and try the next candidate
- 2xx the provider recognizes as "not supported here": record and try the next candidate
- 2xx with a valid body: success, remaining candidates are not tried
- domain error detected by the provider: raised immediately
"""

import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Tuple

from switchboard.core.models import Credential, Session
from switchboard.exceptions import (
    AuthExpiredError,
    EndpointNotFoundError,
    GatewayError,
    GatewayTimeoutError,
    MalformedResponseError,
    NetworkError,
)
from switchboard.logging_config import get_logger, log_probe_attempt
from switchboard.providers.base import EndpointCandidate, Operation, Provider
from switchboard.transport import HttpTransport, TransportError, redact_url

logger = get_logger(__name__)

# Attempt outcomes
SUCCESS = "success"
TRANSPORT = "transport"
TIMEOUT = "timeout"
HTTP_STATUS = "http_status"
STRUCTURAL = "structural"
UNRENDERABLE = "unrenderable"
UNSUPPORTED = "unsupported"


@dataclass
class ProbeAttempt:
    """Record of one candidate attempt."""
    index: int
    template: str
    outcome: str
    status: Optional[int] = None
    detail: str = ""
    duration_ms: float = 0.0
    hint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass
class ProbeResult:
    """Successful probe."""
    payload: Any
    candidate_index: int
    candidate: EndpointCandidate
    attempts: List[ProbeAttempt]


class CandidateMemo:
    """
    Last successful candidate index per ``(provider_id, operation)``.

    Lives for the whole process. Forgetting an entry only changes the order
    of the next probe; nothing is ever blacklisted.
    """

    def __init__(self):
        self._winners: Dict[Tuple[str, str], int] = {}

    def get(self, provider_id: str, operation: str) -> Optional[int]:
        return self._winners.get((provider_id, operation))

    def remember(self, provider_id: str, operation: str, index: int) -> None:
        previous = self._winners.get((provider_id, operation))
        self._winners[(provider_id, operation)] = index
        if previous != index:
            logger.info(
                f"Memoized candidate {index} for {provider_id}/{operation} "
                f"(previous: {previous})"
            )

    def forget(self, provider_id: str, operation: str) -> None:
        if self._winners.pop((provider_id, operation), None) is not None:
            logger.info(f"Forgot memoized candidate for {provider_id}/{operation}")

    def snapshot(self) -> Dict[str, int]:
        return {f"{p}/{o}": index for (p, o), index in self._winners.items()}


class EndpointProber:
    """
    Tries the candidates of an operation in order.

    The prober holds no state of its own; memoization is the caller's
    responsibility so that diagnostics can probe without touching it.
    """

    def __init__(self, transport: HttpTransport):
        """
        Initialize EndpointProber.

        Args:
            transport: HTTP transport used for every candidate request
        """
        self.transport = transport

    async def execute(
        self,
        provider: Provider,
        credential: Credential,
        session: Session,
        operation: Operation,
        params: Optional[Dict[str, Any]] = None,
        preferred_index: Optional[int] = None,
    ) -> ProbeResult:
        """
        Execute ``operation`` against the remote system.

        Args:
            provider: Provider implementation
            credential: Credential snapshot (base URL, options)
            session: Live session to attach to requests
            operation: Operation to execute
            params: Caller parameters
            preferred_index: Candidate to try first (memoized winner)

        Returns:
            ProbeResult with the decoded payload and the winning index

        Raises:
            AuthExpiredError: On HTTP 401/403 or a provider-detected session loss
            RemoteRejectedError: On a provider-detected domain error
            EndpointNotFoundError: When every candidate failed (or a more
                specific tag when all failures were of one kind)
        """
        merged = operation.merge_params(params)
        attempts: List[ProbeAttempt] = []

        for index in operation.probe_order(preferred_index):
            candidate = operation.candidates[index]
            started = time.monotonic()

            try:
                request = provider.build_request(credential, session, operation, candidate, merged)
            except KeyError as e:
                self._record(attempts, credential, operation, index, candidate, UNRENDERABLE,
                             started, detail=f"missing parameter {e}")
                continue
            except Exception as e:
                self._record(attempts, credential, operation, index, candidate, UNRENDERABLE,
                             started, detail=f"{type(e).__name__}: {e}")
                continue

            try:
                response = await self.transport.request(request)
            except TransportError as e:
                outcome = TIMEOUT if e.timed_out else TRANSPORT
                self._record(attempts, credential, operation, index, candidate, outcome,
                             started, detail=e.reason, hint=e.hint)
                continue

            if provider.is_auth_rejection(response):
                self._record(attempts, credential, operation, index, candidate, HTTP_STATUS,
                             started, status=response.status, detail="session rejected")
                raise AuthExpiredError(
                    f"Session rejected with HTTP {response.status} by {redact_url(request.url)}",
                    diagnostics={
                        "status": response.status,
                        "candidate": candidate.template,
                        "attempts": [a.to_dict() for a in attempts],
                    },
                )

            if not response.ok:
                self._record(attempts, credential, operation, index, candidate, HTTP_STATUS,
                             started, status=response.status, detail=response.preview(200))
                continue

            try:
                payload = provider.decode(response, operation)
            except MalformedResponseError as e:
                self._record(attempts, credential, operation, index, candidate, STRUCTURAL,
                             started, status=response.status, detail=e.detail)
                continue
            except EndpointNotFoundError as e:
                self._record(attempts, credential, operation, index, candidate, UNSUPPORTED,
                             started, status=response.status, detail=e.detail)
                continue
            except GatewayError as e:
                # Domain errors: the endpoint exists and answered definitively
                e.diagnostics.setdefault("candidate", candidate.template)
                raise
            except Exception as e:
                self._record(attempts, credential, operation, index, candidate, STRUCTURAL,
                             started, status=response.status,
                             detail=f"undecodable payload ({type(e).__name__}: {e})")
                continue

            try:
                valid = operation.validator(payload)
            except Exception as e:
                valid = False
                logger.warning(f"Validator of '{operation.name}' raised {type(e).__name__}: {e}")

            if not valid:
                self._record(attempts, credential, operation, index, candidate, STRUCTURAL,
                             started, status=response.status,
                             detail=f"unexpected payload shape ({type(payload).__name__})")
                continue

            self._record(attempts, credential, operation, index, candidate, SUCCESS,
                         started, status=response.status)
            return ProbeResult(
                payload=payload,
                candidate_index=index,
                candidate=candidate,
                attempts=attempts,
            )

        raise self._exhausted(operation, attempts)

    def _record(
        self,
        attempts: List[ProbeAttempt],
        credential: Credential,
        operation: Operation,
        index: int,
        candidate: EndpointCandidate,
        outcome: str,
        started: float,
        status: Optional[int] = None,
        detail: str = "",
        hint: Optional[str] = None,
    ) -> None:
        duration_ms = round((time.monotonic() - started) * 1000, 1)
        attempts.append(ProbeAttempt(
            index=index,
            template=candidate.template,
            outcome=outcome,
            status=status,
            detail=detail,
            duration_ms=duration_ms,
            hint=hint,
        ))
        log_probe_attempt(
            logger,
            provider_id=credential.provider_id,
            operation=operation.name,
            candidate=candidate.template,
            outcome=outcome,
            status=status,
            duration_ms=duration_ms,
        )

    @staticmethod
    def _exhausted(operation: Operation, attempts: List[ProbeAttempt]) -> GatewayError:
        """Pick the error tag that best describes a fully failed probe."""
        records = [a.to_dict() for a in attempts]
        outcomes = {a.outcome for a in attempts}
        hints = sorted({a.hint for a in attempts if a.hint})
        diagnostics: Dict[str, Any] = {"attempts": records}
        if hints:
            diagnostics["hints"] = hints

        tried = len(attempts)
        if outcomes == {TIMEOUT}:
            return GatewayTimeoutError(
                f"All {tried} candidates of '{operation.name}' timed out",
                diagnostics=diagnostics,
            )
        if outcomes and outcomes <= {TIMEOUT, TRANSPORT}:
            return NetworkError(
                f"Remote system unreachable on all {tried} candidates of '{operation.name}'",
                diagnostics=diagnostics,
            )
        if outcomes == {STRUCTURAL}:
            return MalformedResponseError(
                f"All {tried} candidates of '{operation.name}' returned unexpected payloads",
                diagnostics=diagnostics,
            )
        return EndpointNotFoundError(
            f"No candidate of '{operation.name}' returned a valid response ({tried} tried)",
            attempts=records,
            diagnostics=diagnostics,
        )
