"""
Logging configuration for Switchboard.

Structured logging through structlog on top of the stdlib logging module.
Production deployments get one JSON object per line; the CLI uses the
console renderer. Every gateway invocation runs inside an invocation scope
whose id is stamped on each log line emitted while it is active.
"""

import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

import structlog
from structlog.types import EventDict


_invocation_id: ContextVar[Optional[str]] = ContextVar("switchboard_invocation_id", default=None)

# Libraries whose INFO output drowns gateway events
_NOISY_LOGGERS = ("aiohttp.access", "aiohttp.client", "asyncio")


def stamp_invocation_id(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """structlog processor adding ``invocation_id`` while a scope is active."""
    invocation_id = _invocation_id.get()
    if invocation_id is not None:
        event_dict.setdefault("invocation_id", invocation_id)
    return event_dict


@contextmanager
def invocation_scope(invocation_id: Optional[str] = None) -> Iterator[str]:
    """
    Tag log lines emitted inside the block with an invocation id.

    Scopes nest; leaving one restores the id of the enclosing scope.
    """
    token = _invocation_id.set(invocation_id or uuid.uuid4().hex[:16])
    try:
        yield _invocation_id.get()
    finally:
        _invocation_id.reset(token)


def current_invocation_id() -> Optional[str]:
    return _invocation_id.get()


def _build_handler(log_file: Optional[Path]) -> logging.Handler:
    if log_file is None:
        return logging.StreamHandler(sys.stderr)
    path = Path(log_file).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(path, encoding="utf-8")


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    json_format: bool = True,
) -> None:
    """
    Configure structlog and the root stdlib logger.

    Args:
        level: Level name; unknown names fall back to INFO.
        log_file: Write to this file instead of stderr.
        json_format: JSON lines when True, colored console output otherwise.
    """
    threshold = logging.getLevelName(level.upper())
    if not isinstance(threshold, int):
        threshold = logging.INFO

    handler = _build_handler(log_file)
    handler.setFormatter(logging.Formatter("%(message)s"))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(threshold)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(threshold, logging.WARNING))

    renderer = (
        structlog.processors.JSONRenderer()
        if json_format
        else structlog.dev.ConsoleRenderer(colors=log_file is None)
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            stamp_invocation_id,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger namespaced under ``switchboard``."""
    if not name.startswith("switchboard"):
        name = f"switchboard.{name}"
    return structlog.get_logger(name)


# Convenience functions for common logging patterns

def log_authentication(
    logger: structlog.stdlib.BoundLogger,
    provider_id: str,
    success: bool,
    session_kind: Optional[str] = None,
    expires_at: Optional[str] = None,
    reason: Optional[str] = None,
    **kwargs: Any,
) -> None:
    """
    Log an authentication attempt against a remote system.

    Args:
        logger: Logger instance
        provider_id: Provider the credential belongs to
        success: Whether a session was obtained
        session_kind: Kind of session artifact obtained
        expires_at: ISO timestamp at which the session expires
        reason: Reason for failure if not successful
        **kwargs: Additional context to log
    """
    log_data: Dict[str, Any] = {
        "event_type": "authentication",
        "provider_id": provider_id,
        "success": success,
    }

    if session_kind is not None:
        log_data["session_kind"] = session_kind
    if expires_at is not None:
        log_data["expires_at"] = expires_at
    if reason is not None:
        log_data["reason"] = reason

    log_data.update(kwargs)

    if success:
        logger.info("authentication", **log_data)
    else:
        logger.warning("authentication_failure", **log_data)


def log_probe_attempt(
    logger: structlog.stdlib.BoundLogger,
    provider_id: str,
    operation: str,
    candidate: str,
    outcome: str,
    status: Optional[int] = None,
    duration_ms: Optional[float] = None,
    **kwargs: Any,
) -> None:
    """
    Log one endpoint candidate attempt.

    Args:
        logger: Logger instance
        provider_id: Provider being probed
        operation: Logical operation name
        candidate: Endpoint template that was tried
        outcome: Attempt outcome, one of the ProbeAttempt outcome names
        status: HTTP status code if a response was received
        duration_ms: Attempt duration in milliseconds
        **kwargs: Additional context to log
    """
    log_data: Dict[str, Any] = {
        "event_type": "probe_attempt",
        "provider_id": provider_id,
        "operation": operation,
        "candidate": candidate,
        "outcome": outcome,
    }

    if status is not None:
        log_data["status"] = status
    if duration_ms is not None:
        log_data["duration_ms"] = duration_ms

    log_data.update(kwargs)

    if outcome == "success":
        logger.debug("probe_attempt", **log_data)
    else:
        logger.info("probe_attempt_failed", **log_data)


def log_gateway_invocation(
    logger: structlog.stdlib.BoundLogger,
    provider_id: str,
    operation: str,
    outcome: str,
    duration_ms: float,
    retried: bool = False,
    error_tag: Optional[str] = None,
    **kwargs: Any,
) -> None:
    """
    Log the terminal state of one gateway invocation.

    Args:
        logger: Logger instance
        provider_id: Provider invoked
        operation: Logical operation name
        outcome: "success" or "failed"
        duration_ms: Total invocation duration in milliseconds
        retried: Whether the call re-authenticated after an expired session
        error_tag: Taxonomy tag if the call failed
        **kwargs: Additional context to log
    """
    log_data: Dict[str, Any] = {
        "event_type": "gateway_invocation",
        "provider_id": provider_id,
        "operation": operation,
        "outcome": outcome,
        "duration_ms": duration_ms,
        "retried": retried,
    }

    if error_tag is not None:
        log_data["error_tag"] = error_tag

    log_data.update(kwargs)

    if outcome == "success":
        logger.info("gateway_invocation", **log_data)
    else:
        logger.error("gateway_invocation_failed", **log_data)


def log_session_cache_event(
    logger: structlog.stdlib.BoundLogger,
    provider_id: str,
    action: str,
    **kwargs: Any,
) -> None:
    """
    Log a session cache event.

    Args:
        logger: Logger instance
        provider_id: Provider the session belongs to
        action: Cache action (hit, miss, expired, put, invalidate, wait)
        **kwargs: Additional context to log
    """
    log_data: Dict[str, Any] = {
        "event_type": "session_cache",
        "provider_id": provider_id,
        "action": action,
    }

    log_data.update(kwargs)

    if action in ("put", "invalidate"):
        logger.info("session_cache", **log_data)
    else:
        logger.debug("session_cache", **log_data)
