"""
Integration gateway: session cache, endpoint prober, client façade and diagnostics.
"""

from switchboard.gateway.cache import CacheStats, SessionCache, SessionCacheConfig
from switchboard.gateway.prober import CandidateMemo, EndpointProber, ProbeAttempt, ProbeResult
from switchboard.gateway.client import GatewayClient
from switchboard.gateway.diagnostics import DiagnosticReport, DiagnosticStep, Diagnostics

__all__ = [
    "CacheStats",
    "SessionCache",
    "SessionCacheConfig",
    "CandidateMemo",
    "EndpointProber",
    "ProbeAttempt",
    "ProbeResult",
    "GatewayClient",
    "DiagnosticReport",
    "DiagnosticStep",
    "Diagnostics",
]
