"""
Bundled providers and their registry.
"""

from switchboard.providers.base import Authenticator, EndpointCandidate, Operation, Provider
from switchboard.providers.registry import (
    PROVIDER_TYPES,
    ProviderRegistry,
    build_provider,
    build_registry,
)

__all__ = [
    "Authenticator",
    "EndpointCandidate",
    "Operation",
    "Provider",
    "PROVIDER_TYPES",
    "ProviderRegistry",
    "build_provider",
    "build_registry",
]
