"""
Static provider registration.

Every provider id the gateway can serve is registered once at start-up
with a fully built ``Provider``. Configuration files name a provider type
per integration and ``build_registry`` instantiates the matching class.
"""

from typing import Dict, Iterable, List, Optional, Type

from switchboard.config.settings import GatewayConfig, IntegrationConfig
from switchboard.exceptions import ConfigurationError, ProviderNotRegisteredError
from switchboard.logging_config import get_logger
from switchboard.providers.bacula import BaculaProvider
from switchboard.providers.base import Provider
from switchboard.providers.glpi import GLPIProvider
from switchboard.providers.guacamole import GuacamoleProvider
from switchboard.providers.unifi import UniFiProvider
from switchboard.providers.wazuh import WazuhProvider
from switchboard.providers.zabbix import ZabbixProvider

logger = get_logger(__name__)

PROVIDER_TYPES: Dict[str, Type[Provider]] = {
    ZabbixProvider.provider_type: ZabbixProvider,
    BaculaProvider.provider_type: BaculaProvider,
    UniFiProvider.provider_type: UniFiProvider,
    GuacamoleProvider.provider_type: GuacamoleProvider,
    WazuhProvider.provider_type: WazuhProvider,
    GLPIProvider.provider_type: GLPIProvider,
}


def build_provider(provider_type: str, config: Optional[GatewayConfig] = None) -> Provider:
    """
    Instantiate a bundled provider type.

    Args:
        provider_type: One of the keys of ``PROVIDER_TYPES``
        config: Gateway settings (default TTL, auth timeout, TLS verification)

    Raises:
        ConfigurationError: If the type is unknown
    """
    config = config or GatewayConfig()
    try:
        provider_cls = PROVIDER_TYPES[provider_type.lower()]
    except KeyError:
        raise ConfigurationError(
            f"Unknown provider type '{provider_type}'. "
            f"Available: {', '.join(sorted(PROVIDER_TYPES))}"
        ) from None

    return provider_cls(
        default_ttl_seconds=config.default_session_ttl_seconds,
        auth_timeout=config.auth_timeout_seconds,
        verify_ssl=config.verify_ssl,
    )


class ProviderRegistry:
    """Provider id to provider implementation mapping."""

    def __init__(self):
        self._providers: Dict[str, Provider] = {}

    def register(self, provider_id: str, provider: Provider) -> None:
        """
        Register ``provider`` under ``provider_id``.

        Raises:
            ConfigurationError: If the id is already registered
        """
        if provider_id in self._providers:
            raise ConfigurationError(f"Provider '{provider_id}' is already registered")
        self._providers[provider_id] = provider
        logger.info(
            f"Registered provider {provider_id} ({provider.provider_type}, "
            f"{len(provider.operations)} operations)"
        )

    def get(self, provider_id: str) -> Provider:
        try:
            return self._providers[provider_id]
        except KeyError:
            raise ProviderNotRegisteredError(provider_id) from None

    def provider_ids(self) -> List[str]:
        return sorted(self._providers)

    def __contains__(self, provider_id: str) -> bool:
        return provider_id in self._providers

    def __len__(self) -> int:
        return len(self._providers)


def build_registry(
    integrations: Iterable[IntegrationConfig],
    config: Optional[GatewayConfig] = None,
) -> ProviderRegistry:
    """Registry with one bundled provider per configured integration."""
    registry = ProviderRegistry()
    for integration in integrations:
        registry.register(integration.provider_id, build_provider(integration.type, config))
    return registry
