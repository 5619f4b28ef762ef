"""Configuration loading for Switchboard."""

from switchboard.config.settings import (
    DEFAULT_CONFIG_PATH,
    GatewayConfig,
    IntegrationConfig,
    LoggingConfig,
    SwitchboardConfig,
    get_default_config,
    load_config,
    parse_config,
)

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "GatewayConfig",
    "IntegrationConfig",
    "LoggingConfig",
    "SwitchboardConfig",
    "get_default_config",
    "load_config",
    "parse_config",
]
