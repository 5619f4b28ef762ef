"""
Configuration management for Switchboard.

Loads configuration from a YAML file into dataclasses and provides sensible
defaults for every gateway setting. String values in the ``integrations``
section support ``${ENV_VAR}`` expansion so secrets can stay out of the
file.

Example config.yaml::

    gateway:
      default_session_ttl_seconds: 3000
      auth_timeout_seconds: 20
      invoke_timeout_seconds: 60

    logging:
      level: INFO
      json_format: false

    integrations:
      - provider_id: zabbix-prod
        type: zabbix
        base_url: https://zabbix.example.com
        principal: Admin
        secret: ${ZABBIX_PASSWORD}
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from switchboard._version import __version__
from switchboard.core.credentials import InMemoryCredentialStore
from switchboard.core.models import Credential
from switchboard.exceptions import ConfigurationError
from switchboard.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".switchboard" / "config.yaml"


@dataclass
class GatewayConfig:
    """
    Gateway behaviour settings.

    Attributes:
        default_session_ttl_seconds: Session lifetime when the provider gives no expiry signal
        auth_timeout_seconds: Upper bound for one authentication (including single-flight waiters)
        invoke_timeout_seconds: Default deadline for a whole invoke() call
        reachability_timeout_seconds: Timeout of the unauthenticated diagnostics request
        max_sessions: Maximum number of cached sessions (LRU beyond that)
        max_connections: aiohttp connection pool size
        verify_ssl: Verify TLS certificates unless a credential sets verify_ssl=false
        user_agent: User-Agent header sent to remote systems
    """
    default_session_ttl_seconds: int = 3000
    auth_timeout_seconds: float = 20.0
    invoke_timeout_seconds: float = 60.0
    reachability_timeout_seconds: float = 10.0
    max_sessions: int = 1024
    max_connections: int = 100
    verify_ssl: bool = True
    user_agent: str = f"Switchboard-Gateway/{__version__}"


@dataclass
class LoggingConfig:
    """Logging settings passed to ``setup_logging``."""
    level: str = "INFO"
    file: Optional[str] = None
    json_format: bool = True


@dataclass
class IntegrationConfig:
    """One integration record declared in the configuration file."""
    provider_id: str
    type: str
    base_url: str
    principal: str = ""
    secret: str = field(default="", repr=False)
    extra: Dict[str, str] = field(default_factory=dict)
    active: bool = True

    def to_credential(self) -> Credential:
        return Credential(
            provider_id=self.provider_id,
            base_url=self.base_url,
            principal=self.principal,
            secret=self.secret,
            extra=dict(self.extra),
            active=self.active,
        )


@dataclass
class SwitchboardConfig:
    """Top-level configuration."""
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    integrations: List[IntegrationConfig] = field(default_factory=list)

    def credential_store(self) -> InMemoryCredentialStore:
        """Credential store holding every declared integration."""
        return InMemoryCredentialStore(
            integration.to_credential() for integration in self.integrations
        )


def get_default_config() -> SwitchboardConfig:
    """Return a configuration with all defaults and no integrations."""
    return SwitchboardConfig()


def _expand(value: Any) -> Any:
    if isinstance(value, str):
        return os.path.expandvars(value)
    return value


def _build_section(cls, data: Any, section: str):
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigurationError(f"Section '{section}' must be a mapping")

    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigurationError(
            f"Unknown keys in section '{section}': {', '.join(sorted(unknown))}"
        )
    try:
        return cls(**data)
    except TypeError as e:
        raise ConfigurationError(f"Invalid section '{section}': {e}") from e


def _build_integration(data: Any, index: int) -> IntegrationConfig:
    if not isinstance(data, dict):
        raise ConfigurationError(f"Integration #{index} must be a mapping")

    for required in ("provider_id", "type", "base_url"):
        if not data.get(required):
            raise ConfigurationError(f"Integration #{index} is missing '{required}'")

    extra = data.get("extra") or {}
    if not isinstance(extra, dict):
        raise ConfigurationError(f"Integration #{index}: 'extra' must be a mapping")

    active = data.get("active", True)
    if not isinstance(active, bool):
        raise ConfigurationError(
            f"Integration #{index}: 'active' must be true or false, got {active!r}"
        )

    return IntegrationConfig(
        provider_id=str(data["provider_id"]),
        type=str(data["type"]).lower(),
        base_url=_expand(str(data["base_url"])),
        principal=_expand(str(data.get("principal", ""))),
        secret=_expand(str(data.get("secret", ""))),
        extra={str(k): _expand(str(v)) for k, v in extra.items()},
        active=active,
    )


def parse_config(data: Any) -> SwitchboardConfig:
    """
    Build a ``SwitchboardConfig`` from already-parsed YAML data.

    Raises:
        ConfigurationError: If the data has the wrong shape
    """
    if data is None:
        return get_default_config()
    if not isinstance(data, dict):
        raise ConfigurationError("Configuration root must be a mapping")

    integrations_data = data.get("integrations") or []
    if not isinstance(integrations_data, list):
        raise ConfigurationError("'integrations' must be a list")

    integrations = [
        _build_integration(item, index)
        for index, item in enumerate(integrations_data)
    ]

    seen = set()
    for integration in integrations:
        if integration.provider_id in seen:
            raise ConfigurationError(
                f"Duplicate provider_id '{integration.provider_id}'"
            )
        seen.add(integration.provider_id)

    return SwitchboardConfig(
        gateway=_build_section(GatewayConfig, data.get("gateway"), "gateway"),
        logging=_build_section(LoggingConfig, data.get("logging"), "logging"),
        integrations=integrations,
    )


def load_config(config_path: Optional[str] = None) -> SwitchboardConfig:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to the configuration file. Defaults to
            ``~/.switchboard/config.yaml``.

    Returns:
        Parsed configuration. Defaults are returned when the default file
        does not exist.

    Raises:
        ConfigurationError: If an explicitly given file is missing, or any
            file is not valid YAML or has the wrong shape
    """
    path = Path(config_path).expanduser() if config_path else DEFAULT_CONFIG_PATH

    if not path.exists():
        if config_path:
            raise ConfigurationError(f"Configuration file not found: {path}")
        logger.debug(f"No configuration file at {path}, using defaults")
        return get_default_config()

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e

    config = parse_config(data)
    logger.info(
        f"Loaded configuration from {path} "
        f"({len(config.integrations)} integrations)"
    )
    return config
