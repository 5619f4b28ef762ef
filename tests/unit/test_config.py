"""
Unit tests for configuration loading.
"""

import pytest

from switchboard.config import settings
from switchboard.config.settings import (
    GatewayConfig,
    IntegrationConfig,
    load_config,
    parse_config,
)
from switchboard.exceptions import ConfigurationError

CONFIG_YAML = """
gateway:
  default_session_ttl_seconds: 1800
  invoke_timeout_seconds: 30

logging:
  level: DEBUG
  json_format: false

integrations:
  - provider_id: zabbix-prod
    type: Zabbix
    base_url: https://zabbix.example.com
    principal: Admin
    secret: ${SWITCHBOARD_TEST_SECRET}
    extra:
      auth_header: "true"
  - provider_id: unifi-office
    type: unifi
    base_url: https://unifi.example.com
    active: false
"""


class TestLoadConfig:

    def test_load_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SWITCHBOARD_TEST_SECRET", "from-env")
        path = tmp_path / "config.yaml"
        path.write_text(CONFIG_YAML)

        config = load_config(str(path))

        assert config.gateway.default_session_ttl_seconds == 1800
        assert config.gateway.invoke_timeout_seconds == 30
        assert config.gateway.auth_timeout_seconds == GatewayConfig().auth_timeout_seconds
        assert config.logging.level == "DEBUG"
        assert config.logging.json_format is False

        zabbix = config.integrations[0]
        assert zabbix.type == "zabbix"
        assert zabbix.secret == "from-env"
        assert zabbix.extra == {"auth_header": "true"}
        assert config.integrations[1].active is False

    def test_secret_not_in_repr(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SWITCHBOARD_TEST_SECRET", "from-env")
        path = tmp_path / "config.yaml"
        path.write_text(CONFIG_YAML)

        config = load_config(str(path))

        assert "from-env" not in repr(config)

    def test_explicit_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(str(tmp_path / "missing.yaml"))

    def test_missing_default_file_gives_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "DEFAULT_CONFIG_PATH", tmp_path / "absent.yaml")

        config = load_config()

        assert config.integrations == []
        assert config.gateway == GatewayConfig()

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("gateway: [unclosed\n")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_config(str(path))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")

        assert load_config(str(path)).integrations == []


class TestParseConfig:

    def test_unknown_gateway_key(self):
        with pytest.raises(ConfigurationError, match="session_ttl"):
            parse_config({"gateway": {"session_ttl": 10}})

    def test_root_must_be_mapping(self):
        with pytest.raises(ConfigurationError):
            parse_config(["not", "a", "mapping"])

    def test_missing_required_integration_field(self):
        with pytest.raises(ConfigurationError, match="base_url"):
            parse_config({"integrations": [{"provider_id": "x", "type": "wazuh"}]})

    def test_duplicate_provider_id(self):
        integration = {"provider_id": "x", "type": "wazuh", "base_url": "https://w.example.com"}

        with pytest.raises(ConfigurationError, match="Duplicate provider_id 'x'"):
            parse_config({"integrations": [integration, dict(integration)]})

    def test_extra_must_be_mapping(self):
        with pytest.raises(ConfigurationError, match="extra"):
            parse_config({"integrations": [
                {"provider_id": "x", "type": "wazuh", "base_url": "https://w.example.com", "extra": ["a"]},
            ]})

    @pytest.mark.parametrize("value", ["false", "no", 0, 1, None])
    def test_active_must_be_boolean(self, value):
        """Test that a quoted or numeric active flag is rejected instead of read as truthy."""
        with pytest.raises(ConfigurationError, match="'active' must be true or false"):
            parse_config({"integrations": [
                {"provider_id": "x", "type": "wazuh", "base_url": "https://w.example.com", "active": value},
            ]})

    def test_active_from_yaml_string(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "integrations:\n"
            "  - provider_id: x\n"
            "    type: wazuh\n"
            "    base_url: https://w.example.com\n"
            "    active: \"false\"\n"
        )

        with pytest.raises(ConfigurationError, match="active"):
            load_config(str(path))

    @pytest.mark.asyncio
    async def test_credential_store(self):
        config = parse_config({"integrations": [
            {"provider_id": "backup", "type": "bacula", "base_url": "https://bacula.example.com/",
             "principal": "admin", "secret": "pw", "extra": {"verify_ssl": False}},
        ]})

        credential = await config.credential_store().get_credential("backup")

        assert credential.root_url == "https://bacula.example.com"
        assert credential.principal == "admin"
        assert credential.secret == "pw"
        assert credential.flag("verify_ssl", True) is False

    def test_to_credential(self):
        integration = IntegrationConfig(
            provider_id="guac",
            type="guacamole",
            base_url="https://remote.example.com",
            extra={"data_source": "mysql"},
            active=False,
        )

        credential = integration.to_credential()

        assert credential.option("data_source") == "mysql"
        assert credential.active is False
