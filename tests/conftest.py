"""
Shared fixtures for Switchboard tests.
"""

import pytest

from helpers import CountingAuthenticator, FakeTransport, InventoryProvider
from switchboard.config.settings import GatewayConfig
from switchboard.core.credentials import InMemoryCredentialStore
from switchboard.core.models import Credential
from switchboard.gateway.client import GatewayClient
from switchboard.providers.registry import ProviderRegistry


@pytest.fixture
def credential():
    """Credential of the inventory test provider."""
    return Credential(
        provider_id="inventory",
        base_url="https://inventory.example.com/",
        principal="svc-gateway",
        secret="s3cret",
    )


@pytest.fixture
def authenticator():
    return CountingAuthenticator()


@pytest.fixture
def provider(authenticator):
    return InventoryProvider(authenticator)


@pytest.fixture
def credential_store(credential):
    return InMemoryCredentialStore([credential])


@pytest.fixture
def registry(provider):
    registry = ProviderRegistry()
    registry.register("inventory", provider)
    return registry


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def gateway_config():
    return GatewayConfig(auth_timeout_seconds=2.0, invoke_timeout_seconds=5.0)


@pytest.fixture
def gateway(credential_store, registry, gateway_config, transport):
    """GatewayClient wired to the fake transport."""
    return GatewayClient(
        credential_store=credential_store,
        registry=registry,
        config=gateway_config,
        transport=transport,
    )
