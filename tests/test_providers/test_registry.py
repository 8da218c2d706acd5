"""Tests for ProviderRegistry."""

import pytest
from unittest.mock import Mock

from pvegate.models.config import ProvisionerConfig, ReadinessConfig
from pvegate.providers.registry import ProviderRegistry
from pvegate.providers.base import BaseProvider, ProviderStatus


class MockProvider(BaseProvider):
    """Mock provider for testing registry."""

    def __init__(self):
        self.initialized = False
        self.registry_ref = None
        self.config_ref = None

    async def initialize(self, config, registry):
        self.initialized = True
        self.config_ref = config
        self.registry_ref = registry

    async def status(self, spec):
        return ProviderStatus.UNKNOWN

    async def present(self, spec):
        pass

    async def absent(self, spec):
        pass

    async def validate_spec(self, spec):
        return True


class TestProviderRegistry:
    """Test ProviderRegistry initialization and injection."""

    @pytest.mark.asyncio
    async def test_initialization_injection(self):
        """Test that registry injects itself into providers."""
        registry = ProviderRegistry()
        registry._provider_classes = {"mock": MockProvider}

        mock_config = Mock()
        await registry.initialize(mock_config)

        provider = registry.get_provider("mock")
        assert isinstance(provider, MockProvider)
        assert provider.initialized is True
        assert provider.config_ref == mock_config
        assert provider.registry_ref == registry

    @pytest.mark.asyncio
    async def test_dependent_providers_are_wired(self):
        """Providers that run inside containers get the container provider."""
        registry = ProviderRegistry()
        config = ProvisionerConfig(readiness=ReadinessConfig(timeout=30))

        await registry.initialize(config)

        container_provider = registry.get_provider("container")
        assert container_provider.readiness.timeout == 30
        for name in ("guest", "firewall", "tunnel"):
            assert registry.get_provider(name)._container_provider is container_provider
        assert sorted(registry.list_providers()) == [
            "bridge", "container", "firewall", "guest", "template", "tunnel"
        ]

    def test_unknown_provider(self):
        assert ProviderRegistry().get_provider("nonexistent") is None
