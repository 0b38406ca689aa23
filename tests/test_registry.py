"""Tests for the provider registry."""

from __future__ import annotations

import pytest

from chat_tree_engine.errors import AlreadyExistsError, NodeNotFoundError
from chat_tree_engine.providers.base import ProviderSettings
from chat_tree_engine.providers.registry import ProviderRegistry

from conftest import ScriptedProvider


class TestFactories:
    def test_builtin_hosts(self) -> None:
        assert ProviderRegistry.with_builtin_hosts().hosts == ["anthropic", "openai"]

    def test_create(self, registry: ProviderRegistry) -> None:
        provider = registry.create(ProviderSettings(name="x", host="scripted", max_tokens=42))
        assert isinstance(provider, ScriptedProvider)
        assert provider.settings.max_tokens == 42

    def test_create_unknown_host(self, registry: ProviderRegistry) -> None:
        with pytest.raises(NodeNotFoundError, match="nowhere"):
            registry.create(ProviderSettings(name="x", host="nowhere"))

    def test_empty_host_rejected(self, registry: ProviderRegistry) -> None:
        with pytest.raises(ValueError):
            registry.register_factory("", lambda s: ScriptedProvider(s))

    def test_override_factory(self, registry: ProviderRegistry) -> None:
        marker = ScriptedProvider()
        registry.register_factory("scripted", lambda s: marker)
        assert registry.create(ProviderSettings(host="scripted")) is marker


class TestNamedProviders:
    """Tests for named provider registration."""

    def test_register_and_get(self, registry: ProviderRegistry) -> None:
        provider = ScriptedProvider()
        registry.register("fast", provider)
        assert registry.get("fast") is provider
        assert registry["fast"] is provider
        assert "fast" in registry
        assert len(registry) == 1

    def test_duplicate(self, registry: ProviderRegistry) -> None:
        registry.register("fast", ScriptedProvider())
        with pytest.raises(AlreadyExistsError):
            registry.register("fast", ScriptedProvider())

    def test_replace(self, registry: ProviderRegistry) -> None:
        registry.register("fast", ScriptedProvider())
        replacement = ScriptedProvider()
        registry.register("fast", replacement, replace=True)
        assert registry.get("fast") is replacement

    def test_empty_name(self, registry: ProviderRegistry) -> None:
        with pytest.raises(ValueError):
            registry.register("", ScriptedProvider())

    def test_missing(self, registry: ProviderRegistry) -> None:
        with pytest.raises(NodeNotFoundError):
            registry.get("missing")
        with pytest.raises(LookupError):
            registry["missing"]

    def test_unregister(self, registry: ProviderRegistry) -> None:
        registry.register("fast", ScriptedProvider())
        assert registry.unregister("fast") is True
        assert registry.unregister("fast") is False
        assert "fast" not in registry

    def test_names_sorted(self, registry: ProviderRegistry) -> None:
        for name in ("b", "a", "c"):
            registry.register(name, ScriptedProvider())
        assert registry.names() == ["a", "b", "c"]
        assert list(registry) == ["a", "b", "c"]
