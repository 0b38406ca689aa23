"""
Provider registry.

Maps user-chosen names to configured provider instances, and host names
(``"anthropic"``, ``"openai"``) to factories that build providers from
:class:`ProviderSettings`.

Example:
    from chat_tree_engine.providers.registry import ProviderRegistry

    registry = ProviderRegistry.with_builtin_hosts()
    provider = registry.create(ProviderSettings(name="fast", host="anthropic"))
    registry.register("fast", provider)
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator

from chat_tree_engine.errors import AlreadyExistsError, NodeNotFoundError
from chat_tree_engine.logging import get_logger
from chat_tree_engine.providers.base import Provider, ProviderSettings

logger = get_logger("providers.registry")

# (settings) -> Provider
ProviderFactory = Callable[[ProviderSettings], Provider]


def _anthropic_factory(settings: ProviderSettings) -> Provider:
    from chat_tree_engine.providers.anthropic import AnthropicProvider

    return AnthropicProvider(settings)


def _openai_factory(settings: ProviderSettings) -> Provider:
    from chat_tree_engine.providers.openai import OpenAIProvider

    return OpenAIProvider(settings)


BUILTIN_FACTORIES: dict[str, ProviderFactory] = {
    "anthropic": _anthropic_factory,
    "openai": _openai_factory,
}


class ProviderRegistry:
    """
    Named providers plus host factories.

    Thread Safety:
        All reads and writes of the maps go through one lock. The lock is
        never held while a provider is doing I/O.
    """

    def __init__(self) -> None:
        self._providers: dict[str, Provider] = {}
        self._factories: dict[str, ProviderFactory] = {}
        self._lock = threading.Lock()

    @classmethod
    def with_builtin_hosts(cls) -> ProviderRegistry:
        """Registry with the ``anthropic`` and ``openai`` host factories."""
        registry = cls()
        for host, factory in BUILTIN_FACTORIES.items():
            registry.register_factory(host, factory)
        return registry

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    def register_factory(self, host: str, factory: ProviderFactory) -> None:
        if not host:
            raise ValueError("Host name must not be empty")
        with self._lock:
            if host in self._factories:
                logger.debug("Overriding provider factory: %s", host)
            self._factories[host] = factory
        logger.debug("Registered provider factory: %s", host)

    @property
    def hosts(self) -> list[str]:
        with self._lock:
            return sorted(self._factories)

    def create(self, settings: ProviderSettings) -> Provider:
        """
        Build a provider for ``settings.host``.

        Raises:
            NodeNotFoundError: If no factory is registered for the host.
        """
        with self._lock:
            factory = self._factories.get(settings.host)
        if factory is None:
            raise NodeNotFoundError(f"Unknown provider host: {settings.host!r}")
        return factory(settings)

    # ------------------------------------------------------------------
    # Named providers
    # ------------------------------------------------------------------

    def register(self, name: str, provider: Provider, replace: bool = False) -> None:
        """
        Register *provider* under *name*.

        Raises:
            ValueError: If *name* is empty
            AlreadyExistsError: If *name* is taken and *replace* is false
        """
        if not name:
            raise ValueError("Provider name must not be empty")
        with self._lock:
            if name in self._providers and not replace:
                raise AlreadyExistsError(f"Provider [{name}] already exists")
            self._providers[name] = provider
        logger.debug("Registered provider: %s (host=%s)", name, provider.settings.host)

    def unregister(self, name: str) -> bool:
        with self._lock:
            return self._providers.pop(name, None) is not None

    def get(self, name: str) -> Provider:
        """
        Look up a provider by name.

        Raises:
            NodeNotFoundError: If nothing is registered under *name*.
        """
        with self._lock:
            provider = self._providers.get(name)
        if provider is None:
            raise NodeNotFoundError(f"Provider [{name}] not found")
        return provider

    def __getitem__(self, name: str) -> Provider:
        return self.get(name)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._providers

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def __len__(self) -> int:
        with self._lock:
            return len(self._providers)

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._providers)
