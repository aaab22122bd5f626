"""Provider adapters and registry."""

from __future__ import annotations

from collections.abc import Callable

from ragfunnel.config import config
from ragfunnel.errors import NotConfiguredError

from .base import (
    ChatMessage,
    Completion,
    CompletionOptions,
    ModelInfo,
    Provider,
    TokenUsage,
)
from .ollama_provider import OllamaProvider
from .openai_provider import OpenAIProvider

ProviderFactory = Callable[[], Provider]


class ProviderRegistry:
    """Maps configuration strings to provider factories.

    Instances are created lazily on first use and reused afterwards.
    """

    def __init__(self) -> None:
        self._factories: dict[str, ProviderFactory] = {}
        self._instances: dict[str, Provider] = {}

    def register(self, name: str, factory: ProviderFactory) -> None:
        """Register (or replace) the factory for ``name``."""
        key = name.lower()
        self._factories[key] = factory
        self._instances.pop(key, None)

    def names(self) -> list[str]:
        return sorted(self._factories)

    def get(self, name: str | None = None) -> Provider:
        """Return the provider registered under ``name``.

        Args:
            name: Provider key; defaults to config.AI_PROVIDER.

        Returns:
            A configured provider instance.

        Raises:
            NotConfiguredError: If the name is unknown or the provider has no
                credentials.
        """
        key = (name or config.AI_PROVIDER).lower()
        if key not in self._instances:
            factory = self._factories.get(key)
            if factory is None:
                msg = f"Unsupported AI provider: {key}"
                raise NotConfiguredError(msg)
            self._instances[key] = factory()

        provider = self._instances[key]
        if not provider.is_configured():
            msg = f"Provider '{key}' is not configured"
            raise NotConfiguredError(msg)
        return provider


def default_registry() -> ProviderRegistry:
    """Build a registry with the built-in backends.

    Returns:
        Registry knowing ``openai`` and ``ollama``.
    """
    registry = ProviderRegistry()
    registry.register("openai", OpenAIProvider)
    registry.register("ollama", OllamaProvider)
    return registry


__all__ = [
    "ChatMessage",
    "Completion",
    "CompletionOptions",
    "ModelInfo",
    "OllamaProvider",
    "OpenAIProvider",
    "Provider",
    "ProviderFactory",
    "ProviderRegistry",
    "TokenUsage",
    "default_registry",
]
