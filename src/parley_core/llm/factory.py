"""Provider dispatch table."""

from collections.abc import Callable
from typing import Any

from parley_core.exceptions import UnknownProviderError
from parley_core.llm.base import ProviderAdapter
from parley_core.llm.mock import MockAdapter
from parley_core.llm.openai import OpenAIAdapter

AdapterFactory = Callable[..., ProviderAdapter]

ADAPTERS: dict[str, AdapterFactory] = {
    "openai": OpenAIAdapter,
    "mock": MockAdapter,
}


def create_adapter(provider: str, **kwargs: Any) -> ProviderAdapter:
    """Create the adapter for a provider kind.

    Args:
        provider: Provider kind ("openai" or "mock")
        **kwargs: Adapter-specific options (``reader``, ``streaming`` for openai)

    Returns:
        Configured adapter

    Raises:
        UnknownProviderError: If no adapter is registered for ``provider``
    """
    factory = ADAPTERS.get(provider)
    if factory is None:
        available = ", ".join(sorted(ADAPTERS))
        raise UnknownProviderError(f"Unknown LLM provider: {provider}. Available: {available}")
    if provider == "mock":
        return factory()
    return factory(**kwargs)


class AdapterSet:
    """Lazily created adapters, one per provider kind.

    Example:
        adapters = AdapterSet(streaming=config.streaming)
        adapter = adapters.get("openai")
    """

    def __init__(self, **adapter_kwargs: Any) -> None:
        self._kwargs = adapter_kwargs
        self._adapters: dict[str, ProviderAdapter] = {}

    def get(self, provider: str) -> ProviderAdapter:
        adapter = self._adapters.get(provider)
        if adapter is None:
            adapter = create_adapter(provider, **self._kwargs)
            self._adapters[provider] = adapter
        return adapter

    def add(self, adapter: ProviderAdapter) -> None:
        """Register an adapter instance under its own provider kind."""
        self._adapters[adapter.provider_kind] = adapter
