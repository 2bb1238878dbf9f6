"""Registry of provider adapters keyed by vendor name."""

from __future__ import annotations

from typing import Iterable

from chatloom.config import ProviderConfig
from chatloom.errors import ProviderNotFoundError
from chatloom.log import get_logger
from chatloom.providers.base import ProviderAdapter
from chatloom.providers.transport import Transport

logger = get_logger(__name__)


class ProviderRegistry:
    """Name -> adapter lookup. Each instance is independent; nothing is global.

    Adapters may declare aliases (``claude`` for ``anthropic``); aliases resolve
    on lookup but are not listed by ``names()``.
    """

    def __init__(self, adapters: Iterable[ProviderAdapter] = ()):
        self._adapters: dict[str, ProviderAdapter] = {}
        self._aliases: dict[str, str] = {}
        for adapter in adapters:
            self.register(adapter)

    @classmethod
    def with_defaults(cls, transport: Transport) -> ProviderRegistry:
        """Registry pre-populated with the built-in vendors."""
        from chatloom.providers.anthropic import AnthropicAdapter
        from chatloom.providers.local import LocalAdapter
        from chatloom.providers.moonshot import MoonshotAdapter
        from chatloom.providers.openai import OpenAIAdapter

        return cls(
            [
                OpenAIAdapter(transport),
                AnthropicAdapter(transport),
                MoonshotAdapter(transport),
                LocalAdapter(transport),
            ]
        )

    def register(self, adapter: ProviderAdapter) -> None:
        self._adapters[adapter.name] = adapter
        for alias in adapter.aliases:
            self._aliases[alias] = adapter.name
        logger.debug("provider_registered", provider=adapter.name, aliases=list(adapter.aliases))

    def unregister(self, name: str) -> None:
        name = self._resolve(name)
        self._adapters.pop(name, None)
        self._aliases = {alias: target for alias, target in self._aliases.items() if target != name}

    def get(self, name: str) -> ProviderAdapter:
        adapter = self._adapters.get(self._resolve(name))
        if adapter is None:
            raise ProviderNotFoundError(name, self.names())
        return adapter

    def get_for(self, config: ProviderConfig) -> ProviderAdapter:
        return self.get(config.provider)

    def names(self) -> list[str]:
        """Canonical vendor names, without aliases."""
        return list(self._adapters.keys())

    def _resolve(self, name: str) -> str:
        return self._aliases.get(name, name)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self._resolve(name) in self._adapters
