from __future__ import annotations

from typing import Dict

from threadbot.adapters.base import BasePlatformAdapter
from threadbot.core.errors import ConfigurationError, UnregisteredPlatform


class AdapterRegistry:
    def __init__(self) -> None:
        self._adapters: Dict[str, BasePlatformAdapter] = {}

    def register_adapter(self, adapter: BasePlatformAdapter) -> None:
        if adapter.platform in self._adapters:
            raise ConfigurationError(
                f"Platform adapter already registered: {adapter.platform}"
            )
        self._adapters[adapter.platform] = adapter

    def get_adapter(self, platform: str) -> BasePlatformAdapter | None:
        return self._adapters.get(platform)

    def require_adapter(self, platform: str) -> BasePlatformAdapter:
        adapter = self._adapters.get(platform)
        if adapter is None:
            raise UnregisteredPlatform(platform)
        return adapter

    def list_adapters(self) -> list[BasePlatformAdapter]:
        return list(self._adapters.values())

    def platforms(self) -> list[str]:
        return list(self._adapters)
