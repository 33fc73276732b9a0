"""Registry of supported CLI tools."""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterator

from aic.adapters.base import ToolAdapter
from aic.adapters.claude import ClaudeAdapter
from aic.adapters.gemini import GeminiAdapter
from aic.errors import UnknownTool

if TYPE_CHECKING:
    from aic.config.schema import Config

BUILTIN_ADAPTERS: dict[str, type[ToolAdapter]] = {
    ClaudeAdapter.name: ClaudeAdapter,
    GeminiAdapter.name: GeminiAdapter,
}


class AdapterRegistry:
    """Ordered name -> adapter mapping."""

    def __init__(self) -> None:
        self._adapters: dict[str, ToolAdapter] = {}

    def register(self, adapter: ToolAdapter) -> None:
        self._adapters[adapter.name] = adapter

    def get(self, name: str) -> ToolAdapter:
        key = (name or "").strip().lower()
        if key not in self._adapters:
            raise UnknownTool(name, self.names())
        return self._adapters[key]

    def get_all(self) -> list[ToolAdapter]:
        return list(self._adapters.values())

    def names(self) -> list[str]:
        return list(self._adapters)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip().lower() in self._adapters

    def __iter__(self) -> Iterator[ToolAdapter]:
        return iter(self._adapters.values())

    def __len__(self) -> int:
        return len(self._adapters)


def build_registry(config: "Config | None" = None) -> AdapterRegistry:
    """Register every built-in adapter, applying per-tool command overrides."""
    registry = AdapterRegistry()
    for key, adapter_cls in BUILTIN_ADAPTERS.items():
        tool_cfg = config.get_tool_config(key) if config is not None else None
        if tool_cfg is None:
            registry.register(adapter_cls())
            continue
        registry.register(adapter_cls(command=tool_cfg.command, default_flags=tool_cfg.default_flags))
    return registry
