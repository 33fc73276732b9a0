"""Tool adapters for the CLIs aic can drive."""

from aic.adapters.base import ToolAdapter
from aic.adapters.claude import ClaudeAdapter
from aic.adapters.gemini import GeminiAdapter
from aic.adapters.registry import BUILTIN_ADAPTERS, AdapterRegistry, build_registry

__all__ = [
    "AdapterRegistry",
    "BUILTIN_ADAPTERS",
    "ClaudeAdapter",
    "GeminiAdapter",
    "ToolAdapter",
    "build_registry",
]
