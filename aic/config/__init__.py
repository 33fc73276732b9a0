"""Configuration module for aic."""

from aic.config.loader import (
    get_config_dir,
    get_config_path,
    get_default_tool,
    load_config,
    save_config,
    set_default_tool,
)
from aic.config.schema import BUILTIN_TOOLS, Config, SessionConfig, ToolConfig

__all__ = [
    "BUILTIN_TOOLS",
    "Config",
    "SessionConfig",
    "ToolConfig",
    "get_config_dir",
    "get_config_path",
    "get_default_tool",
    "load_config",
    "save_config",
    "set_default_tool",
]
