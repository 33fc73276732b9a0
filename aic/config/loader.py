"""Configuration loading utilities."""

from __future__ import annotations

import json
import os
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from aic.config.schema import BUILTIN_TOOLS, Config

ENV_DEFAULT_TOOL = "AIC_DEFAULT_TOOL"


def get_config_dir() -> Path:
    """Get the aic home directory."""
    return Path.home() / ".aic"


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return get_config_dir() / "config.json"


def ensure_config_dir() -> Path:
    path = get_config_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file or fall back to defaults.

    The ``tools`` mapping is merged per tool: a tool missing from the file
    keeps its default entry.
    """
    path = config_path or get_config_path()
    defaults = Config()
    if not path.exists():
        return defaults

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError("top-level value must be an object")
        tools = {
            **defaults.model_dump(by_alias=True)["tools"],
            **(data.get("tools") or {}),
        }
        return Config.model_validate({**data, "tools": tools})
    except (OSError, ValueError, ValidationError) as exc:
        # json.JSONDecodeError is a ValueError.
        logger.warning(f"Failed to load config, using defaults ({path}: {exc})")
        return defaults


def save_config(config: Config, config_path: Path | None = None) -> Path:
    """Write configuration as 2-space indented JSON."""
    if config_path is None:
        path = ensure_config_dir() / "config.json"
    else:
        path = config_path
        path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config.to_json_dict(), f, indent=2, ensure_ascii=False)
        f.write("\n")
    return path


def get_default_tool(config_path: Path | None = None) -> str:
    """Default tool: a valid $AIC_DEFAULT_TOOL wins, then the file, then claude."""
    env_tool = os.environ.get(ENV_DEFAULT_TOOL, "").strip().lower()
    if env_tool in BUILTIN_TOOLS:
        return env_tool
    if env_tool:
        logger.debug(f"[config] ignoring {ENV_DEFAULT_TOOL}={env_tool!r}")
    return load_config(config_path).default_tool or "claude"


def set_default_tool(tool: str, config_path: Path | None = None) -> tuple[bool, str]:
    """Persist ``tool`` as the default. Returns ``(success, message)``."""
    normalized = tool.strip().lower()
    if normalized not in BUILTIN_TOOLS:
        return False, f'Invalid tool "{tool}". Valid options: {", ".join(BUILTIN_TOOLS)}'

    config = load_config(config_path)
    config.default_tool = normalized
    save_config(config, config_path)
    return True, f'Default tool set to "{normalized}". Will be used on next launch.'
