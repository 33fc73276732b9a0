"""Configuration schema for aic."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

BUILTIN_TOOLS = ("claude", "gemini")


class ToolConfig(BaseModel):
    """Overrides for one CLI tool."""

    model_config = ConfigDict(populate_by_name=True)

    command: str | None = None
    default_flags: list[str] | None = Field(default=None, alias="defaultFlags")


class SessionConfig(BaseModel):
    """Tuning for persistent PTY sessions."""

    model_config = ConfigDict(populate_by_name=True)

    turn_timeout: float = Field(default=300.0, alias="turnTimeout", gt=0)
    cols: int = Field(default=120, ge=20)
    rows: int = Field(default=40, ge=5)


def _default_tools() -> dict[str, ToolConfig]:
    return {
        "claude": ToolConfig(command="claude", default_flags=["-p", "--output-format", "text"]),
        "gemini": ToolConfig(command="gemini", default_flags=["-o", "text"]),
    }


class Config(BaseModel):
    """Root configuration, stored as camelCase JSON."""

    model_config = ConfigDict(populate_by_name=True)

    default_tool: str = Field(default="claude", alias="defaultTool")
    tools: dict[str, ToolConfig] = Field(default_factory=_default_tools)
    session: SessionConfig = Field(default_factory=SessionConfig)

    def get_tool_config(self, name: str) -> ToolConfig | None:
        return self.tools.get(name)

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
