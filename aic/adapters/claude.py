"""Adapter for Claude Code.

- Non-interactive mode via -p/--print with --output-format text
- Continue the most recent conversation via -c/--continue
- Answers are rendered behind a ⏺ bullet in the interactive UI
"""

from __future__ import annotations

import re

from aic.adapters.base import ToolAdapter

CONTINUE_FLAGS = ("--continue",)

_TOOL_NAMES = (
    "Read|Write|Edit|MultiEdit|Update|Bash|Search|Glob|Grep|List|LS|Task|Exec|"
    "WebFetch|WebSearch|TodoRead|TodoWrite|NotebookEdit"
)


class ClaudeAdapter(ToolAdapter):
    name = "claude"
    display_name = "Claude Code"
    color = "bright_cyan"
    executable = "claude"
    default_flags_value = ("-p", "--output-format", "text")

    prompt_pattern = re.compile(r"^\s*[>❯]\s*$")
    idle_timeout = 2.0
    startup_delay = 3.0
    response_marker = "⏺"

    chrome_patterns = (
        # ✻ Thinking… (esc to interrupt)
        re.compile(r"esc to interrupt", re.IGNORECASE),
        re.compile(rf"^\s*(?:⏺\s*)?(?:{_TOOL_NAMES})\s*\(.*\)\s*$"),
        re.compile(r"^\s*⎿.*$"),  # tool result lines
        re.compile(r"^\s*\?\s*for shortcuts\s*$"),
        re.compile(r'^\s*>?\s*Try ".*"\s*$'),
        re.compile(r"auto-accept edits|bypass permissions|plan mode on", re.IGNORECASE),
        re.compile(r"^\s*✻\s*Welcome to Claude Code", re.IGNORECASE),
        re.compile(r"/help for help|/status for your current setup", re.IGNORECASE),
        re.compile(r"^\s*cwd:\s", re.IGNORECASE),
        re.compile(
            r"yes,?\s+i\s+trust\s+this\s+folder|quick\s+safety\s+check|"
            r"do\s+you\s+trust\s+the\s+files|accessing\s+workspace",
            re.IGNORECASE,
        ),
        re.compile(r"^\s*\d{1,3}%\s+context\s+left|context\s+left\s+until\s+auto-compact", re.IGNORECASE),
    )

    def build_command(self, prompt: str, continuation: bool | None = None) -> list[str]:
        args = list(self.default_flags)
        if self._continues(continuation):
            args.extend(CONTINUE_FLAGS)
        args.append(prompt)
        return [*self.command, *args]

    def build_interactive_command(self, continuation: bool | None = None) -> list[str]:
        args = list(CONTINUE_FLAGS) if self._continues(continuation) else []
        return [*self.command, *args]

    def build_persistent_args(self, continuation: bool | None = None) -> list[str]:
        return list(CONTINUE_FLAGS) if self._continues(continuation) else []
