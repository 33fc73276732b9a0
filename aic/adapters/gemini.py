"""Adapter for Gemini CLI.

Gemini CLI supports:
- Non-interactive mode via a positional query argument
- Output formats: text, json, stream-json (via -o/--output-format)
- Session resume via -r/--resume
"""

from __future__ import annotations

import re

from aic.adapters.base import ToolAdapter

RESUME_FLAGS = ("--resume", "latest")


class GeminiAdapter(ToolAdapter):
    name = "gemini"
    display_name = "Gemini CLI"
    color = "bright_magenta"
    executable = "gemini"
    default_flags_value = ("-o", "text")

    # Gemini shows a bare > at the start of the line when ready for input.
    prompt_pattern = re.compile(r"^\s*>\s*$")
    idle_timeout = 1.5
    # First launch is slow (~8 seconds: auth and extension loading).
    startup_delay = 8.0
    response_marker = "✦"

    chrome_patterns = (
        re.compile(r"Loaded cached credentials", re.IGNORECASE),
        re.compile(r"^\s*Using:.*MCP servers?\s*$"),
        re.compile(r"^\s*~[/\\].*\(\w+\*?\).*$"),  # directory + branch status line
        re.compile(r"^\s*no sandbox.*$", re.IGNORECASE),
        re.compile(r"^\s*auto\s*$"),
        re.compile(r"^\s*Reading.*\(esc to cancel.*\)\s*$"),
        re.compile(r"\(esc to cancel, \d+s\)"),
        re.compile(r"^\s*>?\s*Type your message or @path.*$"),
        re.compile(r"^\s*\?\s*for shortcuts\s*$"),
        re.compile(r'^\s*Try ".*"\s*$'),
        re.compile(r"^\s*[✓✗]\s+\w+.*$"),  # tool status (✓ ReadFile, ✗ Shell, ...)
        re.compile(r"logged\s+in\s+with\s+google|/auth\b", re.IGNORECASE),
        re.compile(r"this\s+folder\s+is\s+untrusted", re.IGNORECASE),
        re.compile(r"(?:untrusted|trusted)\s+.*(?:/model|Auto\s*\()", re.IGNORECASE),
        re.compile(r"^\s*\d+\s+GEMINI\.md\s+files?", re.IGNORECASE),
    )

    def build_command(self, prompt: str, continuation: bool | None = None) -> list[str]:
        args = list(self.default_flags)
        # Resume the previous session once we have made a call.
        if self._continues(continuation):
            args.extend(RESUME_FLAGS)
        # The prompt is positional and must come last; cwd is set at spawn.
        args.append(prompt)
        return [*self.command, *args]

    def build_interactive_command(self, continuation: bool | None = None) -> list[str]:
        args = list(RESUME_FLAGS) if self._continues(continuation) else []
        return [*self.command, *args]

    def build_persistent_args(self, continuation: bool | None = None) -> list[str]:
        return list(RESUME_FLAGS) if self._continues(continuation) else []
