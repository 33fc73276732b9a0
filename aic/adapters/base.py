"""Tool adapter contract.

An adapter describes how to drive one external AI CLI: how to build its
command lines, when its terminal looks ready for input, and how to turn its
raw terminal output into answer text. Adapters hold no process state; the
only thing that changes on an adapter is the continuation flag.
"""

from __future__ import annotations

import re
import shlex
from abc import ABC, abstractmethod
from typing import ClassVar, Sequence

from aic.runtime.backend import supports_pty
from aic.runtime.extractor import ExtractionRules, clean_response
from aic.runtime.oneshot import command_exists


class ToolAdapter(ABC):
    """Capability interface implemented once per supported tool."""

    name: ClassVar[str]
    display_name: ClassVar[str]
    color: ClassVar[str] = "white"
    executable: ClassVar[str]
    default_flags_value: ClassVar[tuple[str, ...]] = ()

    # Matched against one complete output line that means "ready for input".
    prompt_pattern: ClassVar[re.Pattern[str]]
    # Seconds of silence after which output is presumed complete.
    idle_timeout: ClassVar[float] = 1.5
    # Grace period between spawn and the first input.
    startup_delay: ClassVar[float] = 0.0
    # Leading glyph the tool puts in front of its answer, if any.
    response_marker: ClassVar[str | None] = None
    chrome_patterns: ClassVar[tuple[re.Pattern[str], ...]] = ()
    needs_tty: ClassVar[bool] = True

    def __init__(
        self,
        command: str | None = None,
        default_flags: Sequence[str] | None = None,
    ) -> None:
        self.command: list[str] = shlex.split(command) if command else [self.executable]
        self.default_flags: list[str] = (
            list(default_flags) if default_flags is not None else list(self.default_flags_value)
        )
        self.has_session = False

    def __repr__(self) -> str:
        return f"{type(self).__name__}(command={self.command!r}, has_session={self.has_session})"

    # ------------------------------------------------------------------
    # Command construction
    # ------------------------------------------------------------------

    def _continues(self, continuation: bool | None) -> bool:
        return self.has_session if continuation is None else continuation

    @abstractmethod
    def build_command(self, prompt: str, continuation: bool | None = None) -> list[str]:
        """One-shot invocation that answers ``prompt`` and exits."""

    @abstractmethod
    def build_interactive_command(self, continuation: bool | None = None) -> list[str]:
        """Invocation for driving the tool in its own interactive UI."""

    @abstractmethod
    def build_persistent_args(self, continuation: bool | None = None) -> list[str]:
        """Extra arguments for a long-lived background PTY session."""

    def persistent_command(self, continuation: bool | None = None) -> list[str]:
        return [*self.command, *self.build_persistent_args(continuation)]

    # ------------------------------------------------------------------
    # Output handling
    # ------------------------------------------------------------------

    @property
    def rules(self) -> ExtractionRules:
        return ExtractionRules(
            chrome_patterns=(*self.chrome_patterns, self.prompt_pattern),
            marker=self.response_marker,
        )

    def clean_response(self, raw: str | bytes) -> str:
        """Pure and idempotent; never raises."""
        return clean_response(raw, self.rules)

    def is_available(self, interactive: bool = False) -> bool:
        """Probe whether the executable resolves on this host."""
        if not command_exists(self.command[0]):
            return False
        if interactive and self.needs_tty:
            return supports_pty()
        return True

    def reset_context(self) -> None:
        self.has_session = False
