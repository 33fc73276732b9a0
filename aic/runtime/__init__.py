"""PTY processes, persistent sessions and response extraction."""

from aic.runtime.backend import PtyProcess, spawn_process, supports_pty
from aic.runtime.extractor import ExtractionRules, clean_response
from aic.runtime.oneshot import CommandResult, run_command, send_oneshot
from aic.runtime.session import Lifecycle, PendingRequest, PersistentSession

__all__ = [
    "CommandResult",
    "ExtractionRules",
    "Lifecycle",
    "PendingRequest",
    "PersistentSession",
    "PtyProcess",
    "clean_response",
    "run_command",
    "send_oneshot",
    "spawn_process",
    "supports_pty",
]
