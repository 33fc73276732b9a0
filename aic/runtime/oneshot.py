"""Non-interactive (one-shot) tool invocation without a terminal."""

from __future__ import annotations

import asyncio
import shutil
import subprocess
from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

from loguru import logger

from aic.errors import NonZeroExit, SpawnFailure
from aic.runtime.extractor import collapse_blank_lines, strip_control_sequences

if TYPE_CHECKING:
    from aic.adapters.base import ToolAdapter


@dataclass
class CommandResult:
    """Captured output of one finished child process."""

    stdout: str
    stderr: str
    exit_code: int


def command_exists(command: str) -> bool:
    """Return True when ``command`` resolves on PATH."""
    return bool(command) and shutil.which(command) is not None


def run_command(
    argv: Sequence[str],
    cwd: str | None = None,
    timeout_s: float | None = None,
    label: str | None = None,
) -> CommandResult:
    """Run ``argv`` to completion with captured output. Blocking."""
    name = label or (argv[0] if argv else "?")
    try:
        completed = subprocess.run(
            list(argv),
            stdin=subprocess.DEVNULL,
            cwd=cwd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="ignore",
            timeout=timeout_s,
        )
    except (FileNotFoundError, PermissionError) as exc:
        raise SpawnFailure(name, str(exc)) from exc
    except subprocess.TimeoutExpired as exc:
        raise NonZeroExit(name, None, f"timed out after {timeout_s}s") from exc

    return CommandResult(
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
        exit_code=completed.returncode,
    )


async def send_oneshot(
    adapter: "ToolAdapter",
    prompt: str,
    cwd: str | None = None,
    timeout_s: float | None = None,
) -> str:
    """Ask ``adapter``'s tool one question non-interactively.

    A non-zero exit raises ``NonZeroExit`` carrying the trimmed stderr (or
    stdout when stderr is empty). Success marks the adapter as having a
    conversation to continue.
    """
    argv = adapter.build_command(prompt)
    logger.debug(f"[oneshot] {adapter.name}: argv_len={len(argv)} prompt_len={len(prompt)}")

    result = await asyncio.to_thread(run_command, argv, cwd, timeout_s, adapter.name)
    if result.exit_code != 0:
        detail = result.stderr.strip() or result.stdout.strip() or "Unknown error"
        logger.warning(f"[oneshot] {adapter.name}: exit code {result.exit_code}")
        raise NonZeroExit(adapter.name, result.exit_code, detail)

    adapter.has_session = True
    return collapse_blank_lines(strip_control_sequences(result.stdout))
