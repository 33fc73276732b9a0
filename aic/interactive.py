"""Raw terminal passthrough into a persistent session.

While attached, every key goes to the tool verbatim and its output is
written straight to the local terminal. Ctrl-] gives the terminal back to
aic; the tool keeps running in the background.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import os
import shutil
import signal
import sys
from typing import TYPE_CHECKING, TextIO

from loguru import logger

from aic.errors import AICError, CommandError

if TYPE_CHECKING:
    from aic.runtime.session import PersistentSession

DETACH_KEY = "\x1d"  # Ctrl-]
CLEAR_SCREEN = "\x1b[2J\x1b[H"
READ_CHUNK = 1024


def split_detach(data: str) -> tuple[str, bool]:
    """Return the keys before the detach key and whether it was pressed."""
    head, sep, _ = data.partition(DETACH_KEY)
    return head, bool(sep)


async def attach(
    session: "PersistentSession",
    stdin: TextIO | None = None,
    stdout: TextIO | None = None,
) -> None:
    """Hand the terminal to ``session`` until Ctrl-] or the child exits."""
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    if os.name == "nt":
        raise CommandError("/interactive needs a POSIX terminal")
    if not stdin.isatty():
        raise CommandError("/interactive needs an interactive terminal")

    import termios
    import tty

    loop = asyncio.get_running_loop()
    fd = stdin.fileno()
    decoder = codecs.getincrementaldecoder("utf-8")(errors="ignore")
    detached = asyncio.Event()
    try:
        old_settings = termios.tcgetattr(fd)
    except termios.error as exc:
        raise CommandError(f"/interactive cannot take over the terminal ({exc})") from exc

    def write_out(data: str) -> None:
        stdout.write(data)
        stdout.flush()

    def sync_size() -> None:
        size = shutil.get_terminal_size(fallback=(session.cols, session.rows))
        session.resize(size.columns, size.lines)

    def on_stdin() -> None:
        try:
            raw = os.read(fd, READ_CHUNK)
        except OSError as exc:
            logger.debug(f"[interactive] stdin read failed ({exc})")
            detached.set()
            return
        if not raw:
            detached.set()
            return
        keys, hit_detach = split_detach(decoder.decode(raw))
        if keys:
            try:
                session.write_keys(keys)
            except AICError as exc:
                logger.debug(f"[interactive] {exc}")
                detached.set()
                return
        if hit_detach:
            detached.set()

    sync_size()
    snapshot = session.attach(write_out)
    logger.debug(f"[interactive] attached to {session.adapter.name}")
    try:
        tty.setraw(fd)
        write_out(CLEAR_SCREEN + snapshot.replace("\n", "\r\n"))
        loop.add_reader(fd, on_stdin)
        try:
            loop.add_signal_handler(signal.SIGWINCH, sync_size)
        except (NotImplementedError, RuntimeError, AttributeError) as exc:
            logger.debug(f"[interactive] no SIGWINCH handling ({exc})")

        waiters = [
            asyncio.ensure_future(detached.wait()),
            asyncio.ensure_future(session.exited.wait()),
        ]
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
    finally:
        loop.remove_reader(fd)
        with contextlib.suppress(NotImplementedError, RuntimeError, AttributeError):
            loop.remove_signal_handler(signal.SIGWINCH)
        session.detach()
        termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)
        write_out("\r\n")
        logger.debug(f"[interactive] detached from {session.adapter.name}")
