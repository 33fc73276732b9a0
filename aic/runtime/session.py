"""Long-lived PTY session for one tool.

A session owns at most one child process and turns its output stream into
request/response turns. A turn ends at the first of two signals: the tool's
ready prompt shows up on the newest complete line, or the stream goes quiet
for the adapter's idle timeout. Output keeps flowing into the buffer while
nobody is waiting, so bytes produced while detached are never lost.
"""

from __future__ import annotations

import asyncio
import functools
import re
import signal
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

import pyte
from loguru import logger

from aic.errors import BrokenPipe, ConcurrentRequestRejected, ProcessExited
from aic.runtime.backend import PtyProcess, spawn_process
from aic.runtime.extractor import collapse_blank_lines, strip_control_sequences, visible_line

if TYPE_CHECKING:
    from aic.adapters.base import ToolAdapter

DisplaySink = Callable[[str], None]
ProcessFactory = Callable[..., PtyProcess]

BRACKETED_PASTE_START = "\x1b[200~"
BRACKETED_PASTE_END = "\x1b[201~"
ECHO_PREFIX_RE = re.compile(r"^\s*[>❯]\s?")
EXIT_DETAIL_CHARS = 300


class Lifecycle(str, Enum):
    UNSTARTED = "unstarted"
    STARTING = "starting"
    AWAITING_READY = "awaiting_ready"
    READY = "ready"
    SENDING = "sending"
    AWAITING_BOUNDARY = "awaiting_boundary"
    TERMINATED = "terminated"


@dataclass
class PendingRequest:
    """One turn waiting for its boundary.

    ``start`` is where extraction begins in the session buffer; ``mark`` is
    where boundary detection begins (everything after the write).
    """

    prompt: str
    future: asyncio.Future
    readiness: bool = False
    start: int = 0
    mark: int = 0
    started_at: float = field(default_factory=time.monotonic)
    last_activity: float = field(default_factory=time.monotonic)
    bytes_seen: int = 0
    prompt_matched: bool = False
    content_seen: bool = False


def encode_prompt(prompt: str) -> str:
    """Keystrokes that submit ``prompt`` as a single message."""
    if "\n" in prompt:
        # Multi-line input would otherwise submit at the first newline.
        return f"{BRACKETED_PASTE_START}{prompt}{BRACKETED_PASTE_END}\r"
    return f"{prompt}\r"


def strip_echo(text: str, prompt: str) -> str:
    """Drop the tool's echo of ``prompt`` from the start of ``text``.

    Only the leading run of lines that repeat the prompt lines in order
    (with or without a ``>``/``❯`` input marker) is removed; a later line
    that happens to equal a prompt line is part of the answer.
    """
    expected = [line.strip() for line in prompt.splitlines() if line.strip()]
    if not expected:
        return text
    lines = text.split("\n")
    matched = 0
    index = 0
    while index < len(lines) and matched < len(expected):
        seen = ECHO_PREFIX_RE.sub("", visible_line(lines[index])).strip()
        if seen and seen != expected[matched]:
            break
        if seen:
            matched += 1
        index += 1
    if not matched:
        return text
    return "\n".join(lines[index:])


def _consume_exception(future: asyncio.Future) -> None:
    # Readiness failures are re-raised to whoever awaits; keep asyncio quiet
    # when nobody does.
    if not future.cancelled():
        future.exception()


class PersistentSession:
    """One adapter plus zero or one live PTY child."""

    def __init__(
        self,
        adapter: "ToolAdapter",
        *,
        cwd: str | None = None,
        cols: int = 120,
        rows: int = 40,
        turn_timeout: float = 300.0,
        process_factory: ProcessFactory = spawn_process,
    ) -> None:
        self.adapter = adapter
        self.cwd = cwd
        self.cols = cols
        self.rows = rows
        self.turn_timeout = turn_timeout
        self.latest_response = ""

        self._process_factory = process_factory
        self._process: Optional[PtyProcess] = None
        self._state = Lifecycle.UNSTARTED
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self._buffer = ""
        self._last_activity = time.monotonic()
        self._pending: Optional[PendingRequest] = None
        self._watch: Optional[PendingRequest] = None
        self._ready: Optional[asyncio.Future] = None
        self._startup_task: Optional[asyncio.Task] = None
        self._idle_handle: Optional[asyncio.TimerHandle] = None
        self._deadline_handle: Optional[asyncio.TimerHandle] = None

        self._display: Optional[DisplaySink] = None
        self._turn_start = 0
        self._interactive_turn = False
        self._exited = asyncio.Event()

        self._screen = pyte.HistoryScreen(cols, rows, history=5000)
        self._screen.set_mode(pyte.modes.LNM)
        self._stream = pyte.Stream(self._screen)

    def __repr__(self) -> str:
        return f"PersistentSession({self.adapter.name!r}, state={self._state.value})"

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> Lifecycle:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._state not in (Lifecycle.UNSTARTED, Lifecycle.TERMINATED)

    @property
    def is_busy(self) -> bool:
        return self._pending is not None or self._state in (Lifecycle.SENDING, Lifecycle.AWAITING_BOUNDARY)

    @property
    def attached(self) -> bool:
        return self._display is not None

    @property
    def exited(self) -> asyncio.Event:
        """Set once the current child is gone; cleared on every spawn."""
        return self._exited

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, wait_ready: bool = True) -> None:
        """Spawn the child if needed and optionally wait until it is ready."""
        if self._state in (Lifecycle.UNSTARTED, Lifecycle.TERMINATED):
            self._spawn()
        if wait_ready and self._ready is not None and self._state is not Lifecycle.READY:
            await asyncio.shield(self._ready)

    def _spawn(self) -> None:
        loop = asyncio.get_running_loop()
        self._loop = loop
        self._state = Lifecycle.STARTING
        argv = self.adapter.persistent_command()
        logger.info(f"[session] {self.adapter.name}: spawning argv_len={len(argv)} cwd={self.cwd or '.'}")
        try:
            process = self._process_factory(
                argv,
                label=self.adapter.name,
                cwd=self.cwd,
                cols=self.cols,
                rows=self.rows,
            )
        except Exception:
            self._state = Lifecycle.UNSTARTED
            raise

        self._process = process
        self._buffer = ""
        self._turn_start = 0
        self._interactive_turn = False
        self._last_activity = time.monotonic()
        self._screen.reset()
        self._exited.clear()

        self._ready = loop.create_future()
        self._ready.add_done_callback(_consume_exception)
        process.on_data(functools.partial(self._deliver, process))
        process.on_exit(functools.partial(self._deliver_exit, process))
        self._state = Lifecycle.AWAITING_READY
        process.start_reading()
        self._startup_task = loop.create_task(self._watch_ready(process, self._ready))

    async def _watch_ready(self, process: PtyProcess, ready: asyncio.Future) -> None:
        """Arm readiness detection once the startup grace period is over."""
        if self.adapter.startup_delay > 0:
            await asyncio.sleep(self.adapter.startup_delay)
        if process is not self._process or ready.done():
            return
        watch = PendingRequest(prompt="", future=ready, readiness=True)
        self._watch = watch
        if self._boundary_reached(watch):
            self._finish_watch(watch, "prompt")
            return
        silence = time.monotonic() - self._last_activity
        self._arm_idle(watch, max(0.0, self.adapter.idle_timeout - silence))

    async def restart(self) -> None:
        self.kill()
        await self.start()

    def reset(self) -> None:
        """Kill the child and forget the conversation."""
        self.kill()
        self.adapter.reset_context()
        self.latest_response = ""
        self._state = Lifecycle.UNSTARTED

    def kill(self, sig: int = signal.SIGTERM) -> None:
        process = self._process
        if process is None:
            return
        self._terminate(ProcessExited(self.adapter.name, None, "killed"))
        process.kill(sig)
        process.close()

    def close(self) -> None:
        """Tear the child down without touching the event loop (atexit)."""
        process = self._process
        if process is None:
            return
        self._process = None
        self._state = Lifecycle.TERMINATED
        process.kill(signal.SIGTERM)
        process.close()

    def _terminate(self, exc: ProcessExited) -> None:
        logger.info(f"[session] {self.adapter.name}: terminated ({exc})")
        self._cancel_timers()
        if self._startup_task is not None:
            self._startup_task.cancel()
            self._startup_task = None
        # A request still waiting for readiness fails through ``_ready``.
        futures = [self._ready]
        if self._watch is not None:
            futures.append(self._watch.future)
        for future in futures:
            if future is not None and not future.done():
                future.set_exception(exc)
        self._watch = None
        self._process = None
        self._buffer = ""
        self._turn_start = 0
        self._interactive_turn = False
        self._state = Lifecycle.TERMINATED
        self._exited.set()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def send(self, prompt: str) -> str:
        """Submit ``prompt`` and return the cleaned answer.

        Raises ``ConcurrentRequestRejected`` while another turn is pending.
        """
        if self.is_busy:
            raise ConcurrentRequestRejected(self.adapter.name)
        request = PendingRequest(prompt=prompt, future=asyncio.get_running_loop().create_future())
        self._pending = request
        try:
            await self.start()
            try:
                self._submit(request)
            except BrokenPipe as exc:
                logger.warning(f"[session] {self.adapter.name}: {exc}; restarting once")
                await self.restart()
                self._submit(request)
            return await request.future
        finally:
            if self._pending is request:
                self._pending = None

    def _submit(self, request: PendingRequest) -> None:
        process = self._process
        if process is None:
            raise ProcessExited(self.adapter.name, None, "not running")
        loop = asyncio.get_running_loop()

        if self._interactive_turn:
            # An answer typed for by hand while attached becomes the latest
            # response before this turn takes over the buffer.
            self.latest_response = self.current_response()
            self._buffer = ""
            self._turn_start = 0
            self._interactive_turn = False

        self._state = Lifecycle.SENDING
        request.start = 0
        request.mark = len(self._buffer)
        request.started_at = request.last_activity = time.monotonic()
        try:
            process.write(encode_prompt(request.prompt))
        except BrokenPipe:
            self._state = Lifecycle.READY
            raise
        logger.debug(f"[session] {self.adapter.name}: sent prompt_len={len(request.prompt)}")

        self._state = Lifecycle.AWAITING_BOUNDARY
        self._watch = request
        self._arm_idle(request, self.adapter.idle_timeout)
        self._deadline_handle = loop.call_later(self.turn_timeout, self._on_deadline, request)

    def current_response(self) -> str:
        """Newest answer, including one produced by hand while attached."""
        if self._interactive_turn:
            text = self.adapter.clean_response(self._buffer[self._turn_start:])
            if text:
                return text
        return self.latest_response

    # ------------------------------------------------------------------
    # Output handling
    # ------------------------------------------------------------------

    def _deliver(self, process: PtyProcess, data: str) -> None:
        # Reader thread -> event loop.
        loop = self._loop
        if loop is None:
            return
        try:
            loop.call_soon_threadsafe(self._feed, process, data)
        except RuntimeError as exc:
            logger.debug(f"[session] {self.adapter.name}: dropped output after loop shutdown ({exc})")

    def _deliver_exit(self, process: PtyProcess, code: int | None) -> None:
        loop = self._loop
        if loop is None:
            return
        try:
            loop.call_soon_threadsafe(self._on_process_exit, process, code)
        except RuntimeError as exc:
            logger.debug(f"[session] {self.adapter.name}: exit after loop shutdown ({exc})")

    def _feed(self, process: PtyProcess, data: str) -> None:
        if process is not self._process:
            return
        now = time.monotonic()
        self._buffer += data
        self._last_activity = now
        try:
            self._stream.feed(data)
        except (ValueError, TypeError, IndexError, KeyError) as exc:
            logger.debug(f"[session] {self.adapter.name}: screen mirror skipped a chunk ({exc})")

        if self._display is not None:
            try:
                self._display(data)
            except OSError as exc:
                logger.warning(f"[session] {self.adapter.name}: display write failed ({exc}), detaching")
                self._display = None

        watch = self._watch
        if watch is None:
            return
        watch.bytes_seen += len(data)
        watch.last_activity = now
        self._arm_idle(watch, self.adapter.idle_timeout)
        if self._boundary_reached(watch):
            self._finish_watch(watch, "prompt")

    def _on_process_exit(self, process: PtyProcess, code: int | None) -> None:
        if process is not self._process:
            return
        tail = self.adapter.clean_response(self._buffer[-4 * EXIT_DETAIL_CHARS:])
        detail = tail[-EXIT_DETAIL_CHARS:] if tail else "process exited"
        self._terminate(ProcessExited(self.adapter.name, code, detail))

    def _newest_line(self, text: str) -> tuple[int, str] | None:
        """Index and visible text of the newest complete non-chrome line."""
        lines = text.split("\n")[:-1]
        for index in range(len(lines) - 1, -1, -1):
            line = visible_line(lines[index])
            if not line or any(p.search(line) for p in self.adapter.chrome_patterns):
                continue
            return index, line
        return None

    def _boundary_reached(self, watch: PendingRequest) -> bool:
        text = strip_control_sequences(self._buffer[watch.mark:])
        newest = self._newest_line(text)
        if newest is None:
            return False
        index, line = newest
        if not self.adapter.prompt_pattern.search(line):
            return False
        watch.prompt_matched = True
        if watch.readiness:
            return True
        # The prompt line is still on screen right after submit; only a
        # prompt that follows real output ends the turn.
        if not watch.content_seen:
            body = "\n".join(text.split("\n")[:index])
            watch.content_seen = bool(strip_echo(self.adapter.clean_response(body), watch.prompt).strip())
        return watch.content_seen

    def _finish_watch(self, watch: PendingRequest, reason: str) -> None:
        if watch is not self._watch:
            return
        self._watch = None
        self._cancel_timers()

        if watch.readiness:
            self._buffer = ""
            self._state = Lifecycle.READY
            logger.debug(f"[session] {self.adapter.name}: ready ({reason})")
            if not watch.future.done():
                watch.future.set_result(None)
            return

        # Output that arrived before the submit (while detached) is kept whole;
        # the echo can only follow the mark.
        before = self.adapter.clean_response(self._buffer[watch.start:watch.mark])
        answer = strip_echo(self.adapter.clean_response(self._buffer[watch.mark:]), watch.prompt)
        text = collapse_blank_lines("\n\n".join(part for part in (before, answer) if part))
        elapsed = time.monotonic() - watch.started_at
        logger.debug(
            f"[session] {self.adapter.name}: boundary ({reason}) after {elapsed:.2f}s "
            f"bytes={watch.bytes_seen} response_len={len(text)}"
        )
        self._buffer = ""
        self._turn_start = 0
        self._interactive_turn = False
        self.latest_response = text
        self.adapter.has_session = True
        self._state = Lifecycle.READY
        if not watch.future.done():
            watch.future.set_result(text)

    def _arm_idle(self, watch: PendingRequest, delay: float) -> None:
        if self._idle_handle is not None:
            self._idle_handle.cancel()
        loop = self._loop or asyncio.get_running_loop()
        self._idle_handle = loop.call_later(delay, self._on_idle, watch)

    def _on_idle(self, watch: PendingRequest) -> None:
        if watch is not self._watch:
            return
        if not watch.readiness and watch.bytes_seen == 0:
            logger.info(f"[session] {self.adapter.name}: no output within {self.adapter.idle_timeout}s")
        self._finish_watch(watch, "idle")

    def _on_deadline(self, watch: PendingRequest) -> None:
        if watch is not self._watch:
            return
        logger.warning(
            f"[session] {self.adapter.name}: no boundary after {self.turn_timeout}s, "
            "completing with buffered output"
        )
        self._finish_watch(watch, "timeout")

    def _cancel_timers(self) -> None:
        for handle in (self._idle_handle, self._deadline_handle):
            if handle is not None:
                handle.cancel()
        self._idle_handle = None
        self._deadline_handle = None

    # ------------------------------------------------------------------
    # Terminal passthrough
    # ------------------------------------------------------------------

    def attach(self, display: DisplaySink) -> str:
        """Mirror live output into ``display``; return the current screen."""
        self._display = display
        return self.snapshot()

    def detach(self) -> None:
        self._display = None

    def write_keys(self, data: str) -> None:
        """Forward raw keystrokes to the child."""
        process = self._process
        if process is None:
            raise ProcessExited(self.adapter.name, None, "not running")
        process.write(data)
        if self._watch is None and ("\r" in data or "\n" in data):
            self._turn_start = len(self._buffer)
            self._interactive_turn = True

    def resize(self, cols: int, rows: int) -> None:
        self.cols = cols
        self.rows = rows
        self._screen.resize(rows, cols)
        if self._process is not None:
            self._process.resize(cols, rows)

    def snapshot(self) -> str:
        """Plain-text rendering of the mirrored screen, history included."""
        screen = self._screen
        history_lines: list[str] = []
        for line in screen.history.top:
            history_lines.append(
                "".join(line[x].data if x in line else " " for x in range(screen.columns)).rstrip()
            )
        lines = history_lines + [line.rstrip() for line in screen.display]
        while lines and not lines[-1]:
            lines.pop()
        return "\n".join(lines)
