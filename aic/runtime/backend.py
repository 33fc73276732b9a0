"""PTY backends for running interactive CLI agents.

``spawn_process`` picks the best backend for the host and wraps it in a
``PtyProcess``: a reader thread pushes decoded output to ``on_data``
callbacks and reports the exit code to ``on_exit`` callbacks.
"""

from __future__ import annotations

import codecs
import importlib.util
import os
import shutil
import signal
import subprocess
import threading
from typing import Callable, Optional, Protocol, Sequence

from loguru import logger

from aic.errors import BrokenPipe, SpawnFailure

DataCallback = Callable[[str], None]
ExitCallback = Callable[[Optional[int]], None]


class PTYBackend(Protocol):
    """Minimal PTY backend contract."""

    pid: int | None

    def read(self) -> str | None:
        """Read an output chunk; ``""`` when idle, ``None`` at EOF."""

    def write(self, data: str) -> None:
        """Write input data."""

    def resize(self, cols: int, rows: int) -> None:
        """Apply terminal resize."""

    def kill(self, sig: int) -> None:
        """Send a signal to the child."""

    def wait(self) -> int | None:
        """Reap the child and return its exit code."""

    def close(self) -> None:
        """Close process resources."""


def _child_env() -> dict[str, str]:
    env = dict(os.environ)
    env.setdefault("TERM", "xterm-256color")
    env.setdefault("COLORTERM", "truecolor")
    return env


class UnixPexpectBackend:
    """PTY backend for Unix-like systems via pexpect."""

    def __init__(
        self,
        argv: Sequence[str],
        cols: int = 80,
        rows: int = 24,
        cwd: str | None = None,
    ) -> None:
        import pexpect

        self._pexpect = pexpect
        try:
            self._proc = pexpect.spawn(
                argv[0],
                list(argv[1:]),
                encoding="utf-8",
                codec_errors="ignore",
                echo=False,
                dimensions=(rows, cols),
                cwd=cwd,
                env=_child_env(),
            )
        except pexpect.ExceptionPexpect as exc:
            raise OSError(str(exc)) from exc
        self.pid = self._proc.pid

    def read(self) -> str | None:
        try:
            return self._proc.read_nonblocking(size=4096, timeout=0.1)
        except self._pexpect.TIMEOUT:
            return ""
        except self._pexpect.EOF:
            return None

    def write(self, data: str) -> None:
        self._proc.send(data)

    def resize(self, cols: int, rows: int) -> None:
        self._proc.setwinsize(rows, cols)

    def kill(self, sig: int) -> None:
        if self._proc.isalive():
            self._proc.kill(sig)

    def wait(self) -> int | None:
        try:
            self._proc.close(force=True)
        except self._pexpect.ExceptionPexpect as exc:
            logger.debug(f"[pty] close after EOF failed: {exc}")
        if self._proc.exitstatus is not None:
            return self._proc.exitstatus
        if self._proc.signalstatus is not None:
            return -self._proc.signalstatus
        return None

    def close(self) -> None:
        if not self._proc.isalive():
            return
        try:
            self._proc.close(force=True)
        except self._pexpect.ExceptionPexpect as exc:
            logger.debug(f"[pty] pexpect close failed: {exc}")


class WinptyBackend:
    """PTY backend for Windows via pywinpty."""

    def __init__(
        self,
        argv: Sequence[str],
        cols: int = 80,
        rows: int = 24,
        cwd: str | None = None,
    ) -> None:
        from winpty import Backend, PtyProcess

        launch_attempts = (
            {"backend": Backend.ConPTY},
            {"backend": Backend.WinPTY},
            {},
        )

        self._proc = None
        last_error: Optional[Exception] = None
        for extra in launch_attempts:
            try:
                self._proc = PtyProcess.spawn(
                    list(argv),
                    dimensions=(rows, cols),
                    env=_child_env(),
                    cwd=cwd,
                    **extra,
                )
                break
            except Exception as exc:  # pragma: no cover - platform specific
                last_error = exc

        if self._proc is None:
            raise RuntimeError("Failed to start PTY backend") from last_error
        self.pid = getattr(self._proc, "pid", None)

    def read(self) -> str | None:
        try:
            return self._proc.read(4096)
        except EOFError:
            return None

    def write(self, data: str) -> None:
        self._proc.write(data)

    def resize(self, cols: int, rows: int) -> None:
        self._proc.setwinsize(rows, cols)

    def kill(self, sig: int) -> None:
        if self._proc.isalive():
            self._proc.kill(sig)

    def wait(self) -> int | None:
        return self._proc.wait()

    def close(self) -> None:
        pid = self.pid
        try:
            self._proc.close(force=True)
        except OSError as exc:
            logger.debug(f"[pty] winpty close failed: {exc}")
        # Kill the whole tree so child processes don't linger.
        if pid is not None:
            subprocess.run(
                ["taskkill", "/F", "/T", "/PID", str(pid)],
                capture_output=True,
                timeout=3,
            )


class SubprocessFallbackBackend:
    """Fallback backend when PTY is unavailable: plain pipes, no terminal."""

    def __init__(
        self,
        argv: Sequence[str],
        cols: int = 80,
        rows: int = 24,
        cwd: str | None = None,
    ) -> None:
        del cols, rows
        self._proc = subprocess.Popen(
            list(argv),
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            cwd=cwd,
            env=_child_env(),
        )
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="ignore")
        self.pid = self._proc.pid

    def read(self) -> str | None:
        if not self._proc.stdout:
            return None
        chunk = os.read(self._proc.stdout.fileno(), 4096)
        if not chunk:
            return None
        return self._decoder.decode(chunk)

    def write(self, data: str) -> None:
        if self._proc.stdin is None:
            raise BrokenPipeError("stdin is closed")
        self._proc.stdin.write(data.encode("utf-8"))
        self._proc.stdin.flush()

    def resize(self, cols: int, rows: int) -> None:
        del cols, rows

    def kill(self, sig: int) -> None:
        if self._proc.poll() is None:
            self._proc.send_signal(sig)

    def wait(self) -> int | None:
        return self._proc.wait()

    def close(self) -> None:
        if self._proc.poll() is None:
            self._proc.kill()
            self._proc.wait(timeout=3)


def supports_pty() -> bool:
    """Return True when a native PTY backend is usable on this host."""
    if os.name == "nt":
        return importlib.util.find_spec("winpty") is not None
    return importlib.util.find_spec("pexpect") is not None


def build_backend(
    argv: Sequence[str],
    cols: int = 80,
    rows: int = 24,
    cwd: str | None = None,
) -> PTYBackend:
    """Build the best available backend for the current platform."""
    preview = " ".join(argv)[:60]
    if not supports_pty():
        logger.warning(f"[pty] No PTY support, using SubprocessFallbackBackend for: {preview}")
        return SubprocessFallbackBackend(argv, cols=cols, rows=rows, cwd=cwd)
    if os.name == "nt":
        try:
            backend = WinptyBackend(argv, cols=cols, rows=rows, cwd=cwd)
            logger.info(f"[pty] Using WinptyBackend for: {preview}")
            return backend
        except RuntimeError as exc:
            logger.warning(f"[pty] WinptyBackend failed ({exc}), falling back to SubprocessFallbackBackend")
            return SubprocessFallbackBackend(argv, cols=cols, rows=rows, cwd=cwd)
    backend = UnixPexpectBackend(argv, cols=cols, rows=rows, cwd=cwd)
    logger.info(f"[pty] Using UnixPexpectBackend for: {preview}")
    return backend


class PtyProcess:
    """One child process behind a PTY backend, with push-style output."""

    def __init__(self, backend: PTYBackend, label: str) -> None:
        self.label = label
        self.exit_code: int | None = None
        self._backend = backend
        self._data_callbacks: list[DataCallback] = []
        self._exit_callbacks: list[ExitCallback] = []
        self._reader_thread: Optional[threading.Thread] = None
        self._exited = threading.Event()
        self._closing = False

    @property
    def pid(self) -> int | None:
        return self._backend.pid

    @property
    def is_alive(self) -> bool:
        return self._reader_thread is not None and not self._exited.is_set()

    def on_data(self, callback: DataCallback) -> None:
        self._data_callbacks.append(callback)

    def on_exit(self, callback: ExitCallback) -> None:
        self._exit_callbacks.append(callback)

    def start_reading(self) -> None:
        """Start the reader thread; register callbacks before calling this."""
        if self._reader_thread is not None:
            return
        self._reader_thread = threading.Thread(
            target=self._read_loop,
            daemon=True,
            name=f"pty-reader-{self.label}",
        )
        self._reader_thread.start()

    def _read_loop(self) -> None:
        while not self._closing:
            try:
                data = self._backend.read()
            except (OSError, ValueError) as exc:
                # Closed underneath us by close()/kill().
                logger.debug(f"[pty] {self.label}: read failed ({exc})")
                break
            if data is None:
                break
            if data:
                for callback in self._data_callbacks:
                    callback(data)

        try:
            code = self._backend.wait()
        except (OSError, subprocess.SubprocessError) as exc:
            logger.debug(f"[pty] {self.label}: wait failed ({exc})")
            code = None
        self.exit_code = code
        self._exited.set()
        logger.debug(f"[pty] {self.label}: exited with code {code}")
        for callback in self._exit_callbacks:
            callback(code)

    def write(self, data: str) -> None:
        """Write to the child's input; a dead child raises ``BrokenPipe``."""
        if self._exited.is_set():
            raise BrokenPipe(self.label, "process has exited")
        try:
            self._backend.write(data)
        except (OSError, EOFError, ValueError) as exc:
            raise BrokenPipe(self.label, str(exc) or type(exc).__name__) from exc

    def resize(self, cols: int, rows: int) -> None:
        try:
            self._backend.resize(cols, rows)
        except OSError as exc:
            logger.debug(f"[pty] {self.label}: resize failed ({exc})")

    def kill(self, sig: int = signal.SIGTERM) -> None:
        try:
            self._backend.kill(sig)
        except OSError as exc:
            logger.debug(f"[pty] {self.label}: kill failed ({exc})")

    def close(self) -> None:
        """Force the child down and release backend resources."""
        self._closing = True
        try:
            self._backend.close()
        except (OSError, subprocess.SubprocessError) as exc:
            logger.debug(f"[pty] {self.label}: close failed ({exc})")


def spawn_process(
    argv: Sequence[str],
    *,
    label: str | None = None,
    cwd: str | None = None,
    cols: int = 80,
    rows: int = 24,
) -> PtyProcess:
    """Spawn ``argv`` (never through a shell) behind the best available PTY."""
    if not argv:
        raise SpawnFailure(label or "?", "empty command")
    name = label or os.path.basename(argv[0])
    if shutil.which(argv[0]) is None:
        raise SpawnFailure(name, f"executable '{argv[0]}' not found")
    try:
        backend = build_backend(argv, cols=cols, rows=rows, cwd=cwd)
    except (OSError, RuntimeError) as exc:
        raise SpawnFailure(name, str(exc)) from exc
    return PtyProcess(backend, label=name)
