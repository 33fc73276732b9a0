import os
import sys
import threading

import pytest

from aic.errors import BrokenPipe, SpawnFailure
from aic.runtime.backend import SubprocessFallbackBackend, PtyProcess, spawn_process

posix_only = pytest.mark.skipif(os.name == "nt", reason="pexpect PTY backend is POSIX only")


def _collect(process):
    chunks = []
    exited = threading.Event()
    codes = []
    process.on_data(chunks.append)

    def on_exit(code):
        codes.append(code)
        exited.set()

    process.on_exit(on_exit)
    return chunks, codes, exited


def test_spawn_rejects_empty_argv():
    with pytest.raises(SpawnFailure):
        spawn_process([])


def test_spawn_reports_missing_executable():
    with pytest.raises(SpawnFailure) as excinfo:
        spawn_process(["definitely-not-a-real-binary-aic"], label="ghost")

    assert "ghost" in str(excinfo.value)
    assert "not found" in str(excinfo.value)


@posix_only
def test_child_sees_a_terminal_and_exit_code_is_reported():
    script = "import sys; print('tty' if sys.stdout.isatty() else 'pipe'); sys.exit(4)"
    process = spawn_process([sys.executable, "-c", script], label="probe")
    chunks, codes, exited = _collect(process)

    process.start_reading()

    assert exited.wait(10)
    assert "tty" in "".join(chunks)
    assert codes == [4]
    assert process.exit_code == 4
    assert not process.is_alive


@posix_only
def test_write_round_trips_through_pty():
    script = "line = input(); print('got:' + line)"
    process = spawn_process([sys.executable, "-c", script], label="echo", cols=100, rows=30)
    chunks, _codes, exited = _collect(process)
    process.start_reading()

    process.write("ping\r")

    assert exited.wait(10)
    assert "got:ping" in "".join(chunks)


@posix_only
def test_write_after_exit_raises_broken_pipe():
    process = spawn_process([sys.executable, "-c", "pass"], label="short")
    _chunks, _codes, exited = _collect(process)
    process.start_reading()
    assert exited.wait(10)

    with pytest.raises(BrokenPipe) as excinfo:
        process.write("too late\r")

    assert "short" in str(excinfo.value)


@posix_only
def test_kill_terminates_long_running_child():
    process = spawn_process([sys.executable, "-c", "import time; time.sleep(30)"], label="sleeper")
    _chunks, _codes, exited = _collect(process)
    process.start_reading()

    process.kill()
    process.close()

    assert exited.wait(10)


def test_fallback_backend_runs_without_terminal():
    backend = SubprocessFallbackBackend([sys.executable, "-c", "print('plain')"])
    process = PtyProcess(backend, label="plain")
    chunks, codes, exited = _collect(process)
    process.start_reading()

    assert exited.wait(10)
    assert "plain" in "".join(chunks)
    assert codes == [0]
