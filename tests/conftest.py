import asyncio
import re

import pytest

from aic.adapters.base import ToolAdapter
from aic.errors import BrokenPipe


class FakeAdapter(ToolAdapter):
    name = "fake"
    display_name = "Fake Tool"
    executable = "fake-tool"
    default_flags_value = ("--print",)
    prompt_pattern = re.compile(r"^\s*>\s*$")
    idle_timeout = 0.2
    startup_delay = 0.0

    def build_command(self, prompt, continuation=None):
        resume = ["--resume"] if self._continues(continuation) else []
        return [*self.command, *self.default_flags, *resume, prompt]

    def build_interactive_command(self, continuation=None):
        return [*self.command, *self.build_persistent_args(continuation)]

    def build_persistent_args(self, continuation=None):
        return ["--resume"] if self._continues(continuation) else []


class FakeProcess:
    """Stands in for PtyProcess; tests push output with ``emit``."""

    pid = 4242

    def __init__(self, argv, label="fake", cwd=None, cols=80, rows=24, fail_writes=False):
        self.argv = list(argv)
        self.label = label
        self.cwd = cwd
        self.size = (cols, rows)
        self.fail_writes = fail_writes
        self.written = []
        self.signals = []
        self.closed = False
        self.started = False
        self.exit_code = None
        self._data_callbacks = []
        self._exit_callbacks = []

    @property
    def is_alive(self):
        return self.started and self.exit_code is None and not self.closed

    def on_data(self, callback):
        self._data_callbacks.append(callback)

    def on_exit(self, callback):
        self._exit_callbacks.append(callback)

    def start_reading(self):
        self.started = True

    def write(self, data):
        if self.fail_writes:
            raise BrokenPipe(self.label, "closed")
        self.written.append(data)

    def resize(self, cols, rows):
        self.size = (cols, rows)

    def kill(self, sig=15):
        self.signals.append(sig)

    def close(self):
        self.closed = True

    def emit(self, text):
        for callback in self._data_callbacks:
            callback(text)

    def exit(self, code=0):
        self.exit_code = code
        for callback in self._exit_callbacks:
            callback(code)


class FakeFactory:
    def __init__(self):
        self.processes = []
        self.fail_first_writes = False

    def __call__(self, argv, *, label=None, cwd=None, cols=80, rows=24):
        process = FakeProcess(
            argv,
            label=label or "fake",
            cwd=cwd,
            cols=cols,
            rows=rows,
            fail_writes=self.fail_first_writes and not self.processes,
        )
        self.processes.append(process)
        return process

    @property
    def last(self):
        return self.processes[-1]


@pytest.fixture
def fake_adapter():
    return FakeAdapter()


@pytest.fixture
def fake_factory():
    return FakeFactory()


@pytest.fixture
def wait_until():
    async def _wait_until(predicate, timeout=2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)

    return _wait_until


@pytest.fixture
def isolated_home(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("USERPROFILE", str(tmp_path))
    monkeypatch.delenv("AIC_DEFAULT_TOOL", raising=False)
    return tmp_path
