import re
import sys

import pytest

from aic.adapters.base import ToolAdapter
from aic.errors import NonZeroExit, SpawnFailure
from aic.runtime.oneshot import command_exists, run_command, send_oneshot


class PythonAdapter(ToolAdapter):
    """Runs a python snippet instead of a real tool."""

    name = "fake"
    display_name = "Fake Tool"
    executable = "python"
    prompt_pattern = re.compile(r"^>$")

    def __init__(self, script):
        super().__init__()
        self.script = script

    def build_command(self, prompt, continuation=None):
        return [sys.executable, "-c", self.script, prompt]

    def build_interactive_command(self, continuation=None):
        return [sys.executable]

    def build_persistent_args(self, continuation=None):
        return []


def test_command_exists():
    assert command_exists(sys.executable)
    assert not command_exists("definitely-not-a-real-binary-aic")
    assert not command_exists("")


def test_run_command_captures_output():
    result = run_command([sys.executable, "-c", "import sys; print('out'); print('err', file=sys.stderr)"])

    assert result.exit_code == 0
    assert result.stdout.strip() == "out"
    assert result.stderr.strip() == "err"


def test_run_command_missing_executable_is_spawn_failure():
    with pytest.raises(SpawnFailure):
        run_command(["definitely-not-a-real-binary-aic"], label="ghost")


@pytest.mark.asyncio
async def test_send_oneshot_returns_clean_stdout_and_marks_session():
    adapter = PythonAdapter("import sys; print('\\x1b[1manswer:\\x1b[0m ' + sys.argv[1])")

    text = await send_oneshot(adapter, "hello")

    assert text == "answer: hello"
    assert adapter.has_session is True


@pytest.mark.asyncio
async def test_send_oneshot_nonzero_exit_carries_stderr():
    adapter = PythonAdapter("import sys; sys.stderr.write('  auth error\\n'); sys.exit(1)")

    with pytest.raises(NonZeroExit) as excinfo:
        await send_oneshot(adapter, "hello")

    assert excinfo.value.exit_code == 1
    assert excinfo.value.detail == "auth error"
    assert str(excinfo.value) == "fake exited with code 1: auth error"
    assert adapter.has_session is False


@pytest.mark.asyncio
async def test_send_oneshot_falls_back_to_stdout_detail():
    adapter = PythonAdapter("import sys; print('quota exceeded'); sys.exit(2)")

    with pytest.raises(NonZeroExit) as excinfo:
        await send_oneshot(adapter, "hello")

    assert "quota exceeded" in str(excinfo.value)
