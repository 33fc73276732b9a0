import contextlib
import re

import pytest

import aic.orchestrator as orchestrator_module
from aic.adapters import AdapterRegistry, ClaudeAdapter, GeminiAdapter, ToolAdapter
from aic.errors import ConcurrentRequestRejected, NonZeroExit
from aic.orchestrator import Notice, Quit, Reply, SessionOrchestrator
from aic.runtime.session import Lifecycle


class StubSession:
    """Records prompts and answers from a script."""

    def __init__(self, adapter, **kwargs):
        self.adapter = adapter
        self.kwargs = kwargs
        self.prompts = []
        self.answers = []
        self.latest_response = ""
        self.state = Lifecycle.UNSTARTED
        self.pid = None
        self.is_running = False
        self.resets = 0
        self.closed = False
        self.starts = 0
        self.error = None

    async def send(self, prompt):
        if self.error is not None:
            raise self.error
        self.prompts.append(prompt)
        answer = self.answers.pop(0) if self.answers else f"{self.adapter.name} says ok"
        self.latest_response = answer
        self.state = Lifecycle.READY
        return answer

    async def start(self, wait_ready=True):
        self.starts += 1
        self.is_running = True

    def current_response(self):
        return self.latest_response

    def reset(self):
        self.resets += 1
        self.latest_response = ""

    def close(self):
        self.closed = True


class EchoAdapter(ToolAdapter):
    name = "echo"
    display_name = "Echo"
    executable = "echo"
    prompt_pattern = re.compile(r"^>$")

    def build_command(self, prompt, continuation=None):
        return ["echo", prompt]

    def build_interactive_command(self, continuation=None):
        return ["echo"]

    def build_persistent_args(self, continuation=None):
        return []


def _registry(*extra):
    registry = AdapterRegistry()
    for adapter in (ClaudeAdapter(), GeminiAdapter(), *extra):
        registry.register(adapter)
    return registry


def _orchestrator(*extra, **kwargs):
    return SessionOrchestrator(_registry(*extra), session_factory=StubSession, **kwargs)


@pytest.mark.asyncio
async def test_plain_input_goes_to_active_tool():
    orch = _orchestrator(default_tool="gemini")

    result = await orch.handle("hello there")

    assert result == Reply(tool="gemini", text="gemini says ok")
    assert orch.sessions["gemini"].prompts == ["hello there"]
    assert orch.sessions["claude"].prompts == []


@pytest.mark.asyncio
async def test_blank_input_is_ignored():
    assert await _orchestrator().handle("   ") is None


@pytest.mark.asyncio
async def test_unknown_default_falls_back_to_first_tool():
    assert _orchestrator(default_tool="codex").active_tool == "claude"


@pytest.mark.asyncio
async def test_switch_changes_active_tool_without_restart():
    orch = _orchestrator()

    result = await orch.handle("/switch GEMINI")

    assert isinstance(result, Notice)
    assert orch.active_tool == "gemini"
    assert orch.sessions["claude"].resets == 0


@pytest.mark.asyncio
async def test_switch_to_unknown_tool_reports_error():
    orch = _orchestrator()

    result = await orch.handle("/switch codex")

    assert result.level == "error"
    assert "Unknown tool 'codex'" in result.text
    assert orch.active_tool == "claude"


@pytest.mark.asyncio
async def test_forward_infers_other_tool_and_sends_latest_response_only():
    orch = _orchestrator()
    orch.sessions["claude"].answers = ["first answer", "second answer"]
    await orch.handle("q1")
    await orch.handle("q2")

    result = await orch.handle("/fwd")

    assert result.tool == "gemini"
    assert result.forwarded_from == "claude"
    assert orch.sessions["gemini"].prompts == ["second answer"]
    assert orch.active_tool == "claude"


@pytest.mark.asyncio
async def test_forward_with_message_sends_message():
    orch = _orchestrator()

    await orch.handle("/forward gemini please review this")

    assert orch.sessions["gemini"].prompts == ["please review this"]


@pytest.mark.asyncio
async def test_forward_reply_becomes_target_latest_response():
    orch = _orchestrator()
    orch.sessions["claude"].answers = ["draft"]
    orch.sessions["gemini"].answers = ["critique"]
    await orch.handle("write it")
    await orch.handle("/fwd")
    await orch.handle("/switch gemini")

    await orch.handle("/fwd")

    assert orch.sessions["claude"].prompts == ["write it", "critique"]


@pytest.mark.asyncio
async def test_forward_without_response_is_an_error():
    result = await _orchestrator().handle("/fwd")

    assert result.level == "error"
    assert "No response from claude" in result.text


@pytest.mark.asyncio
async def test_forward_to_self_is_an_error():
    orch = _orchestrator()
    await orch.handle("q")

    result = await orch.handle("/fwd claude")

    assert result.level == "error"


@pytest.mark.asyncio
async def test_forward_needs_target_with_three_tools():
    orch = _orchestrator(EchoAdapter())
    await orch.handle("q")

    missing = await orch.handle("/fwd")
    explicit = await orch.handle("/fwd echo")

    assert missing.level == "error"
    assert "Specify the target tool" in missing.text
    assert explicit.tool == "echo"
    assert orch.sessions["echo"].prompts == ["claude says ok"]


@pytest.mark.asyncio
async def test_loud_forward_announces_quiet_forward_does_not():
    notices = []
    orch = _orchestrator(on_notice=notices.append)
    await orch.handle("q")

    await orch.handle("/forward")
    assert len(notices) == 1
    assert notices[0].text.startswith("→ Gemini CLI:")

    await orch.handle("/fwdi")
    assert len(notices) == 1


@pytest.mark.asyncio
async def test_quiet_forward_uses_progress_indicator():
    messages = []

    def progress(message):
        messages.append(message)
        return contextlib.nullcontext()

    orch = _orchestrator(progress=progress)
    await orch.handle("q")

    await orch.handle("/forwardi")

    assert messages[-1] == "Gemini CLI is thinking..."


@pytest.mark.asyncio
async def test_tool_shortcut_switches_or_sends_once():
    orch = _orchestrator()

    sent = await orch.handle("/gemini one question")
    assert sent.tool == "gemini"
    assert orch.active_tool == "claude"

    switched = await orch.handle("/gemini")
    assert isinstance(switched, Notice)
    assert orch.active_tool == "gemini"


@pytest.mark.asyncio
async def test_busy_session_is_reported_as_warning():
    orch = _orchestrator()
    orch.sessions["claude"].error = ConcurrentRequestRejected("claude")

    result = await orch.handle("hello")

    assert result.level == "warning"
    assert "claude" in result.text


@pytest.mark.asyncio
async def test_tool_failure_keeps_shell_running():
    orch = _orchestrator()
    orch.sessions["claude"].error = NonZeroExit("claude", 1, "auth error")

    result = await orch.handle("hello")

    assert result == Notice("claude exited with code 1: auth error", level="error")
    assert (await orch.handle("/switch gemini")).level == "info"


@pytest.mark.asyncio
async def test_unknown_command_is_reported():
    result = await _orchestrator().handle("/bogus")

    assert result.level == "error"
    assert "/bogus" in result.text


@pytest.mark.asyncio
async def test_clear_resets_active_session():
    orch = _orchestrator()

    await orch.handle("/clear")

    assert orch.sessions["claude"].resets == 1


@pytest.mark.asyncio
async def test_status_and_help_list_tools():
    orch = _orchestrator()

    status = await orch.handle("/status")
    help_text = await orch.handle("/help")

    assert "* claude" in status.text
    assert "gemini" in status.text
    assert "/forward" in help_text.text
    assert "/<claude|gemini>" in help_text.text


@pytest.mark.asyncio
async def test_quit_aliases():
    orch = _orchestrator()

    assert isinstance(await orch.handle("/quit"), Quit)
    assert isinstance(await orch.handle("/exit"), Quit)


@pytest.mark.asyncio
async def test_interactive_attaches_and_switches(monkeypatch):
    attached = []

    async def fake_attach(session):
        attached.append(session)

    monkeypatch.setattr(GeminiAdapter, "is_available", lambda self, interactive=False: True)
    orch = _orchestrator(attach_handler=fake_attach)

    result = await orch.handle("/i gemini")

    assert attached == [orch.sessions["gemini"]]
    assert orch.sessions["gemini"].starts == 1
    assert orch.active_tool == "gemini"
    assert "Detached from Gemini CLI" in result.text


@pytest.mark.asyncio
async def test_interactive_unavailable_tool_is_an_error(monkeypatch):
    async def fake_attach(session):
        raise AssertionError("should not attach")

    monkeypatch.setattr(ClaudeAdapter, "is_available", lambda self, interactive=False: False)
    orch = _orchestrator(attach_handler=fake_attach)

    result = await orch.handle("/interactive")

    assert result.level == "error"


@pytest.mark.asyncio
async def test_terminal_failure_during_attach_keeps_shell_running(monkeypatch):
    async def broken_attach(session):
        raise RuntimeError("terminal gone")

    monkeypatch.setattr(GeminiAdapter, "is_available", lambda self, interactive=False: True)
    orch = _orchestrator(attach_handler=broken_attach)

    result = await orch.handle("/interactive gemini")

    assert result == Notice("RuntimeError: terminal gone", level="error")
    assert (await orch.handle("/switch claude")).text == "Switched to Claude Code"
    assert (await orch.handle("hello")).text == "claude says ok"


@pytest.mark.asyncio
async def test_oneshot_mode_uses_one_shot_runner(monkeypatch):
    calls = []

    async def fake_oneshot(adapter, prompt, cwd=None, timeout_s=None):
        calls.append((adapter.name, prompt))
        return f"{adapter.name}: {prompt}"

    monkeypatch.setattr(orchestrator_module, "send_oneshot", fake_oneshot)
    orch = _orchestrator(mode="oneshot")

    await orch.handle("hello")
    forwarded = await orch.handle("/fwd")

    assert calls == [("claude", "hello"), ("gemini", "claude: hello")]
    assert forwarded.text == "gemini: claude: hello"
    assert orch.sessions["claude"].prompts == []


def test_shutdown_closes_every_session():
    orch = _orchestrator()

    orch.shutdown()

    assert all(session.closed for session in orch.sessions.values())
