"""Route user input across tool sessions.

The orchestrator keeps one session per registered adapter and an active
tool pointer. Plain lines go to the active tool; lines starting with ``/``
are meta-commands resolved through a table built from the registry, so a
newly registered tool gets its ``/<tool>`` shortcut and forwarding target
without touching the routing code.
"""

from __future__ import annotations

import atexit
import contextlib
from dataclasses import dataclass
from typing import Awaitable, Callable, ContextManager, Optional, Union

from loguru import logger

from aic.adapters.base import ToolAdapter
from aic.adapters.registry import AdapterRegistry
from aic.config.schema import SessionConfig
from aic.errors import AICError, CommandError, ConcurrentRequestRejected
from aic.runtime.oneshot import send_oneshot
from aic.runtime.session import PersistentSession

MODES = ("persistent", "oneshot")
PREVIEW_CHARS = 60


@dataclass
class Reply:
    """Answer text from one tool."""

    tool: str
    text: str
    forwarded_from: str | None = None


@dataclass
class Notice:
    """Status or error line for the user."""

    text: str
    level: str = "info"


@dataclass
class Quit:
    pass


Result = Union[Reply, Notice, Quit]
AttachHandler = Callable[[PersistentSession], Awaitable[None]]
ProgressFactory = Callable[[str], ContextManager]
NoticeSink = Callable[[Notice], None]


@dataclass(frozen=True)
class MetaCommand:
    name: str
    usage: str
    summary: str
    aliases: tuple[str, ...] = ()


COMMANDS = (
    MetaCommand("switch", "/switch <tool>", "Make <tool> the active tool"),
    MetaCommand("forward", "/forward [tool] [message]", "Send the latest response (or message) to another tool", ("fwd",)),
    MetaCommand("forwardi", "/forwardi [tool] [message]", "Forward quietly with a progress spinner", ("fwdi",)),
    MetaCommand("interactive", "/interactive [tool]", "Attach to the tool's own UI (Ctrl-] detaches)", ("i",)),
    MetaCommand("clear", "/clear", "Reset the active tool's conversation"),
    MetaCommand("status", "/status", "Show every tool and its session state"),
    MetaCommand("help", "/help", "Show this help"),
    MetaCommand("quit", "/quit", "Leave aic", ("exit",)),
)


def _preview(text: str) -> str:
    flat = " ".join(text.split())
    return flat if len(flat) <= PREVIEW_CHARS else f"{flat[:PREVIEW_CHARS - 1]}…"


class SessionOrchestrator:
    """One session per adapter plus the active-tool pointer."""

    def __init__(
        self,
        registry: AdapterRegistry,
        *,
        default_tool: str | None = None,
        mode: str = "persistent",
        cwd: str | None = None,
        session_config: SessionConfig | None = None,
        session_factory: Callable[..., PersistentSession] = PersistentSession,
        attach_handler: Optional[AttachHandler] = None,
        progress: Optional[ProgressFactory] = None,
        on_notice: Optional[NoticeSink] = None,
    ) -> None:
        if not len(registry):
            raise AICError("No tools registered")
        if mode not in MODES:
            raise AICError(f"Unknown mode '{mode}'. Expected one of: {', '.join(MODES)}")

        settings = session_config or SessionConfig()
        self.registry = registry
        self.mode = mode
        self.cwd = cwd
        self.sessions: dict[str, PersistentSession] = {
            adapter.name: session_factory(
                adapter,
                cwd=cwd,
                cols=settings.cols,
                rows=settings.rows,
                turn_timeout=settings.turn_timeout,
            )
            for adapter in registry
        }
        self.active_tool = default_tool if default_tool in registry else registry.names()[0]

        self._attach_handler = attach_handler
        self._progress = progress or (lambda _message: contextlib.nullcontext())
        self._on_notice = on_notice or (lambda _notice: None)
        self._oneshot_busy: set[str] = set()
        self._oneshot_latest: dict[str, str] = {}
        self._handlers: dict[str, Callable[[str], Awaitable[Result]]] = {}
        for command in COMMANDS:
            handler = getattr(self, f"_cmd_{command.name}")
            for key in (command.name, *command.aliases):
                self._handlers[key] = handler
        atexit.register(self.shutdown)

    @property
    def active_adapter(self) -> ToolAdapter:
        return self.registry.get(self.active_tool)

    def set_notice_sink(self, sink: NoticeSink) -> None:
        """Where progress notices go while a command is still running."""
        self._on_notice = sink

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def handle(self, line: str) -> Result | None:
        """Process one line of user input."""
        text = line.strip()
        if not text:
            return None
        try:
            if text.startswith("/"):
                return await self._dispatch(text[1:])
            return await self.ask(self.active_tool, text)
        except AICError as exc:
            logger.debug(f"[orchestrator] {type(exc).__name__}: {exc}")
            return Notice(str(exc), level="warning" if isinstance(exc, ConcurrentRequestRejected) else "error")
        except Exception as exc:
            # The shell outlives any single command.
            logger.exception(f"[orchestrator] {text!r} failed: {exc}")
            return Notice(f"{type(exc).__name__}: {exc}", level="error")

    async def _dispatch(self, body: str) -> Result:
        name, _, rest = body.partition(" ")
        key = name.strip().lower()
        rest = rest.strip()
        handler = self._handlers.get(key)
        if handler is not None:
            return await handler(rest)
        if key in self.registry:
            return await self._tool_shortcut(key, rest)
        raise CommandError(f"Unknown command '/{name}'. Type /help for the list of commands.")

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def ask(self, tool: str, prompt: str, *, forwarded_from: str | None = None) -> Reply:
        """Send ``prompt`` to ``tool`` and wait for the cleaned reply."""
        adapter = self.registry.get(tool)
        with self._progress(f"{adapter.display_name} is thinking..."):
            if self.mode == "oneshot":
                text = await self._ask_oneshot(adapter, prompt)
            else:
                text = await self.sessions[adapter.name].send(prompt)
        return Reply(tool=adapter.name, text=text, forwarded_from=forwarded_from)

    async def _ask_oneshot(self, adapter: ToolAdapter, prompt: str) -> str:
        if adapter.name in self._oneshot_busy:
            raise ConcurrentRequestRejected(adapter.name)
        self._oneshot_busy.add(adapter.name)
        try:
            text = await send_oneshot(adapter, prompt, cwd=self.cwd)
        finally:
            self._oneshot_busy.discard(adapter.name)
        self._oneshot_latest[adapter.name] = text
        return text

    def latest_response(self, tool: str) -> str:
        if self.mode == "oneshot":
            return self._oneshot_latest.get(tool, "")
        return self.sessions[tool].current_response()

    # ------------------------------------------------------------------
    # Meta-commands
    # ------------------------------------------------------------------

    def _resolve_target(self, requested: str | None) -> str:
        if requested is not None:
            target = self.registry.get(requested).name
        else:
            others = [name for name in self.registry.names() if name != self.active_tool]
            if len(others) != 1:
                raise CommandError("Specify the target tool: /forward <tool> [message]")
            target = others[0]
        if target == self.active_tool:
            raise CommandError(f"Cannot forward {target} to itself")
        return target

    def _split_target(self, rest: str) -> tuple[str | None, str]:
        first, _, remainder = rest.partition(" ")
        if first and first.lower() in self.registry:
            return first.lower(), remainder.strip()
        return None, rest

    async def _forward(self, rest: str, quiet: bool) -> Result:
        requested, message = self._split_target(rest)
        target = self._resolve_target(requested)
        source = self.active_tool
        if not message:
            message = self.latest_response(source)
            if not message:
                raise CommandError(f"No response from {source} to forward yet")
        if not quiet:
            target_name = self.registry.get(target).display_name
            self._on_notice(Notice(f"→ {target_name}: {_preview(message)}"))
        logger.info(f"[orchestrator] forward {source} -> {target} chars={len(message)}")
        return await self.ask(target, message, forwarded_from=source)

    async def _cmd_forward(self, rest: str) -> Result:
        return await self._forward(rest, quiet=False)

    async def _cmd_forwardi(self, rest: str) -> Result:
        return await self._forward(rest, quiet=True)

    async def _cmd_switch(self, rest: str) -> Result:
        if not rest:
            raise CommandError(f"Usage: /switch <tool> ({', '.join(self.registry.names())})")
        adapter = self.registry.get(rest.split()[0])
        self.active_tool = adapter.name
        return Notice(f"Switched to {adapter.display_name}")

    async def _tool_shortcut(self, tool: str, rest: str) -> Result:
        if rest:
            return await self.ask(tool, rest)
        return await self._cmd_switch(tool)

    async def _cmd_interactive(self, rest: str) -> Result:
        if self.mode == "oneshot":
            raise CommandError("/interactive needs persistent sessions (started with --oneshot)")
        if self._attach_handler is None:
            raise CommandError("/interactive is not available in this shell")
        adapter = self.registry.get(rest.split()[0]) if rest else self.active_adapter
        if not adapter.is_available(interactive=True):
            raise CommandError(f"{adapter.display_name} cannot run interactively on this host")
        self.active_tool = adapter.name
        session = self.sessions[adapter.name]
        await session.start()
        await self._attach_handler(session)
        state = "still running" if session.is_running else "exited"
        return Notice(f"Detached from {adapter.display_name} ({state})")

    async def _cmd_clear(self, rest: str) -> Result:
        adapter = self.registry.get(rest.split()[0]) if rest else self.active_adapter
        self.sessions[adapter.name].reset()
        self._oneshot_latest.pop(adapter.name, None)
        return Notice(f"Cleared {adapter.display_name} conversation")

    async def _cmd_status(self, rest: str) -> Result:
        lines = []
        for adapter in self.registry:
            session = self.sessions[adapter.name]
            marker = "*" if adapter.name == self.active_tool else " "
            state = "oneshot" if self.mode == "oneshot" else session.state.value
            pid = f" pid={session.pid}" if session.pid else ""
            lines.append(f"{marker} {adapter.name:<10} {adapter.display_name:<15} {state}{pid}")
        return Notice("\n".join(lines))

    async def _cmd_help(self, rest: str) -> Result:
        lines = [f"  {command.usage:<28} {command.summary}" for command in COMMANDS]
        tools = "|".join(self.registry.names())
        lines.append(f"  {'/<' + tools + '> [message]':<28} Switch to a tool, or send it one message")
        return Notice("\n".join(lines))

    async def _cmd_quit(self, rest: str) -> Result:
        return Quit()

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def shutdown(self) -> None:
        """Kill every live child process."""
        for session in self.sessions.values():
            if session.is_running:
                logger.debug(f"[orchestrator] stopping {session.adapter.name}")
            session.close()
