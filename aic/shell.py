"""Line-oriented shell on top of the orchestrator."""

from __future__ import annotations

import asyncio

from loguru import logger
from rich.console import Console
from rich.markdown import Markdown
from rich.rule import Rule

from aic import __logo__, __version__
from aic.orchestrator import Notice, Quit, Reply, SessionOrchestrator

NOTICE_STYLES = {
    "info": "dim",
    "warning": "yellow",
    "error": "red",
}


class InteractiveShell:
    """Read a line, hand it to the orchestrator, render what comes back."""

    def __init__(self, orchestrator: SessionOrchestrator, console: Console) -> None:
        self.orchestrator = orchestrator
        self.console = console

    def banner(self) -> None:
        tools = ", ".join(
            f"[{adapter.color}]{adapter.name}[/{adapter.color}]" for adapter in self.orchestrator.registry
        )
        self.console.print(f"[bold]{__logo__}[/bold] AI Code Connect v{__version__}")
        self.console.print(f"Tools: {tools}  Mode: {self.orchestrator.mode}")
        self.console.print("[dim]Type /help for commands, /quit to leave.[/dim]\n")

    def prompt(self) -> str:
        adapter = self.orchestrator.active_adapter
        return f"[bold {adapter.color}]{adapter.name}[/bold {adapter.color}] ❯ "

    def render(self, result: Reply | Notice | Quit | None) -> None:
        if result is None or isinstance(result, Quit):
            return
        if isinstance(result, Notice):
            self.render_notice(result)
            return
        adapter = self.orchestrator.registry.get(result.tool)
        title = f"[bold {adapter.color}]{adapter.display_name}[/bold {adapter.color}]"
        if result.forwarded_from:
            title += f" [dim](from {result.forwarded_from})[/dim]"
        self.console.print(Rule(title, align="left", style=adapter.color))
        if result.text:
            self.console.print(Markdown(result.text))
        else:
            self.console.print("[dim](no response)[/dim]")
        self.console.print()

    def render_notice(self, notice: Notice) -> None:
        style = NOTICE_STYLES.get(notice.level, "")
        self.console.print(notice.text, style=style, markup=False, highlight=False)

    async def run(self) -> None:
        self.banner()
        while True:
            try:
                line = await asyncio.to_thread(self.console.input, self.prompt())
            except (EOFError, KeyboardInterrupt):
                self.console.print()
                break
            result = await self.orchestrator.handle(line)
            self.render(result)
            if isinstance(result, Quit):
                break
        logger.debug("[shell] exiting")
        self.orchestrator.shutdown()
