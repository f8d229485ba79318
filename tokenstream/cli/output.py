"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json

from rich.console import Console
from rich.markup import escape
from rich.syntax import Syntax
from rich.table import Table

from tokenstream.llm.types import ChatResponse, ToolExecution


class OutputFormatter:
    """Rich-based output for a streamed conversation."""

    def __init__(self, console: Console | None = None, show_reasoning: bool = True) -> None:
        self.console = console or Console()
        self.show_reasoning = show_reasoning
        self._in_reasoning = False

    # -- streaming callbacks -------------------------------------------------

    def print_answer(self, text: str) -> None:
        if self._in_reasoning:
            self.console.print()
            self._in_reasoning = False
        self.console.print(text, end="", markup=False, highlight=False)

    def print_reasoning(self, text: str) -> None:
        if not self.show_reasoning:
            return
        self._in_reasoning = True
        self.console.print(text, end="", style="dim italic", markup=False, highlight=False)

    def print_tool_execution(self, execution: ToolExecution) -> None:
        request = execution.request
        self.console.print()
        self.console.print(
            f"  [yellow]{request.name}[/yellow]({escape(request.arguments[:80])}) "
            f"[dim]->[/dim] {escape(execution.result[:200])}",
            highlight=False,
        )

    def print_complete(self, response: ChatResponse) -> None:
        self.console.print()
        usage = response.token_usage
        if usage is not None and usage.total_tokens is not None:
            self.console.print(
                f"[dim]tokens: in={usage.input_tokens} out={usage.output_tokens} "
                f"total={usage.total_tokens}[/dim]"
            )

    def print_error(self, error: BaseException) -> None:
        self.console.print(f"\n[red]Error:[/red] {error}")

    # -- config --------------------------------------------------------------

    def format_config(self, config: dict) -> None:
        config_json = json.dumps(config, indent=2, default=str)
        self.console.print(Syntax(config_json, "json", theme="monokai"))

    def format_memory_ids(self, memory_ids: list[str]) -> None:
        if not memory_ids:
            self.console.print("[dim]No stored conversations.[/dim]")
            return
        table = Table(title="Conversations")
        table.add_column("Memory ID", style="cyan", no_wrap=True)
        for memory_id in memory_ids:
            table.add_row(memory_id)
        self.console.print(table)
