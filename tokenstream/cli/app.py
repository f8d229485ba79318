"""
Main CLI application for tokenstream.

Usage:
    tokenstream chat PROMPT [--show-reasoning/--hide-reasoning] [--memory-id ID]
    tokenstream memory list|clear
    tokenstream config show|validate
    tokenstream version
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from tokenstream.config import TokenStreamConfig, load_config

app = typer.Typer(name="tokenstream", help="Streamed LLM chat with tool rounds and reasoning")
memory_app = typer.Typer(help="Conversation memory management")
config_app = typer.Typer(help="Configuration management")

app.add_typer(memory_app, name="memory")
app.add_typer(config_app, name="config")

console = Console()

__version__ = "0.1.0"

# In-process tool servers offered to `chat`; see register_mcp_client().
_mcp_clients: list = []


def register_mcp_client(client) -> None:
    """Make *client*'s tools available to the `chat` command."""
    _mcp_clients.append(client)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_config_path() -> Path | None:
    """Find config file in standard locations."""
    candidates = [
        Path.cwd() / "tokenstream.yaml",
        Path.cwd() / "tokenstream.yml",
        Path.home() / ".config" / "tokenstream" / "config.yaml",
        Path.home() / ".tokenstream" / "config.yaml",
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


def _load(
    config_path: Path | None,
    profile: str | None = None,
    cli_overrides: dict | None = None,
) -> TokenStreamConfig:
    cfg = load_config(config_path or _get_config_path(), profile=profile, cli_overrides=cli_overrides)
    logging.basicConfig(
        level=getattr(logging, cfg.logging.level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return cfg


def _open_store(cfg: TokenStreamConfig):
    """Return (store, needs_close) for the configured memory backend."""
    from tokenstream.memory import InMemoryChatMemoryStore, SqliteChatMemoryStore

    if cfg.memory.backend == "sqlite":
        return SqliteChatMemoryStore(cfg.memory.sqlite_path), True
    if cfg.memory.backend == "memory":
        return InMemoryChatMemoryStore(), False
    raise typer.BadParameter(f"Unknown memory backend: {cfg.memory.backend}")


async def _load_tools(cfg: TokenStreamConfig, clients, memory_id: str | None, prompt: str):
    """Return (specifications, executors by name) from the tool servers."""
    from tokenstream.llm.types import UserMessage
    from tokenstream.mcp import McpToolProvider
    from tokenstream.tools.provider import ToolProviderRequest

    if not clients:
        return [], {}
    provider = (
        McpToolProvider.builder()
        .mcp_clients(list(clients))
        .fail_if_one_server_fails(cfg.mcp.fail_if_one_server_fails)
        .build()
    )
    catalog = await provider.provide_tools(
        ToolProviderRequest(memory_id=memory_id, user_message=UserMessage(prompt))
    )
    return catalog.specifications(), catalog.executors_by_name()


async def _run_chat(
    cfg: TokenStreamConfig,
    prompt: str,
    memory_id: str | None,
    mcp_clients=(),
) -> int:
    """Wire up the stack, stream one answer and return the exit code."""
    from tokenstream.cli.output import OutputFormatter
    from tokenstream.errors import ToolListingError
    from tokenstream.llm.providers.openai_compat import OpenAICompatChatModel
    from tokenstream.llm.types import UserMessage
    from tokenstream.memory import ChatMemoryService
    from tokenstream.streaming import ServiceContext, TokenStream, has_reasoning_content

    model = OpenAICompatChatModel(
        url=cfg.llm.api_base,
        model=cfg.llm.model,
        api_key=os.environ.get(cfg.llm.api_key_env, ""),
        timeout=float(cfg.llm.timeout_seconds),
        max_retries=cfg.llm.max_retries,
        temperature=cfg.llm.temperature,
    )
    formatter = OutputFormatter(console, show_reasoning=cfg.stream.show_reasoning)
    failures: list[BaseException] = []

    try:
        specs, executors = await _load_tools(cfg, mcp_clients, memory_id, prompt)
    except ToolListingError as exc:
        formatter.print_error(exc)
        return 1

    def record_error(error: BaseException) -> None:
        failures.append(error)
        formatter.print_error(error)

    store, needs_close = _open_store(cfg) if memory_id else (None, False)
    try:
        if store is not None:
            if needs_close:
                await store.init()
            service = ChatMemoryService(store)
            memory = service.get_or_create_chat_memory(memory_id)
            await memory.add(UserMessage(prompt))
            messages = await memory.messages()
        else:
            service = None
            messages = [UserMessage(prompt)]

        context = ServiceContext(
            streaming_chat_model=model,
            chat_memory_service=service,
            max_tool_rounds=cfg.stream.tool_round_limit,
        )
        stream = (
            TokenStream(
                messages,
                context,
                memory_id=memory_id or "default",
                tool_specifications=specs,
                tool_executors=executors,
            )
            .on_partial_response(formatter.print_answer)
            .on_partial_reasoning(formatter.print_reasoning)
            .on_reasoning_detected(has_reasoning_content, cfg.stream.reasoning_path)
            .on_tool_executed(formatter.print_tool_execution)
            .on_complete_response(formatter.print_complete)
            .on_error(record_error)
        )
        await stream.start()
    finally:
        if needs_close:
            await store.close()

    return 1 if failures else 0


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def chat(
    prompt: str = typer.Argument(..., help="User message to send"),
    show_reasoning: Optional[bool] = typer.Option(
        None, "--show-reasoning/--hide-reasoning", help="Print reasoning text dimmed"
    ),
    memory_id: Optional[str] = typer.Option(
        None, "--memory-id", help="Persist the conversation under this id"
    ),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level"),
    config: Optional[Path] = typer.Option(None, "--config", help="Config file path"),
):
    """Stream the answer to PROMPT."""
    cfg = _load(
        config,
        profile,
        {"stream.show_reasoning": show_reasoning, "logging.level": log_level},
    )
    code = asyncio.run(_run_chat(cfg, prompt, memory_id, _mcp_clients))
    if code:
        raise typer.Exit(code)


@memory_app.command("list")
def memory_list(config: Optional[Path] = typer.Option(None, "--config", help="Config file path")):
    """List stored conversation ids (sqlite backend)."""

    async def _run():
        from tokenstream.cli.output import OutputFormatter
        from tokenstream.memory import SqliteChatMemoryStore

        cfg = _load(config)
        store = SqliteChatMemoryStore(cfg.memory.sqlite_path)
        await store.init()
        try:
            OutputFormatter(console).format_memory_ids(await store.list_memory_ids())
        finally:
            await store.close()

    asyncio.run(_run())


@memory_app.command("clear")
def memory_clear(
    memory_id: str = typer.Argument(..., help="Memory ID"),
    config: Optional[Path] = typer.Option(None, "--config", help="Config file path"),
):
    """Delete one stored conversation (sqlite backend)."""

    async def _run():
        from tokenstream.memory import SqliteChatMemoryStore

        cfg = _load(config)
        store = SqliteChatMemoryStore(cfg.memory.sqlite_path)
        await store.init()
        try:
            await store.delete_messages(memory_id)
        finally:
            await store.close()
        console.print(f"Deleted conversation: {memory_id}")

    asyncio.run(_run())


@config_app.command("show")
def config_show(
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
    config: Optional[Path] = typer.Option(None, "--config", help="Config file path"),
):
    """Show effective config."""
    from tokenstream.cli.output import OutputFormatter

    cfg = _load(config, profile)
    OutputFormatter(console).format_config(cfg.to_dict())


@config_app.command("validate")
def config_validate(
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
    config: Optional[Path] = typer.Option(None, "--config", help="Config file path"),
):
    """Validate config and show the main settings."""
    config_path = config or _get_config_path()
    try:
        cfg = load_config(config_path, profile=profile)
        if cfg.memory.backend not in ("memory", "sqlite"):
            raise ValueError(f"memory.backend must be 'memory' or 'sqlite', got {cfg.memory.backend!r}")
    except Exception as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)

    console.print("[green]Config is valid.[/green]")
    if config_path:
        console.print(f"  Loaded from: {config_path}")
    else:
        console.print("  [dim]No config file found, using defaults.[/dim]")
    console.print(f"  LLM: {cfg.llm.name} ({cfg.llm.model}) at {cfg.llm.api_base}")
    console.print(f"  Max tool rounds: {cfg.stream.tool_round_limit or 'unbounded'}")
    console.print(f"  Memory backend: {cfg.memory.backend}")


@app.command()
def version():
    """Show version."""
    console.print(f"tokenstream v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
