"""
Tool provider backed by one or more tool-server clients.

For every client, in configured order:

1. ``list_tools()``
2. the pre-interceptor, if any
3. each tool joins the catalog, bound to an executor that calls back into
   the same client
4. the post-interceptor, if any

A failing client either aborts the whole call (``fail_if_one_server_fails``)
or is logged and skipped, contributing nothing to the catalog.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from tokenstream.errors import ToolListingError
from tokenstream.llm.types import ToolExecutionRequest
from tokenstream.mcp.client import McpClient, PostHook, PreHook
from tokenstream.streaming.handler import call_maybe_async
from tokenstream.tools.base import ToolExecutor, ToolSpecification
from tokenstream.tools.provider import (
    ToolProvider,
    ToolProviderRequest,
    ToolProviderResult,
)

logger = logging.getLogger(__name__)

STEP_LIST_TOOLS = "list_tools"
STEP_PRE_INTERCEPTOR = "pre_interceptor"
STEP_POST_INTERCEPTOR = "post_interceptor"


def _bind_executor(client: McpClient) -> ToolExecutor:
    async def execute(request: ToolExecutionRequest, memory_id: Any) -> str:
        return await client.execute_tool(request)

    return execute


async def _run_pre_hook(
    hook: PreHook, client: McpClient, tools: Sequence[ToolSpecification]
) -> None:
    fn = getattr(hook, "before_add_tools", hook)
    await call_maybe_async(fn, client, tools)


async def _run_post_hook(
    hook: PostHook, client: McpClient, tools: Sequence[ToolSpecification]
) -> None:
    fn = getattr(hook, "after_tools_added", hook)
    await call_maybe_async(fn, client, tools)


class McpToolProvider(ToolProvider):
    def __init__(self, builder: McpToolProviderBuilder) -> None:
        self.mcp_clients: tuple[McpClient, ...] = tuple(builder._mcp_clients)
        self.fail_if_one_server_fails = bool(builder._fail_if_one_server_fails)
        self.pre_interceptor = builder._pre_interceptor
        self.post_interceptor = builder._post_interceptor

    @staticmethod
    def builder() -> McpToolProviderBuilder:
        return McpToolProviderBuilder()

    async def provide_tools(self, request: ToolProviderRequest) -> ToolProviderResult:
        result = ToolProviderResult.builder()
        for client in self.mcp_clients:
            # Staged per client so a late failure leaves nothing behind.
            staged = ToolProviderResult.builder()
            step = STEP_LIST_TOOLS
            try:
                tools = tuple(await client.list_tools())
                if self.pre_interceptor is not None:
                    step = STEP_PRE_INTERCEPTOR
                    await _run_pre_hook(self.pre_interceptor, client, tools)
                executor = _bind_executor(client)
                for spec in tools:
                    staged.add(spec, executor)
                if self.post_interceptor is not None:
                    step = STEP_POST_INTERCEPTOR
                    await _run_post_hook(self.post_interceptor, client, tools)
            except Exception as exc:
                if self.fail_if_one_server_fails:
                    raise ToolListingError(
                        f"Failed to retrieve tools from MCP server {client.key!r} "
                        f"during {step}",
                        client_key=client.key,
                        step=step,
                    ) from exc
                logger.warning(
                    "Failed to retrieve tools from MCP server %r during %s",
                    client.key,
                    step,
                    exc_info=exc,
                )
                continue
            result.add_all(staged.build().tools)
        return result.build()


class McpToolProviderBuilder:
    def __init__(self) -> None:
        self._mcp_clients: list[McpClient] = []
        self._fail_if_one_server_fails: bool | None = None
        self._pre_interceptor: PreHook | None = None
        self._post_interceptor: PostHook | None = None

    def mcp_clients(self, *clients: McpClient | list[McpClient]) -> McpToolProviderBuilder:
        """Accept either one list of clients or the clients as arguments."""
        if len(clients) == 1 and isinstance(clients[0], (list, tuple)):
            self._mcp_clients = list(clients[0])
        else:
            self._mcp_clients = list(clients)
        return self

    def add_pre_interceptor(self, hook: PreHook) -> McpToolProviderBuilder:
        self._pre_interceptor = hook
        return self

    def add_post_interceptor(self, hook: PostHook) -> McpToolProviderBuilder:
        self._post_interceptor = hook
        return self

    def fail_if_one_server_fails(self, value: bool) -> McpToolProviderBuilder:
        self._fail_if_one_server_fails = value
        return self

    def build(self) -> McpToolProvider:
        return McpToolProvider(self)
