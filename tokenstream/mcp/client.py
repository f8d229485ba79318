"""Tool-server client interface and interception hooks."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Mapping, Protocol, Sequence, Union, runtime_checkable

from tokenstream.llm.types import ToolExecutionRequest
from tokenstream.streaming.handler import call_maybe_async
from tokenstream.tools.base import ToolSpecification


class McpClient(ABC):
    """
    A connection to one remote tool server.

    Concrete transports (stdio, streamable HTTP, ...) implement this
    interface; the provider only lists and calls tools through it.
    """

    @property
    @abstractmethod
    def key(self) -> str:
        """Identifier used in logs and errors."""
        ...

    @abstractmethod
    async def list_tools(self) -> list[ToolSpecification]:
        ...

    @abstractmethod
    async def execute_tool(self, request: ToolExecutionRequest) -> str:
        ...


@runtime_checkable
class McpToolPreInterceptor(Protocol):
    def before_add_tools(
        self, client: McpClient, tools: Sequence[ToolSpecification]
    ) -> Union[None, Awaitable[None]]:
        """Runs after ``list_tools`` returned, before the tools join the catalog."""
        ...


@runtime_checkable
class McpToolPostInterceptor(Protocol):
    def after_tools_added(
        self, client: McpClient, tools: Sequence[ToolSpecification]
    ) -> Union[None, Awaitable[None]]:
        """Runs once every tool of *client* has joined the catalog."""
        ...


PreHook = Union[McpToolPreInterceptor, Callable[[McpClient, Sequence[ToolSpecification]], Any]]
PostHook = Union[McpToolPostInterceptor, Callable[[McpClient, Sequence[ToolSpecification]], Any]]


class StaticMcpClient(McpClient):
    """
    An in-process tool server over a fixed set of tools.

    *tools* maps each specification to a callable receiving the parsed
    argument dict; the callable may be sync or async and its return value
    is converted to ``str``.
    """

    def __init__(
        self,
        key: str,
        tools: Mapping[ToolSpecification, Callable[..., Any]],
    ) -> None:
        self._key = key
        self._tools = dict(tools)
        self._by_name = {spec.name: fn for spec, fn in self._tools.items()}
        self.list_calls = 0
        self.executed: list[ToolExecutionRequest] = []

    @property
    def key(self) -> str:
        return self._key

    async def list_tools(self) -> list[ToolSpecification]:
        self.list_calls += 1
        return list(self._tools)

    async def execute_tool(self, request: ToolExecutionRequest) -> str:
        fn = self._by_name.get(request.name)
        if fn is None:
            raise KeyError(request.name)
        self.executed.append(request)
        result = await call_maybe_async(fn, request.arguments_dict())
        return result if isinstance(result, str) else str(result)
