"""Tool providers and the catalog they produce."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Iterator, Mapping

from tokenstream.tools.base import ToolExecutor, ToolSpecification


@dataclass(frozen=True)
class ToolProviderRequest:
    """Context handed to a provider when the tool set for a call is assembled."""

    memory_id: Any = None
    user_message: Any = None


class ToolProviderResult:
    """
    An ordered, read-only mapping of tool specification to executor.

    Instances are built once through ``ToolProviderResult.builder()`` and
    are never mutated afterwards.
    """

    def __init__(self, tools: dict[ToolSpecification, ToolExecutor]) -> None:
        self._tools = MappingProxyType(dict(tools))

    @property
    def tools(self) -> Mapping[ToolSpecification, ToolExecutor]:
        return self._tools

    def specifications(self) -> list[ToolSpecification]:
        return list(self._tools)

    def executors_by_name(self) -> dict[str, ToolExecutor]:
        return {spec.name: executor for spec, executor in self._tools.items()}

    def get(self, name: str) -> ToolExecutor | None:
        for spec, executor in self._tools.items():
            if spec.name == name:
                return executor
        return None

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[ToolSpecification]:
        return iter(self._tools)

    def __contains__(self, spec: object) -> bool:
        return spec in self._tools

    @staticmethod
    def builder() -> ToolProviderResultBuilder:
        return ToolProviderResultBuilder()


class ToolProviderResultBuilder:
    def __init__(self) -> None:
        self._tools: dict[ToolSpecification, ToolExecutor] = {}

    def add(self, spec: ToolSpecification, executor: ToolExecutor) -> ToolProviderResultBuilder:
        self._tools[spec] = executor
        return self

    def add_all(
        self, tools: Mapping[ToolSpecification, ToolExecutor]
    ) -> ToolProviderResultBuilder:
        self._tools.update(tools)
        return self

    def build(self) -> ToolProviderResult:
        return ToolProviderResult(self._tools)


class ToolProvider(ABC):
    @abstractmethod
    async def provide_tools(self, request: ToolProviderRequest) -> ToolProviderResult:
        """Return the tools available for *request*."""
        ...
