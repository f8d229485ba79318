"""Core types for the LLM subsystem."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from typing import Any, Union

from tokenstream.tools.base import ToolSpecification


# ---------------------------------------------------------------------------
# Tool requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolExecutionRequest:
    """
    A request from the model to run a named tool.

    *arguments* is kept as the raw JSON string the model produced; use
    ``arguments_dict()`` to parse it.
    """

    id: str
    name: str
    arguments: str = "{}"

    def arguments_dict(self) -> dict:
        parsed = json.loads(self.arguments or "{}")
        if not isinstance(parsed, dict):
            raise ValueError(
                f"Tool arguments must be a JSON object, got {type(parsed).__name__}"
            )
        return parsed

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolExecutionRequest:
        return cls(
            id=data.get("id") or "",
            name=data.get("name") or "",
            arguments=data.get("arguments") or "{}",
        )


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@dataclass
class SystemMessage:
    text: str

    role = "system"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.role, "text": self.text}


@dataclass
class UserMessage:
    text: str
    name: str | None = None

    role = "user"

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": self.role, "text": self.text}
        if self.name is not None:
            d["name"] = self.name
        return d


@dataclass
class AiMessage:
    """
    The assistant's turn.

    *tool_execution_requests* is empty for a terminal turn.  *thinking*
    holds the complete reasoning text when the provider reported one.
    """

    text: str | None = None
    tool_execution_requests: list[ToolExecutionRequest] = field(default_factory=list)
    thinking: str | None = None

    role = "assistant"

    def has_tool_execution_requests(self) -> bool:
        return bool(self.tool_execution_requests)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": self.role, "text": self.text}
        if self.tool_execution_requests:
            d["tool_execution_requests"] = [
                r.to_dict() for r in self.tool_execution_requests
            ]
        if self.thinking is not None:
            d["thinking"] = self.thinking
        return d


@dataclass
class ToolExecutionResultMessage:
    """The result of one tool execution, fed back to the model."""

    id: str
    tool_name: str
    text: str

    role = "tool"

    @classmethod
    def from_request(
        cls, request: ToolExecutionRequest, result: str
    ) -> ToolExecutionResultMessage:
        return cls(id=request.id, tool_name=request.name, text=result)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.role,
            "id": self.id,
            "tool_name": self.tool_name,
            "text": self.text,
        }


ChatMessage = Union[SystemMessage, UserMessage, AiMessage, ToolExecutionResultMessage]


def message_from_dict(data: dict[str, Any]) -> ChatMessage:
    """Reconstruct a message produced by one of the ``to_dict`` methods."""
    kind = data.get("type")
    if kind == "system":
        return SystemMessage(text=data["text"])
    if kind == "user":
        return UserMessage(text=data["text"], name=data.get("name"))
    if kind == "assistant":
        return AiMessage(
            text=data.get("text"),
            tool_execution_requests=[
                ToolExecutionRequest.from_dict(r)
                for r in data.get("tool_execution_requests", [])
            ],
            thinking=data.get("thinking"),
        )
    if kind == "tool":
        return ToolExecutionResultMessage(
            id=data["id"], tool_name=data["tool_name"], text=data["text"]
        )
    raise ValueError(f"Unknown message type: {kind!r}")


# ---------------------------------------------------------------------------
# Usage, requests and responses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None

    def add(self, other: TokenUsage | None) -> TokenUsage:
        """Return the elementwise sum; ``None`` counts as "not reported"."""
        if other is None:
            return self
        return TokenUsage(
            input_tokens=_sum_optional(self.input_tokens, other.input_tokens),
            output_tokens=_sum_optional(self.output_tokens, other.output_tokens),
            total_tokens=_sum_optional(self.total_tokens, other.total_tokens),
        )

    @staticmethod
    def sum(first: TokenUsage | None, second: TokenUsage | None) -> TokenUsage | None:
        if first is None:
            return second
        return first.add(second)


def _sum_optional(a: int | None, b: int | None) -> int | None:
    if a is None:
        return b
    if b is None:
        return a
    return a + b


@dataclass(frozen=True)
class ChatResponseMetadata:
    id: str | None = None
    model_name: str | None = None
    token_usage: TokenUsage | None = None
    finish_reason: str | None = None

    def with_token_usage(self, token_usage: TokenUsage | None) -> ChatResponseMetadata:
        return replace(self, token_usage=token_usage)


@dataclass(frozen=True)
class ChatResponse:
    ai_message: AiMessage
    metadata: ChatResponseMetadata = field(default_factory=ChatResponseMetadata)

    @property
    def token_usage(self) -> TokenUsage | None:
        return self.metadata.token_usage


@dataclass(frozen=True)
class ChatRequest:
    messages: tuple
    tool_specifications: tuple[ToolSpecification, ...] = ()

    @classmethod
    def of(
        cls,
        messages: list[ChatMessage],
        tool_specifications: list[ToolSpecification] | None = None,
    ) -> ChatRequest:
        return cls(
            messages=tuple(messages),
            tool_specifications=tuple(tool_specifications or ()),
        )


@dataclass(frozen=True)
class ToolExecution:
    """A finished tool execution, handed to the ``on_tool_executed`` callback."""

    request: ToolExecutionRequest
    result: str


@dataclass
class Content:
    """A piece of retrieved context shown to the user before the first token."""

    text: str
    metadata: dict = field(default_factory=dict)
