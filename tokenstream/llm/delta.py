"""
Wire model for one streamed chat-completion chunk.

Providers that speak the OpenAI streaming protocol send a ``delta`` object
per SSE event::

    {"role": "assistant", "content": "he", "reasoning_content": null,
     "tool_calls": [{"index": 0, "id": "call_1", "function": {...}}]}

Keys are snake-case, unknown keys are ignored and ``null`` means absent.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class FunctionCall:
    name: str | None = None
    arguments: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> FunctionCall | None:
        if not data:
            return None
        return cls(name=data.get("name"), arguments=data.get("arguments"))

    def to_dict(self) -> dict[str, Any]:
        return _without_none({"name": self.name, "arguments": self.arguments})


@dataclass(frozen=True)
class ToolCallFragment:
    """A piece of one tool call; fragments sharing an ``index`` belong together."""

    index: int = 0
    id: str | None = None
    type: str | None = None
    function: FunctionCall | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCallFragment:
        return cls(
            index=data.get("index") or 0,
            id=data.get("id"),
            type=data.get("type"),
            function=FunctionCall.from_dict(data.get("function")),
        )

    def to_dict(self) -> dict[str, Any]:
        return _without_none(
            {
                "index": self.index,
                "id": self.id,
                "type": self.type,
                "function": self.function.to_dict() if self.function else None,
            }
        )


@dataclass(frozen=True)
class Delta:
    """
    Immutable view of one streamed chunk.

    Reasoning text arrives under ``reasoning_content`` or, for some
    providers, ``reasoning``.  ``function_call`` is the legacy single-call
    form and is never populated together with ``tool_calls``.
    """

    role: str | None = None
    content: str | None = None
    reasoning_content: str | None = None
    reasoning: str | None = None
    tool_calls: tuple[ToolCallFragment, ...] = field(default_factory=tuple)
    function_call: FunctionCall | None = None

    def __post_init__(self) -> None:
        # Freeze whatever sequence the caller handed in.
        if not isinstance(self.tool_calls, tuple):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls or ()))

    @property
    def reasoning_text(self) -> str | None:
        return self.reasoning_content or self.reasoning

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Delta:
        raw_calls = data.get("tool_calls") or []
        return cls(
            role=data.get("role"),
            content=data.get("content"),
            reasoning_content=data.get("reasoning_content"),
            reasoning=data.get("reasoning"),
            tool_calls=tuple(ToolCallFragment.from_dict(tc) for tc in raw_calls),
            function_call=FunctionCall.from_dict(data.get("function_call")),
        )

    @classmethod
    def from_json(cls, payload: str | bytes) -> Delta:
        data = json.loads(payload)
        if not isinstance(data, dict):
            raise ValueError("Delta payload must be a JSON object")
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        d = _without_none(
            {
                "role": self.role,
                "content": self.content,
                "reasoning_content": self.reasoning_content,
                "reasoning": self.reasoning,
                "function_call": (
                    self.function_call.to_dict() if self.function_call else None
                ),
            }
        )
        if self.tool_calls:
            d["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        return d


def _without_none(d: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}
