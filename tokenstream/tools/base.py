from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Union


def normalize_schema(schema: dict | None) -> dict:
    s = dict(schema or {})
    s.setdefault("type", "object")
    s.setdefault("properties", {})
    return s


@dataclass(frozen=True)
class ToolSpecification:
    """Describes a tool the model may call: its name, purpose and JSON schema."""

    name: str
    description: str = ""
    parameters: dict = field(default_factory=dict)

    def __hash__(self) -> int:
        # Schemas are dicts, so hash their canonical JSON form.
        return hash(
            (self.name, self.description, json.dumps(self.parameters, sort_keys=True, default=str))
        )

    def to_openai_schema(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": normalize_schema(self.parameters),
            },
        }


# (request, memory_id) -> result text, optionally awaitable.
ToolExecutor = Callable[[Any, Any], Union[str, Awaitable[str]]]
