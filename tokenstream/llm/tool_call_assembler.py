"""
Assembles streaming tool-call fragments into complete tool requests.

Design goals:
  - Accumulate ``ToolCallFragment`` pieces keyed by ``index``.
  - At stream end (``flush()``), check that each accumulated argument string
    is valid JSON.
  - If it is not, the call is *dropped* and an error is recorded -- the
    caller can inspect ``self.errors`` and surface the failure.
"""

from __future__ import annotations

import json

from tokenstream.llm.delta import FunctionCall, ToolCallFragment
from tokenstream.llm.types import ToolExecutionRequest


class ToolCallAssembler:
    """Buffers tool-call fragments and emits finished ``ToolExecutionRequest``s."""

    def __init__(self) -> None:
        self._buf: dict[int, dict] = {}
        self.errors: list[str] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def feed(self, fragment: ToolCallFragment) -> None:
        """Feed a single fragment into the assembler."""
        buf = self._buf.setdefault(
            fragment.index, {"id": None, "name": "", "args": ""}
        )

        if fragment.id and not buf["id"]:
            buf["id"] = fragment.id

        func = fragment.function
        if func is not None:
            if func.name:
                buf["name"] += func.name
            if func.arguments:
                buf["args"] += func.arguments

    def feed_function_call(self, function_call: FunctionCall) -> None:
        """Legacy single-call form; always occupies index 0."""
        self.feed(ToolCallFragment(index=0, function=function_call))

    def flush(self) -> list[ToolExecutionRequest]:
        """
        Finalize all buffers in index order and return the assembled
        requests.  The assembler is empty afterwards.
        """
        requests: list[ToolExecutionRequest] = []
        for idx in sorted(self._buf.keys()):
            request = self._finalize(idx)
            if request is not None:
                requests.append(request)
        return requests

    def reset(self) -> None:
        """Discard all accumulated state."""
        self._buf.clear()
        self.errors.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _finalize(self, idx: int) -> ToolExecutionRequest | None:
        buf = self._buf.pop(idx)

        raw_args = buf["args"] or "{}"
        try:
            json.loads(raw_args)
        except (json.JSONDecodeError, ValueError) as exc:
            self.errors.append(f"tool_call_json_parse_failed idx={idx} err={exc}")
            return None

        name = buf["name"].strip()
        if not name:
            self.errors.append(f"tool_call_missing_name idx={idx}")
            return None

        return ToolExecutionRequest(
            id=buf["id"] or f"call_{idx}",
            name=name,
            arguments=raw_args,
        )
