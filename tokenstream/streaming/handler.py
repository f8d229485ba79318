"""
Callback interfaces between a streaming model client and its consumer.

The model client awaits these methods in stream order.  User callbacks
wired into concrete handlers may be plain functions or coroutine
functions; ``call_maybe_async`` hides the difference.
"""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from typing import Any, Callable

from tokenstream.llm.types import ChatResponse
from tokenstream.streaming.classifier import (
    ChunkKind,
    ExtractionStrategy,
    RawChunk,
    ReasoningClassifier,
    ReasoningPredicate,
)


async def call_maybe_async(fn: Callable[..., Any], *args: Any) -> Any:
    result = fn(*args)
    if inspect.isawaitable(result):
        return await result
    return result


class StreamingChatResponseHandler(ABC):
    """Sink for one streamed model response."""

    @abstractmethod
    async def on_partial_response(self, partial_response: str) -> None:
        ...

    @abstractmethod
    async def on_complete_response(self, complete_response: ChatResponse) -> None:
        ...

    @abstractmethod
    async def on_error(self, error: BaseException) -> None:
        ...

    async def on_partial_reasoning(self, partial_reasoning: str) -> None:
        """Called with each reasoning fragment.  Ignored by default."""

    async def on_complete_reasoning(self, complete_reasoning: str) -> None:
        """Called once with the full reasoning text.  Ignored by default."""


class ReasoningAwareStreamingChatResponseHandler(StreamingChatResponseHandler):
    """
    A handler that accepts raw chunks and classifies them itself.

    Model clients that can hand over the undecoded chunk call
    ``process_raw_chunk`` instead of ``on_partial_response``; the two are
    alternative entry points for the same stream.
    """

    @abstractmethod
    def set_reasoning_detector(self, predicate: ReasoningPredicate | None) -> None:
        ...

    @abstractmethod
    def set_reasoning_json_path(self, path: str | None) -> None:
        ...

    @abstractmethod
    async def process_raw_chunk(self, raw: RawChunk) -> None:
        ...

    @staticmethod
    def create(
        delegate: StreamingChatResponseHandler,
        predicate: ReasoningPredicate | None,
        path: str | None,
        extraction: ExtractionStrategy | None = None,
    ) -> ReasoningAwareStreamingChatResponseHandler:
        """Wrap *delegate* so raw chunks are classified before reaching it."""
        return _DelegatingReasoningHandler(delegate, predicate, path, extraction)


class _DelegatingReasoningHandler(ReasoningAwareStreamingChatResponseHandler):
    def __init__(
        self,
        delegate: StreamingChatResponseHandler,
        predicate: ReasoningPredicate | None,
        path: str | None,
        extraction: ExtractionStrategy | None,
    ) -> None:
        self._delegate = delegate
        self._classifier = ReasoningClassifier(predicate, path, extraction)

    @property
    def classifier(self) -> ReasoningClassifier:
        return self._classifier

    def set_reasoning_detector(self, predicate: ReasoningPredicate | None) -> None:
        self._classifier.predicate = predicate

    def set_reasoning_json_path(self, path: str | None) -> None:
        self._classifier.path = path

    async def process_raw_chunk(self, raw: RawChunk) -> None:
        try:
            event = self._classifier.classify(raw)
        except Exception as exc:
            await self.on_error(exc)
            return
        if event is None:
            return
        if event.kind is ChunkKind.REASONING:
            await self.on_partial_reasoning(event.text)
        else:
            await self.on_partial_response(event.text)

    async def on_partial_response(self, partial_response: str) -> None:
        await self._delegate.on_partial_response(partial_response)

    async def on_partial_reasoning(self, partial_reasoning: str) -> None:
        await self._delegate.on_partial_reasoning(partial_reasoning)

    async def on_complete_reasoning(self, complete_reasoning: str) -> None:
        await self._delegate.on_complete_reasoning(complete_reasoning)

    async def on_complete_response(self, complete_response: ChatResponse) -> None:
        await self._delegate.on_complete_response(complete_response)

    async def on_error(self, error: BaseException) -> None:
        await self._delegate.on_error(error)
