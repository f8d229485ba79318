"""
Fluent, validated entry point for a streamed conversation.

Usage::

    stream = (
        TokenStream(messages, context, memory_id="user-42",
                    tool_specifications=specs, tool_executors=executors)
        .on_partial_response(print_token)
        .on_partial_reasoning(print_thought)
        .on_reasoning_detected(has_reasoning, "$.reasoning_content")
        .on_complete_response(store_answer)
        .on_error(report)
    )
    task = stream.start()
    await task

Each counted setter may only be used as often as the conversation can make
sense of it; ``start()`` checks the counts before anything is sent.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping, Union

from tokenstream.errors import IllegalConfigurationError
from tokenstream.llm.types import ChatMessage, ChatRequest, Content, TokenUsage
from tokenstream.streaming.classifier import (
    ExtractionStrategy,
    ReasoningClassifier,
    ReasoningPredicate,
)
from tokenstream.streaming.context import ServiceContext
from tokenstream.streaming.dispatcher import (
    ErrorCallback,
    ResponseCallback,
    StreamingResponseDispatcher,
    TextCallback,
    ToolExecutionCallback,
)
from tokenstream.streaming.handler import call_maybe_async
from tokenstream.tools.base import ToolExecutor, ToolSpecification

ContentsCallback = Callable[[list[Content]], Union[None, Awaitable[None]]]


@dataclass
class SetterCounts:
    on_partial_response: int = 0
    on_complete_response: int = 0
    on_retrieved: int = 0
    on_tool_executed: int = 0
    on_error: int = 0
    ignore_errors: int = 0


def validate_counts(counts: SetterCounts) -> None:
    """Raise ``IllegalConfigurationError`` if *counts* break the wiring rules."""
    if counts.on_partial_response != 1:
        raise IllegalConfigurationError(
            "on_partial_response must be invoked on TokenStream exactly 1 time"
        )
    if counts.on_complete_response > 1:
        raise IllegalConfigurationError(
            "on_complete_response can be invoked on TokenStream at most 1 time"
        )
    if counts.on_retrieved > 1:
        raise IllegalConfigurationError(
            "on_retrieved can be invoked on TokenStream at most 1 time"
        )
    if counts.on_tool_executed > 1:
        raise IllegalConfigurationError(
            "on_tool_executed can be invoked on TokenStream at most 1 time"
        )
    if counts.on_error + counts.ignore_errors != 1:
        raise IllegalConfigurationError(
            "One of [on_error, ignore_errors] must be invoked on TokenStream exactly 1 time"
        )


class TokenStream:
    """
    Configure the callbacks of one streamed conversation, then ``start()`` it.

    Parameters
    ----------
    messages : list
        Messages for the first model call; must not be empty.
    context : ServiceContext
        Model client and optional memory service.
    memory_id : Any
        Conversation handle.
    tool_specifications : list
        Tools offered to the model on every call.
    tool_executors : mapping
        Tool name -> executor.
    retrieved_contents : list
        Context retrieved for this request, shown through ``on_retrieved``.
    """

    def __init__(
        self,
        messages: list[ChatMessage],
        context: ServiceContext,
        memory_id: Any = "default",
        tool_specifications: list[ToolSpecification] | None = None,
        tool_executors: Mapping[str, ToolExecutor] | None = None,
        retrieved_contents: list[Content] | None = None,
    ) -> None:
        if not messages:
            raise ValueError("messages cannot be null or empty")
        if context is None:
            raise ValueError("context cannot be null")
        if context.streaming_chat_model is None:
            raise ValueError("streaming_chat_model cannot be null")
        if memory_id is None:
            raise ValueError("memory_id cannot be null")

        self._messages = list(messages)
        self._tool_specifications = list(tool_specifications or [])
        self._tool_executors = MappingProxyType(dict(tool_executors or {}))
        self._retrieved_contents = list(retrieved_contents or [])
        self._context = context
        self._memory_id = memory_id

        self._partial_response_handler: TextCallback | None = None
        self._contents_handler: ContentsCallback | None = None
        self._tool_execution_handler: ToolExecutionCallback | None = None
        self._complete_response_handler: ResponseCallback | None = None
        self._error_handler: ErrorCallback | None = None
        self._partial_reasoning_handler: TextCallback | None = None
        self._complete_reasoning_handler: TextCallback | None = None
        self._reasoning_detector: ReasoningPredicate | None = None
        self._reasoning_json_path: str | None = None
        self._extraction: ExtractionStrategy | None = None

        self.counts = SetterCounts()

    # ------------------------------------------------------------------
    # Counted setters
    # ------------------------------------------------------------------

    def on_partial_response(self, handler: TextCallback) -> TokenStream:
        self._partial_response_handler = handler
        self.counts.on_partial_response += 1
        return self

    def on_retrieved(self, handler: ContentsCallback) -> TokenStream:
        self._contents_handler = handler
        self.counts.on_retrieved += 1
        return self

    def on_tool_executed(self, handler: ToolExecutionCallback) -> TokenStream:
        self._tool_execution_handler = handler
        self.counts.on_tool_executed += 1
        return self

    def on_complete_response(self, handler: ResponseCallback) -> TokenStream:
        self._complete_response_handler = handler
        self.counts.on_complete_response += 1
        return self

    def on_error(self, handler: ErrorCallback) -> TokenStream:
        self._error_handler = handler
        self.counts.on_error += 1
        return self

    def ignore_errors(self) -> TokenStream:
        """Drop errors after ``start()``; they are still logged at warning level."""
        self._error_handler = None
        self.counts.ignore_errors += 1
        return self

    # ------------------------------------------------------------------
    # Reasoning setters
    # ------------------------------------------------------------------

    def on_partial_reasoning(self, handler: TextCallback) -> TokenStream:
        self._partial_reasoning_handler = handler
        return self

    def on_complete_reasoning(self, handler: TextCallback) -> TokenStream:
        self._complete_reasoning_handler = handler
        return self

    def on_reasoning_detected(
        self, predicate: ReasoningPredicate, json_path: str
    ) -> TokenStream:
        """
        Classify raw chunks with *predicate*, called as
        ``predicate(json_path, raw_chunk)``.
        """
        self._reasoning_detector = predicate
        self._reasoning_json_path = json_path
        return self

    def extraction_strategy(self, strategy: ExtractionStrategy) -> TokenStream:
        self._extraction = strategy
        return self

    # ------------------------------------------------------------------
    # Launch
    # ------------------------------------------------------------------

    def build_dispatcher(self) -> StreamingResponseDispatcher:
        return StreamingResponseDispatcher(
            self._context,
            self._memory_id,
            self._partial_response_handler,
            tool_execution_handler=self._tool_execution_handler,
            complete_response_handler=self._complete_response_handler,
            error_handler=self._error_handler,
            temporary_memory=self._init_temporary_memory(),
            token_usage=TokenUsage(),
            tool_specifications=self._tool_specifications,
            tool_executors=self._tool_executors,
            partial_reasoning_handler=self._partial_reasoning_handler,
            complete_reasoning_handler=self._complete_reasoning_handler,
            classifier=ReasoningClassifier(
                self._reasoning_detector,
                self._reasoning_json_path,
                self._extraction,
            ),
        )

    def start(self) -> asyncio.Task:
        """
        Validate the configuration and start streaming.

        Raises ``IllegalConfigurationError`` synchronously, before any I/O,
        when the setters were wired incorrectly.  Otherwise schedules the
        conversation on the running event loop and returns its task; events
        arrive through the configured callbacks.
        """
        validate_counts(self.counts)

        request = ChatRequest.of(self._messages, self._tool_specifications)
        dispatcher = self.build_dispatcher()
        return asyncio.get_running_loop().create_task(self._launch(request, dispatcher))

    async def _launch(
        self, request: ChatRequest, dispatcher: StreamingResponseDispatcher
    ) -> StreamingResponseDispatcher:
        if self._contents_handler is not None and self._retrieved_contents:
            try:
                await call_maybe_async(
                    self._contents_handler, list(self._retrieved_contents)
                )
            except Exception as exc:
                await dispatcher.on_error(exc)
                return dispatcher
        return await dispatcher.run(request)

    def _init_temporary_memory(self) -> list[ChatMessage]:
        if self._context.has_chat_memory():
            return []
        return list(self._messages)
