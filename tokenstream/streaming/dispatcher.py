"""
Streaming dispatcher -- the terminal sink of a model stream.

The dispatcher:
1. Routes partial chunks (through the reasoning classifier) to the user's
   answer and reasoning callbacks
2. Appends the completed assistant message to conversation memory
3. Resolves the conversation when the response carries no tool calls
4. Otherwise executes every tool request, records the results, and prepares
   a follow-up request plus the next dispatcher generation
5. Drives those generations from ``run()`` until a terminal response arrives

Generations are chained by a trampoline loop rather than by nesting model
calls inside callbacks, so long tool chains do not grow the call stack.
"""

from __future__ import annotations

import logging
from enum import Enum
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping, Union

from tokenstream.errors import (
    ModelStreamError,
    RecursionLimitError,
    TokenStreamError,
    ToolExecutionError,
    ToolNotFoundError,
)
from tokenstream.llm.types import (
    AiMessage,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    TokenUsage,
    ToolExecution,
    ToolExecutionRequest,
    ToolExecutionResultMessage,
)
from tokenstream.streaming.classifier import ChunkKind, RawChunk, ReasoningClassifier
from tokenstream.streaming.context import ServiceContext
from tokenstream.streaming.handler import (
    ReasoningAwareStreamingChatResponseHandler,
    call_maybe_async,
)
from tokenstream.tools.base import ToolExecutor, ToolSpecification
from tokenstream.tools.validation import ToolValidator

logger = logging.getLogger(__name__)

TextCallback = Callable[[str], Union[None, Awaitable[None]]]
ResponseCallback = Callable[[ChatResponse], Union[None, Awaitable[None]]]
ToolExecutionCallback = Callable[[ToolExecution], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[BaseException], Union[None, Awaitable[None]]]


class DispatchState(Enum):
    OPEN = "open"
    DONE_TERMINAL = "done_terminal"
    TOOL_ROUND = "tool_round"
    RECURSE = "recurse"
    FAILED = "failed"


class StreamingResponseDispatcher(ReasoningAwareStreamingChatResponseHandler):
    """
    One generation of a streamed conversation.

    Parameters
    ----------
    context : ServiceContext
        Model client, optional memory service and tool-round bound.
    memory_id : Any
        Conversation handle passed to memory and tool executors.
    partial_response_handler : callable
        Receives every answer fragment.
    temporary_memory : list
        In-process history used when the context has no memory service.
        Shared by reference across the generations of one conversation.
    token_usage : TokenUsage
        Usage accumulated by earlier generations.
    round_index : int
        Number of tool rounds completed before this generation.
    """

    def __init__(
        self,
        context: ServiceContext,
        memory_id: Any,
        partial_response_handler: TextCallback,
        *,
        tool_execution_handler: ToolExecutionCallback | None = None,
        complete_response_handler: ResponseCallback | None = None,
        error_handler: ErrorCallback | None = None,
        temporary_memory: list[ChatMessage] | None = None,
        token_usage: TokenUsage | None = None,
        tool_specifications: list[ToolSpecification] | tuple = (),
        tool_executors: Mapping[str, ToolExecutor] | None = None,
        partial_reasoning_handler: TextCallback | None = None,
        complete_reasoning_handler: TextCallback | None = None,
        classifier: ReasoningClassifier | None = None,
        round_index: int = 0,
    ) -> None:
        if context is None:
            raise ValueError("context must not be None")
        if memory_id is None:
            raise ValueError("memory_id must not be None")
        if partial_response_handler is None:
            raise ValueError("partial_response_handler must not be None")

        self.context = context
        self.memory_id = memory_id

        self._partial_response_handler = partial_response_handler
        self._tool_execution_handler = tool_execution_handler
        self._complete_response_handler = complete_response_handler
        self._error_handler = error_handler
        self._partial_reasoning_handler = partial_reasoning_handler
        self._complete_reasoning_handler = complete_reasoning_handler
        self.classifier = classifier or ReasoningClassifier()

        self._temporary_memory = temporary_memory if temporary_memory is not None else []
        self.token_usage = token_usage or TokenUsage()

        self.tool_specifications = tuple(tool_specifications)
        self._tool_executors: Mapping[str, ToolExecutor] = (
            tool_executors
            if isinstance(tool_executors, MappingProxyType)
            else MappingProxyType(dict(tool_executors or {}))
        )
        self._specs_by_name = {spec.name: spec for spec in self.tool_specifications}

        self.round_index = round_index
        self.state = DispatchState.OPEN
        self.follow_up: tuple[ChatRequest, StreamingResponseDispatcher] | None = None

    # ------------------------------------------------------------------
    # Partial events
    # ------------------------------------------------------------------

    async def on_partial_response(self, partial_response: str) -> None:
        await call_maybe_async(self._partial_response_handler, partial_response)

    async def on_partial_reasoning(self, partial_reasoning: str) -> None:
        if self._partial_reasoning_handler is not None:
            await call_maybe_async(self._partial_reasoning_handler, partial_reasoning)

    async def on_complete_reasoning(self, complete_reasoning: str) -> None:
        if self._complete_reasoning_handler is not None:
            await call_maybe_async(self._complete_reasoning_handler, complete_reasoning)

    def set_reasoning_detector(self, predicate) -> None:
        self.classifier.predicate = predicate

    def set_reasoning_json_path(self, path: str | None) -> None:
        self.classifier.path = path

    async def process_raw_chunk(self, raw: RawChunk) -> None:
        try:
            event = self.classifier.classify(raw)
        except Exception as exc:
            await self.on_error(exc)
            return
        if event is None:
            return
        if event.kind is ChunkKind.REASONING:
            await self.on_partial_reasoning(event.text)
        else:
            await self.on_partial_response(event.text)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def on_complete_response(self, complete_response: ChatResponse) -> None:
        ai_message = complete_response.ai_message

        if not ai_message.has_tool_execution_requests():
            await self._add_to_memory(ai_message)
            self.state = DispatchState.DONE_TERMINAL
            if self._complete_response_handler is not None:
                total = TokenUsage.sum(self.token_usage, complete_response.token_usage)
                final = ChatResponse(
                    ai_message=ai_message,
                    metadata=complete_response.metadata.with_token_usage(total),
                )
                await call_maybe_async(self._complete_response_handler, final)
            return

        self.state = DispatchState.TOOL_ROUND
        try:
            await self._add_to_memory(ai_message)
            max_rounds = self.context.max_tool_rounds
            if max_rounds is not None and self.round_index >= max_rounds:
                raise RecursionLimitError(max_rounds)
            await self._run_tool_round(ai_message)
            self.follow_up = await self._prepare_follow_up(complete_response)
        except Exception as exc:
            self.state = DispatchState.FAILED
            await self.on_error(exc)
            return

        self.state = DispatchState.RECURSE

    async def _run_tool_round(self, ai_message: AiMessage) -> None:
        logger.debug(
            "Tool round %d: %d request(s)",
            self.round_index + 1,
            len(ai_message.tool_execution_requests),
        )
        for request in ai_message.tool_execution_requests:
            result = await self._execute(request)
            await self._add_to_memory(
                ToolExecutionResultMessage.from_request(request, result)
            )
            if self._tool_execution_handler is not None:
                await call_maybe_async(
                    self._tool_execution_handler,
                    ToolExecution(request=request, result=result),
                )

    async def _execute(self, request: ToolExecutionRequest) -> str:
        executor = self._tool_executors.get(request.name)
        if executor is None:
            raise ToolNotFoundError(request.name)

        spec = self._specs_by_name.get(request.name)
        if spec is not None and spec.parameters:
            try:
                arguments = request.arguments_dict()
            except ValueError as exc:
                raise ToolExecutionError(
                    f"Invalid arguments for {request.name}: {exc}", request.name
                ) from exc
            valid, error_msg = ToolValidator.validate(spec, arguments)
            if not valid:
                raise ToolExecutionError(
                    f"Validation error for {request.name}: {error_msg}", request.name
                )

        try:
            result = await call_maybe_async(executor, request, self.memory_id)
        except Exception as exc:
            raise ToolExecutionError(
                f"Tool {request.name} failed: {exc}", request.name
            ) from exc
        if result is None:
            return ""
        return result if isinstance(result, str) else str(result)

    async def _prepare_follow_up(
        self, complete_response: ChatResponse
    ) -> tuple[ChatRequest, StreamingResponseDispatcher]:
        request = ChatRequest.of(
            await self.messages_to_send(), list(self.tool_specifications)
        )
        successor = StreamingResponseDispatcher(
            self.context,
            self.memory_id,
            self._partial_response_handler,
            tool_execution_handler=self._tool_execution_handler,
            complete_response_handler=self._complete_response_handler,
            error_handler=self._error_handler,
            temporary_memory=self._temporary_memory,
            token_usage=TokenUsage.sum(self.token_usage, complete_response.token_usage),
            tool_specifications=self.tool_specifications,
            tool_executors=self._tool_executors,
            partial_reasoning_handler=self._partial_reasoning_handler,
            complete_reasoning_handler=self._complete_reasoning_handler,
            classifier=self.classifier,
            round_index=self.round_index + 1,
        )
        return request, successor

    # ------------------------------------------------------------------
    # Memory
    # ------------------------------------------------------------------

    async def _add_to_memory(self, message: ChatMessage) -> None:
        if self.context.has_chat_memory():
            memory = self.context.chat_memory_service.get_or_create_chat_memory(
                self.memory_id
            )
            await memory.add(message)
        else:
            self._temporary_memory.append(message)

    async def messages_to_send(self) -> list[ChatMessage]:
        if self.context.has_chat_memory():
            memory = self.context.chat_memory_service.get_or_create_chat_memory(
                self.memory_id
            )
            return await memory.messages()
        return list(self._temporary_memory)

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    async def on_error(self, error: BaseException) -> None:
        if self.state is DispatchState.OPEN:
            self.state = DispatchState.FAILED
        if self._error_handler is None:
            logger.warning("Ignored error", exc_info=error)
            return
        try:
            await call_maybe_async(self._error_handler, error)
        except Exception as exc:
            logger.error("While handling the following error...", exc_info=error)
            logger.error("...the following error happened", exc_info=exc)

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    async def run(self, request: ChatRequest) -> StreamingResponseDispatcher:
        """
        Dispatch *request* and every follow-up request the tool rounds
        produce.  Returns the last dispatcher generation.
        """
        dispatcher: StreamingResponseDispatcher = self
        while True:
            model = dispatcher.context.streaming_chat_model
            try:
                await model.chat(request, dispatcher)
            except Exception as exc:
                error = exc
                if not isinstance(exc, TokenStreamError):
                    error = ModelStreamError(f"{model.name}: {exc}")
                    error.__cause__ = exc
                await dispatcher.on_error(error)
                return dispatcher

            if dispatcher.follow_up is None:
                return dispatcher
            request, dispatcher = dispatcher.follow_up
