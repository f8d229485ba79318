"""
OpenAI-compatible streaming chat model.

Works with any endpoint that speaks the OpenAI ``/v1/chat/completions`` wire
protocol -- OpenAI itself, Azure OpenAI, vLLM, DeepSeek, LM Studio, etc.
Reasoning models on these endpoints report chain-of-thought text in the
delta's ``reasoning_content`` (or ``reasoning``) field.

Dependencies: ``httpx`` (async HTTP client).  No ``openai`` SDK needed.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import httpx

from tokenstream.errors import ModelStreamError
from tokenstream.llm.delta import Delta
from tokenstream.llm.providers.base import StreamingChatModel
from tokenstream.llm.tool_call_assembler import ToolCallAssembler
from tokenstream.llm.types import (
    AiMessage,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ChatResponseMetadata,
    SystemMessage,
    TokenUsage,
    ToolExecutionResultMessage,
    UserMessage,
)
from tokenstream.streaming.handler import (
    ReasoningAwareStreamingChatResponseHandler,
    StreamingChatResponseHandler,
)

logger = logging.getLogger(__name__)


@dataclass
class _StreamState:
    """Everything accumulated while one response streams in."""

    content_parts: list[str] = field(default_factory=list)
    reasoning_parts: list[str] = field(default_factory=list)
    assembler: ToolCallAssembler = field(default_factory=ToolCallAssembler)
    response_id: str | None = None
    model_name: str | None = None
    finish_reason: str | None = None
    token_usage: TokenUsage | None = None
    delivered: bool = False

    def to_response(self) -> ChatResponse:
        requests = self.assembler.flush()
        if self.assembler.errors:
            logger.warning("Tool-call assembly errors: %s", self.assembler.errors)
        text = "".join(self.content_parts)
        reasoning = "".join(self.reasoning_parts)
        return ChatResponse(
            ai_message=AiMessage(
                text=text or None,
                tool_execution_requests=requests,
                thinking=reasoning or None,
            ),
            metadata=ChatResponseMetadata(
                id=self.response_id,
                model_name=self.model_name,
                token_usage=self.token_usage,
                finish_reason=self.finish_reason,
            ),
        )


class OpenAICompatChatModel(StreamingChatModel):
    """
    Streaming client for any OpenAI-API-compatible endpoint.

    Parameters
    ----------
    url:
        Base URL of the API, e.g. ``"https://api.openai.com/v1"`` or
        ``"http://localhost:8080/v1"``.
    model:
        Model identifier sent in the ``model`` field.
    api_key:
        Bearer token.  Pass ``""`` for unauthenticated local endpoints.
    timeout:
        HTTP request timeout in seconds.
    max_retries:
        Number of automatic retries on transient HTTP errors (5xx, 429).
        Only attempted while nothing has been delivered to the handler.
    temperature:
        Sampling temperature; omitted from the request when ``None``.
    transport:
        Optional ``httpx`` transport, e.g. ``httpx.MockTransport`` in tests.
    """

    def __init__(
        self,
        url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o",
        api_key: str = "",
        timeout: float = 120.0,
        max_retries: int = 2,
        temperature: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._model = model
        self._api_key = api_key
        self._timeout = timeout
        self._max_retries = max_retries
        self._temperature = temperature
        self._transport = transport

    @property
    def name(self) -> str:
        return "openai-compat"

    # ------------------------------------------------------------------
    # StreamingChatModel
    # ------------------------------------------------------------------

    async def chat(
        self,
        request: ChatRequest,
        handler: StreamingChatResponseHandler,
    ) -> None:
        body = self._build_body(request)
        headers = self._build_headers()
        state = _StreamState()

        try:
            async for delta in self._stream_request(body, headers, state):
                state.delivered = True
                await self._deliver(delta, handler, state)

            response = state.to_response()
            if response.ai_message.thinking:
                await handler.on_complete_reasoning(response.ai_message.thinking)
        except httpx.HTTPError as exc:
            error = ModelStreamError(f"{self.name} request failed: {exc}")
            error.__cause__ = exc
            await handler.on_error(error)
            return
        except Exception as exc:
            await handler.on_error(exc)
            return
        # Errors raised by the terminal callback propagate to the caller.
        await handler.on_complete_response(response)

    async def _deliver(
        self,
        delta: Delta,
        handler: StreamingChatResponseHandler,
        state: _StreamState,
    ) -> None:
        if delta.content:
            state.content_parts.append(delta.content)
        if delta.reasoning_text:
            state.reasoning_parts.append(delta.reasoning_text)
        for fragment in delta.tool_calls:
            state.assembler.feed(fragment)
        if delta.function_call is not None:
            state.assembler.feed_function_call(delta.function_call)

        if isinstance(handler, ReasoningAwareStreamingChatResponseHandler):
            await handler.process_raw_chunk(delta)
            return
        if delta.reasoning_text:
            await handler.on_partial_reasoning(delta.reasoning_text)
        if delta.content:
            await handler.on_partial_response(delta.content)

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def _build_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_body(self, request: ChatRequest) -> dict:
        wire_messages = [_to_wire_message(m) for m in request.messages]
        body: dict = {
            "model": self._model,
            "messages": wire_messages,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if self._temperature is not None:
            body["temperature"] = self._temperature
        if request.tool_specifications:
            body["tools"] = [s.to_openai_schema() for s in request.tool_specifications]
            body["tool_choice"] = "auto"
        logger.info(
            "REQUEST: model=%s tools=%d messages=%d",
            self._model,
            len(request.tool_specifications),
            len(wire_messages),
        )
        return body

    # ------------------------------------------------------------------
    # Streaming request
    # ------------------------------------------------------------------

    async def _stream_request(
        self,
        body: dict,
        headers: dict[str, str],
        state: _StreamState,
    ) -> AsyncIterator[Delta]:
        url = f"{self._url}/chat/completions"

        last_error: Exception | None = None
        for attempt in range(1 + self._max_retries):
            try:
                async with httpx.AsyncClient(
                    timeout=self._timeout, transport=self._transport
                ) as client:
                    async with client.stream(
                        "POST", url, json=body, headers=headers
                    ) as response:
                        if response.status_code == 429 or response.status_code >= 500:
                            # Retryable -- read body so the connection is released.
                            await response.aread()
                            last_error = httpx.HTTPStatusError(
                                f"HTTP {response.status_code}",
                                request=response.request,
                                response=response,
                            )
                            continue

                        response.raise_for_status()

                        async for delta in self._parse_sse_stream(response, state):
                            yield delta
                        return  # success
            except httpx.TransportError as exc:
                last_error = exc
                if attempt < self._max_retries and not state.delivered:
                    continue
                raise

        if last_error is not None:
            raise last_error

    async def _parse_sse_stream(
        self, response: httpx.Response, state: _StreamState
    ) -> AsyncIterator[Delta]:
        """
        Parse Server-Sent Events from the response byte stream.

        Each SSE event has the form::

            data: {json}\\n\\n

        The sentinel ``data: [DONE]`` terminates the stream.
        """
        buffer = ""
        async for raw_bytes in response.aiter_bytes():
            buffer += raw_bytes.decode("utf-8", errors="replace")

            while "\n" in buffer:
                line, buffer = buffer.split("\n", 1)
                line = line.rstrip("\r")

                if not line or not line.startswith("data:"):
                    continue

                data_str = line[len("data:"):].strip()
                if data_str == "[DONE]":
                    return

                try:
                    data = json.loads(data_str)
                except json.JSONDecodeError:
                    logger.warning("Failed to parse SSE data: %s", data_str[:200])
                    continue

                delta = self._sse_data_to_delta(data, state)
                if delta is not None:
                    yield delta

    def _sse_data_to_delta(self, data: dict, state: _StreamState) -> Delta | None:
        """Record response-level fields and return the chunk's delta, if any."""
        if data.get("id"):
            state.response_id = data["id"]
        if data.get("model"):
            state.model_name = data["model"]
        usage = data.get("usage")
        if usage:
            state.token_usage = _parse_usage(usage)

        choices = data.get("choices")
        if not choices:
            return None
        choice = choices[0]
        if choice.get("finish_reason"):
            state.finish_reason = choice["finish_reason"]
        raw_delta = choice.get("delta")
        if not raw_delta:
            return None
        return Delta.from_dict(raw_delta)


def _parse_usage(usage: dict[str, Any]) -> TokenUsage:
    return TokenUsage(
        input_tokens=usage.get("prompt_tokens"),
        output_tokens=usage.get("completion_tokens"),
        total_tokens=usage.get("total_tokens"),
    )


def _to_wire_message(msg: ChatMessage) -> dict:
    if isinstance(msg, SystemMessage):
        return {"role": "system", "content": msg.text}
    if isinstance(msg, UserMessage):
        m: dict = {"role": "user", "content": msg.text}
        if msg.name:
            m["name"] = msg.name
        return m
    if isinstance(msg, AiMessage):
        m = {"role": "assistant", "content": msg.text}
        if msg.tool_execution_requests:
            m["tool_calls"] = [
                {
                    "id": r.id,
                    "type": "function",
                    "function": {"name": r.name, "arguments": r.arguments},
                }
                for r in msg.tool_execution_requests
            ]
        return m
    if isinstance(msg, ToolExecutionResultMessage):
        return {"role": "tool", "tool_call_id": msg.id, "content": msg.text}
    raise TypeError(f"Unsupported message type: {type(msg).__name__}")
