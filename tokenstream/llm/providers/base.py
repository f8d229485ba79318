"""Abstract base class for streaming chat models."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from tokenstream.llm.types import ChatRequest

if TYPE_CHECKING:
    from tokenstream.streaming.handler import StreamingChatResponseHandler


class StreamingChatModel(ABC):
    """
    A streaming model client encapsulates access to a single LLM endpoint.

    Implementations must:
      - Await the handler's partial callbacks in stream order.  Handlers
        that are reasoning-aware may instead receive each undecoded chunk
        through ``process_raw_chunk``.
      - Finish with exactly one of ``on_complete_response`` or ``on_error``.
      - Return from ``chat`` only after that terminal callback has been
        awaited.  An exception raised by ``on_complete_response`` itself
        propagates out of ``chat`` and is not reported through ``on_error``.
    """

    @abstractmethod
    async def chat(
        self,
        request: ChatRequest,
        handler: StreamingChatResponseHandler,
    ) -> None:
        """Stream the response for *request* into *handler*."""
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable client name (e.g. ``"openai-compat"``)."""
        ...
