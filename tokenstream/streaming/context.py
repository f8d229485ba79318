from __future__ import annotations

from dataclasses import dataclass

from tokenstream.llm.providers.base import StreamingChatModel
from tokenstream.memory.store import ChatMemoryService


@dataclass
class ServiceContext:
    """
    Collaborators shared by every dispatcher generation of a conversation.

    *max_tool_rounds* bounds the number of tool round-trips; ``None`` means
    unbounded.
    """

    streaming_chat_model: StreamingChatModel
    chat_memory_service: ChatMemoryService | None = None
    max_tool_rounds: int | None = None

    def has_chat_memory(self) -> bool:
        return self.chat_memory_service is not None
