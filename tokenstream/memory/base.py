"""Abstract chat-memory interfaces."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from tokenstream.llm.types import ChatMessage


class ChatMemory(ABC):
    """The ordered message history of one conversation."""

    @property
    @abstractmethod
    def memory_id(self) -> Any:
        ...

    @abstractmethod
    async def add(self, message: ChatMessage) -> None:
        ...

    @abstractmethod
    async def messages(self) -> list[ChatMessage]:
        """Return a snapshot of the history, oldest first."""
        ...

    @abstractmethod
    async def clear(self) -> None:
        ...


class ChatMemoryStore(ABC):
    """
    Persistence behind ``ChatMemory`` instances, keyed by memory id.

    Implementations are shared between conversations and must synchronise
    their own writes.
    """

    @abstractmethod
    async def get_messages(self, memory_id: Any) -> list[ChatMessage]:
        ...

    @abstractmethod
    async def append_message(self, memory_id: Any, message: ChatMessage) -> None:
        ...

    @abstractmethod
    async def delete_messages(self, memory_id: Any) -> None:
        ...
