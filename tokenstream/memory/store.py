"""In-process chat-memory store and the per-id memory service."""

from __future__ import annotations

import asyncio
from typing import Any

from tokenstream.llm.types import ChatMessage
from tokenstream.memory.base import ChatMemory, ChatMemoryStore


class InMemoryChatMemoryStore(ChatMemoryStore):
    """Keeps every conversation in a dict; lost when the process exits."""

    def __init__(self) -> None:
        self._messages: dict[Any, list[ChatMessage]] = {}
        self._lock = asyncio.Lock()

    async def get_messages(self, memory_id: Any) -> list[ChatMessage]:
        return list(self._messages.get(memory_id, []))

    async def append_message(self, memory_id: Any, message: ChatMessage) -> None:
        async with self._lock:
            self._messages.setdefault(memory_id, []).append(message)

    async def delete_messages(self, memory_id: Any) -> None:
        async with self._lock:
            self._messages.pop(memory_id, None)


class StoreBackedChatMemory(ChatMemory):
    def __init__(self, memory_id: Any, store: ChatMemoryStore) -> None:
        self._memory_id = memory_id
        self._store = store

    @property
    def memory_id(self) -> Any:
        return self._memory_id

    async def add(self, message: ChatMessage) -> None:
        await self._store.append_message(self._memory_id, message)

    async def messages(self) -> list[ChatMessage]:
        return await self._store.get_messages(self._memory_id)

    async def clear(self) -> None:
        await self._store.delete_messages(self._memory_id)


class ChatMemoryService:
    """
    Hands out one ``ChatMemory`` per memory id.

    Usage::

        service = ChatMemoryService(InMemoryChatMemoryStore())
        memory = service.get_or_create_chat_memory("user-42")
        await memory.add(UserMessage("hi"))
    """

    def __init__(self, store: ChatMemoryStore | None = None) -> None:
        self.store = store or InMemoryChatMemoryStore()
        self._memories: dict[Any, ChatMemory] = {}

    def get_or_create_chat_memory(self, memory_id: Any) -> ChatMemory:
        memory = self._memories.get(memory_id)
        if memory is None:
            memory = StoreBackedChatMemory(memory_id, self.store)
            self._memories[memory_id] = memory
        return memory

    def get_chat_memory(self, memory_id: Any) -> ChatMemory | None:
        return self._memories.get(memory_id)

    async def evict_chat_memory(self, memory_id: Any) -> None:
        memory = self._memories.pop(memory_id, None)
        if memory is not None:
            await memory.clear()
