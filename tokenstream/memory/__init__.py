"""Conversation memory: interfaces, in-process and SQLite stores."""

from tokenstream.memory.base import ChatMemory, ChatMemoryStore
from tokenstream.memory.sqlite_store import SqliteChatMemoryStore
from tokenstream.memory.store import (
    ChatMemoryService,
    InMemoryChatMemoryStore,
    StoreBackedChatMemory,
)

__all__ = [
    "ChatMemory",
    "ChatMemoryService",
    "ChatMemoryStore",
    "InMemoryChatMemoryStore",
    "SqliteChatMemoryStore",
    "StoreBackedChatMemory",
]
