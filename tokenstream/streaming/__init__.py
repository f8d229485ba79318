"""Streaming dispatch: handlers, reasoning classification, tool rounds."""

from tokenstream.streaming.classifier import (
    ChunkEvent,
    ChunkKind,
    ExtractionStrategy,
    ReasoningClassifier,
    default_answer_extractor,
    default_reasoning_extractor,
    has_reasoning_content,
)
from tokenstream.streaming.context import ServiceContext
from tokenstream.streaming.dispatcher import DispatchState, StreamingResponseDispatcher
from tokenstream.streaming.handler import (
    ReasoningAwareStreamingChatResponseHandler,
    StreamingChatResponseHandler,
)
from tokenstream.streaming.token_stream import TokenStream

__all__ = [
    "ChunkEvent",
    "ChunkKind",
    "DispatchState",
    "ExtractionStrategy",
    "ReasoningAwareStreamingChatResponseHandler",
    "ReasoningClassifier",
    "ServiceContext",
    "StreamingChatResponseHandler",
    "StreamingResponseDispatcher",
    "TokenStream",
    "default_answer_extractor",
    "default_reasoning_extractor",
    "has_reasoning_content",
]
