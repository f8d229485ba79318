"""LLM subsystem -- wire deltas, messages, streaming tool-call assembly."""

from tokenstream.llm.delta import Delta, FunctionCall, ToolCallFragment
from tokenstream.llm.tool_call_assembler import ToolCallAssembler
from tokenstream.llm.types import (
    AiMessage,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ChatResponseMetadata,
    Content,
    SystemMessage,
    TokenUsage,
    ToolExecution,
    ToolExecutionRequest,
    ToolExecutionResultMessage,
    UserMessage,
    message_from_dict,
)

__all__ = [
    "AiMessage",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ChatResponseMetadata",
    "Content",
    "Delta",
    "FunctionCall",
    "SystemMessage",
    "TokenUsage",
    "ToolCallAssembler",
    "ToolCallFragment",
    "ToolExecution",
    "ToolExecutionRequest",
    "ToolExecutionResultMessage",
    "UserMessage",
    "message_from_dict",
]
