"""Structured errors raised and surfaced by the token-stream pipeline."""

from __future__ import annotations


class ErrorCode:
    ILLEGAL_CONFIGURATION = "illegal_configuration"
    TOOL_LISTING_FAILURE = "tool_listing_failure"
    TOOL_NOT_FOUND = "tool_not_found"
    TOOL_EXECUTION_FAILURE = "tool_execution_failure"
    CLASSIFIER_FAILURE = "classifier_failure"
    MODEL_STREAM_ERROR = "model_stream_error"
    RECURSION_LIMIT = "recursion_limit"


class TokenStreamError(Exception):
    """Base error carrying a machine-readable ``code``."""

    def __init__(self, message: str, code: str = ""):
        super().__init__(message)
        self.code = code


class IllegalConfigurationError(TokenStreamError):
    """The token stream was wired incorrectly; raised before any I/O."""

    def __init__(self, message: str):
        super().__init__(message, code=ErrorCode.ILLEGAL_CONFIGURATION)


class ToolListingError(TokenStreamError):
    """A tool server failed while its catalog was being collected."""

    def __init__(self, message: str, client_key: str = "", step: str = ""):
        super().__init__(message, code=ErrorCode.TOOL_LISTING_FAILURE)
        self.client_key = client_key
        self.step = step


class ToolNotFoundError(TokenStreamError):
    def __init__(self, tool_name: str):
        super().__init__(
            f"Unknown tool: {tool_name}", code=ErrorCode.TOOL_NOT_FOUND
        )
        self.tool_name = tool_name


class ToolExecutionError(TokenStreamError):
    def __init__(self, message: str, tool_name: str = ""):
        super().__init__(message, code=ErrorCode.TOOL_EXECUTION_FAILURE)
        self.tool_name = tool_name


class ModelStreamError(TokenStreamError):
    """The streaming model client failed to deliver a response."""

    def __init__(self, message: str):
        super().__init__(message, code=ErrorCode.MODEL_STREAM_ERROR)


class RecursionLimitError(TokenStreamError):
    def __init__(self, max_rounds: int):
        super().__init__(
            f"Reached maximum of {max_rounds} tool call rounds",
            code=ErrorCode.RECURSION_LIMIT,
        )
        self.max_rounds = max_rounds
