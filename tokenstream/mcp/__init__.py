"""Tool discovery across remote tool servers."""

from tokenstream.mcp.client import (
    McpClient,
    McpToolPostInterceptor,
    McpToolPreInterceptor,
    StaticMcpClient,
)
from tokenstream.mcp.provider import McpToolProvider, McpToolProviderBuilder

__all__ = [
    "McpClient",
    "McpToolPostInterceptor",
    "McpToolPreInterceptor",
    "McpToolProvider",
    "McpToolProviderBuilder",
    "StaticMcpClient",
]
