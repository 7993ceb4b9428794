"""Interactive chat client that drives the shim through its Messages API."""

from .repl import ChatRepl, ShimServer, run_chat
from .session import ChatError, ChatSession
from .tools import ChatTool, GlobTool, GrepTool, ReadTool, ToolError, default_tools

__all__ = [
    "ChatError",
    "ChatRepl",
    "ChatSession",
    "ChatTool",
    "GlobTool",
    "GrepTool",
    "ReadTool",
    "ShimServer",
    "ToolError",
    "default_tools",
    "run_chat",
]
