"""Chat function-call tools: package barrel exports."""

from .context import ToolContext
from .definitions import get_tool_definitions
from .dispatcher import execute_tool

__all__ = [
    "ToolContext",
    "get_tool_definitions",
    "execute_tool",
]
