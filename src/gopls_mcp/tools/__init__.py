"""Tool declarations, argument validation and registration."""

from .builtin import register_builtin_tools
from .registry import ToolDispatchError, ToolHandler, ToolRegistry, ToolSpec

__all__ = [
    "ToolDispatchError",
    "ToolHandler",
    "ToolRegistry",
    "ToolSpec",
    "register_builtin_tools",
]
