"""
Tool invocation layer: executes the route chosen by the router.
"""
from .handlers import ToolHandlers, ToolResponse

__all__ = ["ToolHandlers", "ToolResponse"]
