from __future__ import annotations

from typing import Optional


class ToolError(Exception):
    """Base exception for tool lookup and execution failures."""

    def __init__(self, message: str, tool_name: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """No tool with the requested name is registered."""


class ToolExecutionError(ToolError):
    """A tool ran but could not produce a result."""
