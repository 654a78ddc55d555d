"""Tools the agent can invoke while executing plan steps."""

from codeloom.tools.base import Tool, ToolDefinition, validate_tool_args
from codeloom.tools.file_reader import FileReaderTool
from codeloom.tools.registry import ToolRegistry

__all__ = [
    "FileReaderTool",
    "Tool",
    "ToolDefinition",
    "ToolRegistry",
    "validate_tool_args",
]
