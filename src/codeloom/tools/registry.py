"""Name → tool lookup used by the agent."""

from __future__ import annotations

import logging

from codeloom.tools.base import Tool, ToolDefinition, definition_of

logger = logging.getLogger(__name__)


class ToolRegistry:
    def __init__(self, tools: list[Tool] | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            logger.warning(
                "event=tool_overwritten name=%s", tool.name
            )
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> list[str]:
        return sorted(self._tools)

    def definitions(self) -> list[ToolDefinition]:
        return [definition_of(self._tools[n]) for n in self.names()]
