"""Read a file from inside the workspace."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from codeloom.resilience.errors import ToolExecutionError
from codeloom.tools.base import JsonSchema

logger = logging.getLogger(__name__)

MAX_READ_BYTES = 200_000


class FileReaderTool:
    """Returns the text of a workspace-relative file.

    Absolute paths and paths that resolve outside the workspace root
    (``..`` segments, symlinks) are rejected.
    """

    name = "readFile"
    description = (
        "Reads the content of a file in the workspace. "
        "Takes a path relative to the workspace root."
    )
    input_schema: JsonSchema = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Path relative to the workspace root",
            },
        },
        "required": ["path"],
    }

    def __init__(self, workspace_root: Path) -> None:
        self._root = workspace_root.resolve()

    def _resolve(self, raw: str) -> Path:
        candidate = Path(raw)
        if candidate.is_absolute():
            raise ToolExecutionError(
                f"Path must be relative to the workspace: {raw}",
                tool_name=self.name,
                args={"path": raw},
            )
        resolved = (self._root / candidate).resolve()
        if not resolved.is_relative_to(self._root):
            raise ToolExecutionError(
                f"Path escapes the workspace: {raw}",
                tool_name=self.name,
                args={"path": raw},
            )
        return resolved

    async def execute(self, args: dict[str, Any]) -> str:
        raw = str(args["path"])
        path = self._resolve(raw)
        if not path.is_file():
            raise ToolExecutionError(
                f"File not found: {raw}",
                tool_name=self.name,
                args=args,
            )
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise ToolExecutionError(
                f"Failed to read {raw}: {exc}",
                tool_name=self.name,
                args=args,
                cause=exc,
            ) from exc
        if len(data) > MAX_READ_BYTES:
            logger.info(
                "event=file_read_truncated path=%s bytes=%d", raw, len(data)
            )
            data = data[:MAX_READ_BYTES]
        return data.decode("utf-8", errors="replace")
