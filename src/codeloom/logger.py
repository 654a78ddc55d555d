"""Structured JSON logger for agent task tracking."""

import json
import logging
from datetime import UTC, datetime
from pathlib import Path

from codeloom.constants import ERROR_TRUNCATION_CHARS

__all__ = ["TaskLogger"]


class TaskLogger:
    """Structured JSON logger with task_id correlation.

    Passed explicitly to the agent; one instance per process is typical
    but nothing depends on that.
    """

    def __init__(self, log_dir: Path, level: str = "INFO") -> None:
        self._log_dir = log_dir
        self._log_dir.mkdir(parents=True, exist_ok=True)
        self._logger = logging.getLogger(f"codeloom.tasks.{log_dir}")
        self._logger.setLevel(getattr(logging, level.upper()))
        self._logger.propagate = False

        if not self._logger.handlers:
            handler = logging.FileHandler(log_dir / "tasks.log")
            handler.setFormatter(logging.Formatter("%(message)s"))
            self._logger.addHandler(handler)

    def log_task(
        self,
        task_id: str,
        query: str,
        status: str,
        steps: int,
        tools_called: list[str],
        duration_ms: float,
    ) -> None:
        self._logger.info(
            json.dumps({
                "type": "task",
                "timestamp": datetime.now(UTC).isoformat(),
                "task_id": task_id,
                "query": query[:ERROR_TRUNCATION_CHARS],
                "status": status,
                "steps": steps,
                "tools_called": tools_called,
                "duration_ms": duration_ms,
            })
        )

    def log_error(
        self,
        task_id: str,
        component: str,
        error: str,
    ) -> None:
        self._logger.error(
            json.dumps({
                "type": "error",
                "timestamp": datetime.now(UTC).isoformat(),
                "task_id": task_id,
                "component": component,
                "error": error[:ERROR_TRUNCATION_CHARS],
            })
        )

    def log_stage(
        self,
        task_id: str,
        stage_name: str,
        duration_ms: float,
    ) -> None:
        self._logger.info(
            json.dumps({
                "type": "stage",
                "timestamp": datetime.now(UTC).isoformat(),
                "task_id": task_id,
                "stage": stage_name,
                "duration_ms": duration_ms,
            })
        )

    def close(self) -> None:
        for handler in list(self._logger.handlers):
            handler.close()
            self._logger.removeHandler(handler)
