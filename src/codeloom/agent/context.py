"""Mutable state for the one task an agent is running.

Every write is tagged with the generation returned by ``begin``. When
a new task begins the generation moves on, so late writes from a
stopped task's callbacks are dropped instead of leaking into the new
task's state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from codeloom.agent.schemas import TaskInput, TaskPlan
from codeloom.relevancy.schemas import RelevantContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolResult:
    tool: str
    args: dict[str, Any]
    output: str


class AgentContext:
    def __init__(self) -> None:
        self._generation = 0
        self._clear()

    def _clear(self) -> None:
        self.task: TaskInput | None = None
        self.retrieved: RelevantContext | None = None
        self.plan: TaskPlan | None = None
        self._tool_results: dict[int, list[ToolResult]] = {}
        self._step_results: list[str | None] = []
        self._stop_requested = False

    @property
    def generation(self) -> int:
        return self._generation

    def begin(self, task: TaskInput) -> int:
        """Discard all prior state and start a new generation."""
        self._generation += 1
        self._clear()
        self.task = task
        return self._generation

    def end(self, generation: int) -> None:
        if self._accept(generation, "end"):
            self._clear()

    def _accept(self, generation: int, what: str) -> bool:
        if generation != self._generation:
            logger.debug(
                "event=stale_context_write what=%s generation=%d current=%d",
                what,
                generation,
                self._generation,
            )
            return False
        return True

    # ── Writes ─────────────────────────────────────────────

    def set_retrieved(self, generation: int, context: RelevantContext) -> None:
        if self._accept(generation, "retrieved"):
            self.retrieved = context

    def set_plan(self, generation: int, plan: TaskPlan) -> None:
        if self._accept(generation, "plan"):
            self.plan = plan
            self._step_results = [None] * len(plan.steps)

    def add_tool_result(
        self, generation: int, step_index: int, result: ToolResult
    ) -> None:
        if self._accept(generation, "tool_result"):
            self._tool_results.setdefault(step_index, []).append(result)

    def set_step_result(
        self, generation: int, step_index: int, text: str
    ) -> None:
        if not self._accept(generation, "step_result"):
            return
        if step_index >= len(self._step_results):
            self._step_results.extend(
                [None] * (step_index + 1 - len(self._step_results))
            )
        self._step_results[step_index] = text

    def request_stop(self) -> None:
        self._stop_requested = True

    # ── Reads ──────────────────────────────────────────────

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def tool_results(self, step_index: int) -> list[ToolResult]:
        return list(self._tool_results.get(step_index, []))

    def step_result(self, step_index: int) -> str | None:
        if step_index < len(self._step_results):
            return self._step_results[step_index]
        return None

    def completed_steps(self, before: int) -> list[tuple[int, str]]:
        """(index, text) of every filled step result before ``before``."""
        return [
            (i, text)
            for i, text in enumerate(self._step_results[:before])
            if text is not None
        ]
