"""Observational progress events emitted while a task runs."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeAlias

from codeloom.agent.schemas import TaskPlan
from codeloom.constants import ProgressType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    type: ProgressType
    message: str | None = None
    step_number: int | None = None
    total_steps: int | None = None
    description: str | None = None
    plan: TaskPlan | None = None


ProgressCallback: TypeAlias = Callable[[ProgressEvent], None]


class ProgressReporter:
    """Wraps an optional sink; sink failures never reach the caller."""

    def __init__(self, sink: ProgressCallback | None = None) -> None:
        self._sink = sink

    def _send(self, event: ProgressEvent) -> None:
        if self._sink is None:
            return
        try:
            self._sink(event)
        except Exception:
            logger.warning(
                "event=progress_sink_failed type=%s", event.type, exc_info=True
            )

    def status(self, message: str) -> None:
        self._send(ProgressEvent(type=ProgressType.STATUS, message=message))

    def plan(self, plan: TaskPlan) -> None:
        self._send(
            ProgressEvent(
                type=ProgressType.PLAN,
                message=f"Plan created with {len(plan.steps)} steps",
                total_steps=len(plan.steps),
                plan=plan,
            )
        )

    def step(self, number: int, total: int, description: str) -> None:
        self._send(
            ProgressEvent(
                type=ProgressType.STEP,
                message=f"Step {number}/{total}: {description}",
                step_number=number,
                total_steps=total,
                description=description,
            )
        )
