"""Task, plan and result types for the agent."""

from __future__ import annotations

import json
import re
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from codeloom.constants import TaskStatus


class AgentState(StrEnum):
    IDLE = "idle"
    RETRIEVING = "retrieving"
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    ERROR = "error"


class TaskInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    query: str
    cursor_file: str | None = None
    cursor_line: int | None = None


class ToolCall(BaseModel):
    model_config = ConfigDict(frozen=True)

    tool: str
    args: dict[str, Any] = Field(default_factory=dict)


class PlanStep(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    description: str
    tool_calls: list[ToolCall] = Field(
        default_factory=list, alias="toolCalls"
    )


class TaskPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    steps: list[PlanStep] = Field(min_length=1)


class TaskResult(BaseModel):
    id: str
    query: str
    result: str
    status: TaskStatus
    error: str | None = None


class PlanParseError(ValueError):
    """The planning response was not a valid TaskPlan."""


_FENCE_RE = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?```\s*$", re.DOTALL)


def parse_plan(raw: str) -> TaskPlan:
    """Parse a planning response body into a TaskPlan.

    Accepts bare JSON or JSON wrapped in a markdown code fence, either an
    object with ``steps`` or a bare list of steps.
    """
    text = raw.strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1).strip()
    try:
        data: Any = json.loads(text)
    except json.JSONDecodeError as exc:
        raise PlanParseError(f"invalid JSON: {exc.msg}") from exc
    if isinstance(data, list):
        data = {"steps": data}
    try:
        return TaskPlan.model_validate(data)
    except ValidationError as exc:
        err = exc.errors()[0]
        loc = ".".join(str(p) for p in err["loc"]) or "<root>"
        raise PlanParseError(f"{loc}: {err['msg']}") from exc
