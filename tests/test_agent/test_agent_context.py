"""Tests for generation-tagged agent context."""

from __future__ import annotations

from codeloom.agent.context import AgentContext, ToolResult
from codeloom.agent.schemas import PlanStep, TaskInput, TaskPlan


def _plan(n: int) -> TaskPlan:
    return TaskPlan(steps=[PlanStep(description=f"s{i}") for i in range(n)])


class TestAgentContext:
    def test_begin_resets_state(self) -> None:
        ctx = AgentContext()
        gen = ctx.begin(TaskInput(id="1", query="q"))
        ctx.set_plan(gen, _plan(2))
        ctx.request_stop()
        ctx.begin(TaskInput(id="2", query="q2"))
        assert ctx.plan is None
        assert ctx.stop_requested is False
        assert ctx.task is not None and ctx.task.id == "2"

    def test_stale_generation_writes_dropped(self) -> None:
        ctx = AgentContext()
        old = ctx.begin(TaskInput(id="1", query="q"))
        new = ctx.begin(TaskInput(id="2", query="q"))
        ctx.set_plan(new, _plan(1))

        ctx.set_step_result(old, 0, "late")
        ctx.add_tool_result(old, 0, ToolResult("readFile", {}, "late"))
        ctx.set_plan(old, _plan(3))

        assert ctx.step_result(0) is None
        assert ctx.tool_results(0) == []
        assert ctx.plan is not None and len(ctx.plan.steps) == 1

    def test_stale_end_does_not_clear_new_task(self) -> None:
        ctx = AgentContext()
        old = ctx.begin(TaskInput(id="1", query="q"))
        ctx.begin(TaskInput(id="2", query="q"))
        ctx.end(old)
        assert ctx.task is not None and ctx.task.id == "2"

    def test_completed_steps_only_before_index(self) -> None:
        ctx = AgentContext()
        gen = ctx.begin(TaskInput(id="1", query="q"))
        ctx.set_plan(gen, _plan(3))
        ctx.set_step_result(gen, 0, "zero")
        ctx.set_step_result(gen, 1, "one")
        assert ctx.completed_steps(1) == [(0, "zero")]
        assert ctx.completed_steps(3) == [(0, "zero"), (1, "one")]

    def test_tool_results_kept_per_step(self) -> None:
        ctx = AgentContext()
        gen = ctx.begin(TaskInput(id="1", query="q"))
        ctx.add_tool_result(gen, 0, ToolResult("a", {}, "x"))
        ctx.add_tool_result(gen, 1, ToolResult("b", {}, "y"))
        assert [r.tool for r in ctx.tool_results(0)] == ["a"]
        assert [r.tool for r in ctx.tool_results(1)] == ["b"]

    def test_end_clears(self) -> None:
        ctx = AgentContext()
        gen = ctx.begin(TaskInput(id="1", query="q"))
        ctx.set_plan(gen, _plan(1))
        ctx.end(gen)
        assert ctx.task is None
        assert ctx.plan is None
