"""Tests for planning-response parsing."""

from __future__ import annotations

import pytest

from codeloom.agent.schemas import PlanParseError, parse_plan


class TestParsePlan:
    def test_object_with_steps(self) -> None:
        plan = parse_plan(
            '{"steps": [{"description": "Read", "toolCalls":'
            ' [{"tool": "readFile", "args": {"path": "a.py"}}]}]}'
        )
        assert len(plan.steps) == 1
        call = plan.steps[0].tool_calls[0]
        assert call.tool == "readFile"
        assert call.args == {"path": "a.py"}

    def test_fenced_json(self) -> None:
        raw = '```json\n{"steps": [{"description": "Do it"}]}\n```'
        plan = parse_plan(raw)
        assert plan.steps[0].description == "Do it"
        assert plan.steps[0].tool_calls == []

    def test_bare_fence_without_language(self) -> None:
        plan = parse_plan('```\n[{"description": "x"}]\n```')
        assert plan.steps[0].description == "x"

    def test_bare_list_of_steps(self) -> None:
        plan = parse_plan('[{"description": "a"}, {"description": "b"}]')
        assert [s.description for s in plan.steps] == ["a", "b"]

    def test_snake_case_tool_calls_accepted(self) -> None:
        plan = parse_plan(
            '[{"description": "a", "tool_calls": [{"tool": "t"}]}]'
        )
        assert plan.steps[0].tool_calls[0].tool == "t"

    def test_invalid_json(self) -> None:
        with pytest.raises(PlanParseError, match="invalid JSON"):
            parse_plan("Here is the plan: step 1")

    def test_empty_steps_rejected(self) -> None:
        with pytest.raises(PlanParseError, match="steps"):
            parse_plan('{"steps": []}')

    def test_step_without_description_rejected(self) -> None:
        with pytest.raises(PlanParseError, match="description"):
            parse_plan('{"steps": [{"toolCalls": []}]}')

    def test_non_object_rejected(self) -> None:
        with pytest.raises(PlanParseError):
            parse_plan('"just a string"')
