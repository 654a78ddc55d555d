"""Prompt construction for planning and step execution.

A step prompt carries the step's own tool results only; earlier steps
contribute their generated results, never their tool output.
"""

from __future__ import annotations

import json
from collections.abc import Sequence

from codeloom.agent.context import ToolResult
from codeloom.agent.schemas import PlanStep, TaskInput
from codeloom.relevancy.schemas import RelevantContext
from codeloom.tools.base import ToolDefinition

NO_CONTEXT = "No relevant code context found."
NO_TOOLS_USED = "No tools used in this step"

PLAN_FORMAT = (
    '{"steps": [{"description": "what to do", '
    '"toolCalls": [{"tool": "toolName", "args": {}}]}]}'
)


def format_context(context: RelevantContext | None) -> str:
    if context is None or not context.items:
        return NO_CONTEXT
    blocks = [
        f"--- {item.file_path}:{item.start_line}-{item.end_line}"
        f" ({item.type}) ---\n{item.content}"
        for item in context.items
    ]
    return "\n\n".join(blocks)


def build_planning_prompt(
    task: TaskInput,
    context: RelevantContext | None,
    tools: Sequence[ToolDefinition],
) -> str:
    lines = [f"Task: {task.query}"]
    if task.cursor_file:
        cursor = task.cursor_file
        if task.cursor_line is not None:
            cursor = f"{cursor}:{task.cursor_line}"
        lines.append(f"Cursor: {cursor}")
    lines += ["", "Context:", format_context(context), "", "Available tools:"]
    if tools:
        lines += [
            f"- {t.name}: {t.description} "
            f"Input schema: {json.dumps(t.input_schema, sort_keys=True)}"
            for t in tools
        ]
    else:
        lines.append("- (none)")
    lines += [
        "",
        "Break the task into ordered steps. Respond with JSON only, "
        f"in this format: {PLAN_FORMAT}",
    ]
    return "\n".join(lines)


def format_tool_results(results: Sequence[ToolResult]) -> str:
    if not results:
        return NO_TOOLS_USED
    return "\n\n".join(
        f"Tool {r.tool} {json.dumps(r.args, sort_keys=True)} Result:\n{r.output}"
        for r in results
    )


def build_step_prompt(
    task: TaskInput,
    context: RelevantContext | None,
    previous: Sequence[tuple[int, str]],
    step: PlanStep,
    tool_results: Sequence[ToolResult],
) -> str:
    sections = [
        f"Task: {task.query}",
        f"Context:\n{format_context(context)}",
    ]
    if previous:
        sections.append(
            "Previous Steps:\n"
            + "\n".join(f"Step {i + 1} Result: {text}" for i, text in previous)
        )
    sections.append(f"Current Step: {step.description}")
    sections.append(f"Tool Results:\n{format_tool_results(tool_results)}")
    return "\n\n".join(sections)
