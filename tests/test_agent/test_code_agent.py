"""Tests for the plan/execute agent with scripted model tiers."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest

from codeloom.agent import AgentState, CodeAgent, TaskInput
from codeloom.agent.agent import STOPPED_MESSAGE
from codeloom.agent.progress import ProgressEvent
from codeloom.constants import ProgressType, RetrievalSource, TaskStatus, TierKind
from codeloom.logger import TaskLogger
from codeloom.orchestration.fakes import ScriptedModelTier
from codeloom.orchestration.orchestrator import MultiModelOrchestrator
from codeloom.relevancy.schemas import EditorState, RelevantContext, RetrievedItem
from codeloom.resilience.errors import AgentBusyError
from codeloom.tools import FileReaderTool, ToolRegistry

FILE_BODY = "def greet():\n    return 'hi'\n"


class _NoteTool:
    description = "Record a note"
    input_schema = {
        "type": "object",
        "properties": {"text": {"type": "string"}},
        "required": ["text"],
    }

    def __init__(self, name: str = "note", on_execute: Any = None) -> None:
        self.name = name
        self.calls: list[dict[str, Any]] = []
        self._on_execute = on_execute

    async def execute(self, args: dict[str, Any]) -> str:
        self.calls.append(args)
        if self._on_execute is not None:
            self._on_execute()
        return f"noted: {args['text']}"


class _FakeRetriever:
    def __init__(self) -> None:
        self.calls: list[tuple[str, EditorState, int | None]] = []

    async def get_context(
        self,
        query: str,
        editor_state: EditorState,
        history: Sequence[str] | None = None,
        token_limit: int | None = None,
    ) -> RelevantContext:
        self.calls.append((query, editor_state, token_limit))
        item = RetrievedItem(
            id="src/app.py#greet@1",
            content="def greet(): ...",
            file_path="src/app.py",
            start_line=1,
            end_line=2,
            score=0.9,
            source=RetrievalSource.VECTOR,
            type="function",
        )
        return RelevantContext(items=[item])


def _plan(*steps: dict[str, Any]) -> str:
    return json.dumps({"steps": list(steps)})


TWO_STEP_PLAN = _plan(
    {
        "description": "Read the file",
        "toolCalls": [{"tool": "readFile", "args": {"path": "src/app.py"}}],
    },
    {"description": "Summarize it", "toolCalls": []},
)


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "ws"
    (root / "src").mkdir(parents=True)
    (root / "src" / "app.py").write_text(FILE_BODY)
    return root


def _agent(
    workspace: Path,
    tier: ScriptedModelTier,
    extra_tools: Sequence[Any] = (),
    **kwargs: Any,
) -> tuple[CodeAgent, _FakeRetriever]:
    retriever = _FakeRetriever()
    agent = CodeAgent(
        retriever,
        MultiModelOrchestrator([tier]),
        ToolRegistry([FileReaderTool(workspace), *extra_tools]),
        **kwargs,
    )
    return agent, retriever


def _task(query: str = "Explain greet", **kwargs: Any) -> TaskInput:
    return TaskInput(id="t1", query=query, **kwargs)


async def _wait_for_calls(tier: ScriptedModelTier, count: int) -> None:
    for _ in range(200):
        if len(tier.calls) >= count:
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"tier saw {len(tier.calls)} calls, wanted {count}")


class TestHappyPath:
    async def test_two_step_task(self, workspace: Path) -> None:
        tier = ScriptedModelTier(
            "cloud", TierKind.CLOUD,
            [TWO_STEP_PLAN, "step one done", "final answer"],
        )
        agent, _ = _agent(workspace, tier)

        result = await agent.run_task(_task())

        assert result.status == TaskStatus.COMPLETED
        assert result.result == "final answer"
        assert result.error is None
        assert agent.state == AgentState.COMPLETED
        assert len(tier.calls) == 3

    async def test_step_prompts(self, workspace: Path) -> None:
        tier = ScriptedModelTier(
            "cloud", TierKind.CLOUD,
            [TWO_STEP_PLAN, "step one done", "final answer"],
        )
        agent, _ = _agent(workspace, tier)
        await agent.run_task(_task())

        planning, step1, step2 = tier.calls
        assert "Task: Explain greet" in planning.prompt
        assert "readFile" in planning.prompt

        assert step1.system == "You are executing step 1 of 2: Read the file"
        assert "Tool readFile" in step1.prompt
        assert FILE_BODY in step1.prompt
        assert "Previous Steps" not in step1.prompt

        assert step2.system == "You are executing step 2 of 2: Summarize it"
        assert "Step 1 Result: step one done" in step2.prompt
        assert FILE_BODY not in step2.prompt
        assert "No tools used in this step" in step2.prompt

    async def test_request_options(self, workspace: Path) -> None:
        tier = ScriptedModelTier(
            "cloud", TierKind.CLOUD, [TWO_STEP_PLAN, "a", "b"]
        )
        agent, _ = _agent(workspace, tier)
        await agent.run_task(_task())
        planning = tier.calls[0].options
        assert planning.max_tokens == 1000
        assert planning.temperature == 0.2
        execution = tier.calls[1].options
        assert execution.max_tokens == 2000
        assert execution.temperature == 0.5

    async def test_retriever_gets_cursor_and_limit(self, workspace: Path) -> None:
        tier = ScriptedModelTier(
            "cloud", TierKind.CLOUD, [TWO_STEP_PLAN, "a", "b"]
        )
        agent, retriever = _agent(workspace, tier, context_token_limit=500)
        await agent.run_task(_task(cursor_file="src/app.py", cursor_line=2))
        query, editor, limit = retriever.calls[0]
        assert query == "Explain greet"
        assert editor == EditorState(current_file="src/app.py", cursor_line=2)
        assert limit == 500

    async def test_context_cleared_after_task(self, workspace: Path) -> None:
        tier = ScriptedModelTier(
            "cloud", TierKind.CLOUD, [TWO_STEP_PLAN, "a", "b"]
        )
        agent, _ = _agent(workspace, tier)
        await agent.run_task(_task())
        assert agent.context.task is None
        assert agent.context.plan is None
        assert agent.is_running is False

    async def test_progress_events(self, workspace: Path) -> None:
        events: list[ProgressEvent] = []
        tier = ScriptedModelTier(
            "cloud", TierKind.CLOUD, [TWO_STEP_PLAN, "a", "b"]
        )
        agent, _ = _agent(workspace, tier, progress=events.append)
        await agent.run_task(_task())

        types = [e.type for e in events]
        assert types == [
            ProgressType.STATUS,
            ProgressType.STATUS,
            ProgressType.PLAN,
            ProgressType.STEP,
            ProgressType.STEP,
            ProgressType.STATUS,
        ]
        assert events[2].message == "Plan created with 2 steps"
        assert events[3].message == "Step 1/2: Read the file"
        assert events[-1].message == "Task completed"

    async def test_failing_progress_sink_does_not_break_task(
        self, workspace: Path
    ) -> None:
        def sink(event: ProgressEvent) -> None:
            raise RuntimeError("ui gone")

        tier = ScriptedModelTier(
            "cloud", TierKind.CLOUD, [TWO_STEP_PLAN, "a", "b"]
        )
        agent, _ = _agent(workspace, tier, progress=sink)
        result = await agent.run_task(_task())
        assert result.status == TaskStatus.COMPLETED

    async def test_task_log_written(self, workspace: Path, tmp_path: Path) -> None:
        task_logger = TaskLogger(tmp_path / "logs")
        tier = ScriptedModelTier(
            "cloud", TierKind.CLOUD, [TWO_STEP_PLAN, "a", "b"]
        )
        agent, _ = _agent(workspace, tier, task_logger=task_logger)
        await agent.run_task(_task())
        task_logger.close()

        lines = (tmp_path / "logs" / "tasks.log").read_text().splitlines()
        records = [json.loads(line) for line in lines]
        stages = [r["stage"] for r in records if r["type"] == "stage"]
        assert stages == ["retrieval", "planning", "step_1", "step_2"]
        task = next(r for r in records if r["type"] == "task")
        assert task["status"] == "completed"
        assert task["steps"] == 2
        assert task["tools_called"] == ["readFile"]


class TestFailures:
    async def test_unparseable_plan(self, workspace: Path) -> None:
        tier = ScriptedModelTier("cloud", TierKind.CLOUD, ["sure, here you go"])
        agent, _ = _agent(workspace, tier)
        result = await agent.run_task(_task())
        assert result.status == TaskStatus.ERROR
        assert (result.error or "").startswith("Failed to parse plan")
        assert result.result == f"Error: {result.error}"
        assert agent.state == AgentState.ERROR

    async def test_unknown_tool(self, workspace: Path) -> None:
        plan = _plan(
            {"description": "Write", "toolCalls": [{"tool": "writeFile"}]}
        )
        tier = ScriptedModelTier("cloud", TierKind.CLOUD, [plan])
        agent, _ = _agent(workspace, tier)
        result = await agent.run_task(_task())
        assert result.error == "Tool not found: writeFile"
        assert len(tier.calls) == 1

    async def test_invalid_tool_args(self, workspace: Path) -> None:
        plan = _plan(
            {"description": "Read", "toolCalls": [{"tool": "readFile", "args": {}}]}
        )
        tier = ScriptedModelTier("cloud", TierKind.CLOUD, [plan])
        agent, _ = _agent(workspace, tier)
        result = await agent.run_task(_task())
        assert (result.error or "").startswith(
            "Invalid arguments for tool readFile: field 'path'"
        )

    async def test_tool_failure_stops_task(self, workspace: Path) -> None:
        plan = _plan(
            {
                "description": "Read",
                "toolCalls": [
                    {"tool": "readFile", "args": {"path": "../outside.txt"}}
                ],
            },
            {"description": "Never reached"},
        )
        tier = ScriptedModelTier("cloud", TierKind.CLOUD, [plan, "x"])
        agent, _ = _agent(workspace, tier)
        result = await agent.run_task(_task())
        assert result.error == "Path escapes the workspace: ../outside.txt"
        assert len(tier.calls) == 1

    async def test_step_args_checked_before_any_tool_runs(
        self, workspace: Path
    ) -> None:
        note = _NoteTool()
        plan = _plan(
            {
                "description": "Note then read",
                "toolCalls": [
                    {"tool": "note", "args": {"text": "hello"}},
                    {"tool": "readFile", "args": {}},
                ],
            }
        )
        tier = ScriptedModelTier("cloud", TierKind.CLOUD, [plan, "x"])
        agent, _ = _agent(workspace, tier, extra_tools=[note])
        result = await agent.run_task(_task())

        assert (result.error or "").startswith(
            "Invalid arguments for tool readFile"
        )
        assert note.calls == []
        assert len(tier.calls) == 1

    async def test_model_failure(self, workspace: Path) -> None:
        tier = ScriptedModelTier(
            "cloud", TierKind.CLOUD, [ConnectionError("offline")]
        )
        agent, _ = _agent(workspace, tier)
        result = await agent.run_task(_task())
        assert (result.error or "").startswith("All model tiers failed")

    async def test_failure_logged(self, workspace: Path, tmp_path: Path) -> None:
        task_logger = TaskLogger(tmp_path / "logs")
        tier = ScriptedModelTier("cloud", TierKind.CLOUD, ["not json"])
        agent, _ = _agent(workspace, tier, task_logger=task_logger)
        await agent.run_task(_task())
        task_logger.close()
        records = [
            json.loads(line)
            for line in (tmp_path / "logs" / "tasks.log").read_text().splitlines()
        ]
        errors = [r for r in records if r["type"] == "error"]
        assert errors[0]["component"] == "agent"
        task = next(r for r in records if r["type"] == "task")
        assert task["status"] == "error"

    async def test_agent_reusable_after_failure(self, workspace: Path) -> None:
        tier = ScriptedModelTier(
            "cloud", TierKind.CLOUD, ["not json", TWO_STEP_PLAN, "a", "b"]
        )
        agent, _ = _agent(workspace, tier)
        first = await agent.run_task(_task("one"))
        second = await agent.run_task(_task("two"))
        assert first.status == TaskStatus.ERROR
        assert second.status == TaskStatus.COMPLETED


class TestStopAndConcurrency:
    async def test_stop_when_idle_is_noop(self, workspace: Path) -> None:
        tier = ScriptedModelTier("cloud", TierKind.CLOUD, [TWO_STEP_PLAN])
        agent, _ = _agent(workspace, tier)
        agent.stop()
        assert agent.state == AgentState.IDLE
        assert agent.context.stop_requested is False

    async def test_stop_after_plan_skips_steps(self, workspace: Path) -> None:
        holder: list[CodeAgent] = []

        def on_progress(event: ProgressEvent) -> None:
            if event.type == ProgressType.PLAN:
                holder[0].stop()

        tier = ScriptedModelTier(
            "cloud", TierKind.CLOUD, [TWO_STEP_PLAN, "a", "b"]
        )
        agent, _ = _agent(workspace, tier, progress=on_progress)
        holder.append(agent)
        result = await agent.run_task(_task())

        assert result.status == TaskStatus.ERROR
        assert result.error == STOPPED_MESSAGE
        assert len(tier.calls) == 1

    async def test_second_task_while_running_rejected(
        self, workspace: Path
    ) -> None:
        tier = ScriptedModelTier(
            "cloud", TierKind.CLOUD, [TWO_STEP_PLAN, "a", "b"], delay=0.2
        )
        agent, _ = _agent(workspace, tier)
        running = asyncio.create_task(agent.run_task(_task()))
        await _wait_for_calls(tier, 1)

        assert agent.is_running
        with pytest.raises(AgentBusyError):
            await agent.run_task(_task("other"))

        result = await running
        assert result.status == TaskStatus.COMPLETED

    async def test_cooperative_stop_waits_for_inflight_call(
        self, workspace: Path
    ) -> None:
        one_step = _plan({"description": "Only step"})
        tier = ScriptedModelTier(
            "cloud", TierKind.CLOUD, [one_step, "done"], delay=0.2
        )
        agent, _ = _agent(workspace, tier)
        running = asyncio.create_task(agent.run_task(_task()))
        await _wait_for_calls(tier, 2)
        agent.stop()
        result = await running
        # The last step's call was already in flight and no checkpoint follows it
        assert result.status == TaskStatus.COMPLETED

    async def test_abort_inflight_cancels_model_call(
        self, workspace: Path
    ) -> None:
        one_step = _plan({"description": "Only step"})
        tier = ScriptedModelTier(
            "cloud", TierKind.CLOUD, [one_step, "done"], delay=0.2
        )
        agent, _ = _agent(workspace, tier)
        running = asyncio.create_task(agent.run_task(_task()))
        await _wait_for_calls(tier, 2)
        agent.stop(abort_inflight=True)
        result = await running
        assert result.status == TaskStatus.ERROR
        assert result.error == STOPPED_MESSAGE
        assert agent.is_running is False

    async def test_stop_during_tool_skips_remaining_tools(
        self, workspace: Path
    ) -> None:
        holder: list[CodeAgent] = []
        first = _NoteTool("note", on_execute=lambda: holder[0].stop())
        second = _NoteTool("todo")
        plan = _plan(
            {
                "description": "Two notes",
                "toolCalls": [
                    {"tool": "note", "args": {"text": "one"}},
                    {"tool": "todo", "args": {"text": "two"}},
                ],
            }
        )
        tier = ScriptedModelTier("cloud", TierKind.CLOUD, [plan, "x"])
        agent, _ = _agent(workspace, tier, extra_tools=[first, second])
        holder.append(agent)
        result = await agent.run_task(_task())

        assert first.calls == [{"text": "one"}]
        assert second.calls == []
        assert len(tier.calls) == 1
        assert result.status == TaskStatus.ERROR
        assert result.error == STOPPED_MESSAGE
