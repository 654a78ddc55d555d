"""Plan/execute agent.

States: IDLE → RETRIEVING → PLANNING → EXECUTING → COMPLETED | ERROR.
One task at a time; steps and the tools inside a step run strictly in
order. ``stop()`` is cooperative: the flag is checked before each step,
before each tool, and before each step's generation call.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from typing import Protocol

from codeloom.agent.context import AgentContext, ToolResult
from codeloom.agent.progress import ProgressCallback, ProgressReporter
from codeloom.agent.prompts import build_planning_prompt, build_step_prompt
from codeloom.agent.schemas import (
    AgentState,
    PlanParseError,
    TaskInput,
    TaskPlan,
    TaskResult,
    parse_plan,
)
from codeloom.constants import (
    EXECUTION_MAX_TOKENS,
    EXECUTION_TEMPERATURE,
    PLANNING_MAX_TOKENS,
    PLANNING_TEMPERATURE,
    TaskStatus,
    TaskType,
)
from codeloom.logger import TaskLogger
from codeloom.orchestration.schemas import ModelResponse, RequestOptions
from codeloom.relevancy.schemas import EditorState, RelevantContext
from codeloom.resilience.cancellation import CancellationToken
from codeloom.resilience.errors import (
    AgentBusyError,
    CodeloomError,
    OperationCancelledError,
    ToolExecutionError,
)
from codeloom.tools.base import Tool, validate_tool_args
from codeloom.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

STOPPED_MESSAGE = "Task execution stopped by user"


class ContextRetriever(Protocol):
    async def get_context(
        self,
        query: str,
        editor_state: EditorState,
        history: Sequence[str] | None = None,
        token_limit: int | None = None,
    ) -> RelevantContext: ...


class LLMOrchestrator(Protocol):
    async def make_api_request(
        self,
        prompt: str,
        options: RequestOptions | None = None,
        cancellation: CancellationToken | None = None,
    ) -> ModelResponse: ...


class CodeAgent:
    def __init__(
        self,
        retriever: ContextRetriever,
        orchestrator: LLMOrchestrator,
        tools: ToolRegistry,
        *,
        progress: ProgressCallback | None = None,
        task_logger: TaskLogger | None = None,
        context_token_limit: int | None = None,
    ) -> None:
        self._retriever = retriever
        self._orchestrator = orchestrator
        self._tools = tools
        self._progress = ProgressReporter(progress)
        self._task_logger = task_logger
        self._token_limit = context_token_limit
        self._context = AgentContext()
        self._state = AgentState.IDLE
        self._running = False
        self._cancellation: CancellationToken | None = None

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def context(self) -> AgentContext:
        return self._context

    def stop(self, *, abort_inflight: bool = False) -> None:
        """Request a cooperative stop of the running task.

        No-op when idle. With ``abort_inflight`` the current model call is
        abandoned too, instead of waiting for the next checkpoint.
        """
        if not self._running:
            return
        if not self._context.stop_requested:
            logger.info(
                "event=agent_stop_requested task_id=%s",
                self._context.task.id if self._context.task else "-",
            )
        self._context.request_stop()
        if abort_inflight and self._cancellation is not None:
            self._cancellation.cancel(STOPPED_MESSAGE)

    async def run_task(self, task: TaskInput) -> TaskResult:
        if self._running:
            raise AgentBusyError("Agent is already running a task")
        self._running = True
        self._cancellation = CancellationToken()
        generation = self._context.begin(task)
        started = time.monotonic()
        tools_called: list[str] = []
        try:
            output = await self._run(task, generation, tools_called)
            self._state = AgentState.COMPLETED
            self._progress.status("Task completed")
            result = TaskResult(
                id=task.id,
                query=task.query,
                result=output,
                status=TaskStatus.COMPLETED,
            )
        except CodeloomError as exc:
            result = self._fail(task, exc.message, exc)
        except Exception as exc:
            logger.exception("event=agent_unexpected_error task_id=%s", task.id)
            result = self._fail(task, str(exc) or type(exc).__name__, exc)
        finally:
            steps_done = len(self._context.completed_steps(self._step_count()))
            self._context.end(generation)
            self._cancellation = None
            self._running = False

        if self._task_logger is not None:
            self._task_logger.log_task(
                task.id,
                task.query,
                result.status,
                steps_done,
                tools_called,
                (time.monotonic() - started) * 1000,
            )
        return result

    def _fail(
        self, task: TaskInput, message: str, exc: BaseException
    ) -> TaskResult:
        self._state = AgentState.ERROR
        logger.warning(
            "event=agent_task_failed task_id=%s error_type=%s error=%s",
            task.id,
            type(exc).__name__,
            message,
        )
        if self._task_logger is not None:
            self._task_logger.log_error(task.id, "agent", message)
        self._progress.status(f"Error: {message}")
        return TaskResult(
            id=task.id,
            query=task.query,
            result=f"Error: {message}",
            status=TaskStatus.ERROR,
            error=message,
        )

    def _step_count(self) -> int:
        plan = self._context.plan
        return len(plan.steps) if plan is not None else 0

    def _check_stop(self) -> None:
        if self._context.stop_requested:
            raise OperationCancelledError(STOPPED_MESSAGE)

    async def _run(
        self, task: TaskInput, generation: int, tools_called: list[str]
    ) -> str:
        ctx = self._context

        stage_started = time.monotonic()
        self._state = AgentState.RETRIEVING
        self._progress.status("Retrieving relevant context...")
        retrieved = await self._retriever.get_context(
            task.query,
            EditorState(
                current_file=task.cursor_file,
                cursor_line=task.cursor_line,
            ),
            token_limit=self._token_limit,
        )
        ctx.set_retrieved(generation, retrieved)
        self._log_stage(task, "retrieval", stage_started)

        self._check_stop()
        stage_started = time.monotonic()
        self._state = AgentState.PLANNING
        self._progress.status("Planning task execution...")
        plan = await self._plan(task, retrieved)
        ctx.set_plan(generation, plan)
        self._log_stage(task, "planning", stage_started)
        self._progress.plan(plan)

        self._state = AgentState.EXECUTING
        total = len(plan.steps)
        output = ""
        for index, step in enumerate(plan.steps):
            stage_started = time.monotonic()
            self._check_stop()
            self._progress.step(index + 1, total, step.description)

            # Every call of the step is checked before any tool runs.
            resolved = []
            for call in step.tool_calls:
                tool = self._resolve_tool(call.tool, call.args)
                resolved.append((tool, validate_tool_args(tool, call.args)))
            for tool, args in resolved:
                self._check_stop()
                output_text = await self._execute_tool(tool, args)
                ctx.add_tool_result(
                    generation, index, ToolResult(tool.name, args, output_text)
                )
                tools_called.append(tool.name)

            self._check_stop()
            prompt = build_step_prompt(
                task,
                retrieved,
                ctx.completed_steps(index),
                step,
                ctx.tool_results(index),
            )
            response = await self._orchestrator.make_api_request(
                prompt,
                RequestOptions(
                    task_type=TaskType.EXECUTION,
                    max_tokens=EXECUTION_MAX_TOKENS,
                    temperature=EXECUTION_TEMPERATURE,
                    system_prompt=(
                        f"You are executing step {index + 1} of {total}: "
                        f"{step.description}"
                    ),
                ),
                self._cancellation,
            )
            output = response.content
            ctx.set_step_result(generation, index, output)
            self._log_stage(task, f"step_{index + 1}", stage_started)
        return output

    async def _plan(
        self, task: TaskInput, retrieved: RelevantContext
    ) -> TaskPlan:
        prompt = build_planning_prompt(
            task, retrieved, self._tools.definitions()
        )
        response = await self._orchestrator.make_api_request(
            prompt,
            RequestOptions(
                task_type=TaskType.PLANNING,
                max_tokens=PLANNING_MAX_TOKENS,
                temperature=PLANNING_TEMPERATURE,
            ),
            self._cancellation,
        )
        try:
            return parse_plan(response.content)
        except PlanParseError as exc:
            raise CodeloomError(
                f"Failed to parse plan: {exc}", cause=exc
            ) from exc

    def _resolve_tool(self, name: str, args: dict[str, object]) -> Tool:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolExecutionError(
                f"Tool not found: {name}", tool_name=name, args=dict(args)
            )
        return tool

    async def _execute_tool(self, tool: Tool, args: dict[str, object]) -> str:
        try:
            return await tool.execute(dict(args))
        except ToolExecutionError:
            raise
        except Exception as exc:
            raise ToolExecutionError(
                f"Tool {tool.name} failed: {exc}",
                tool_name=tool.name,
                args=dict(args),
                cause=exc,
            ) from exc

    def _log_stage(self, task: TaskInput, name: str, started: float) -> None:
        if self._task_logger is not None:
            self._task_logger.log_stage(
                task.id, name, (time.monotonic() - started) * 1000
            )
