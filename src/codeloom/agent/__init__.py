"""Plan/execute agent with tool invocation and cooperative stop."""

from codeloom.agent.agent import CodeAgent
from codeloom.agent.schemas import AgentState, TaskInput, TaskPlan, TaskResult

__all__ = ["AgentState", "CodeAgent", "TaskInput", "TaskPlan", "TaskResult"]
