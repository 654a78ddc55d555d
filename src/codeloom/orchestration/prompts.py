"""Turn a prompt plus options into chat messages for a tier."""

from __future__ import annotations

from codeloom.constants import TaskType, TierKind
from codeloom.orchestration.schemas import Messages, RequestOptions

DEFAULT_SYSTEM_PROMPTS: dict[TaskType, str] = {
    TaskType.PLANNING: (
        "You are a coding assistant that breaks tasks into steps. "
        "Respond with JSON only."
    ),
    TaskType.EXECUTION: (
        "You are a coding assistant executing one step of a plan."
    ),
    TaskType.CODE_GENERATION: (
        "You are an expert programmer. Return working code with brief"
        " explanations."
    ),
    TaskType.COMPLEX_REASONING: (
        "You are a senior engineer. Reason carefully about the code"
        " before answering."
    ),
}
GENERIC_SYSTEM_PROMPT = "You are a helpful coding assistant."


class PromptService:
    """Formats messages per tier kind.

    Cloud tiers get a system message plus the user prompt. Local models
    are often served without reliable system-role handling, so the
    system prompt is folded into the user message for them.
    """

    def system_prompt(self, options: RequestOptions) -> str:
        if options.system_prompt:
            return options.system_prompt
        return DEFAULT_SYSTEM_PROMPTS.get(
            options.task_type, GENERIC_SYSTEM_PROMPT
        )

    def format_messages(
        self, prompt: str, options: RequestOptions, kind: TierKind
    ) -> Messages:
        system = self.system_prompt(options)
        if kind == TierKind.LOCAL:
            return [{"role": "user", "content": f"{system}\n\n{prompt}"}]
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ]
