"""Tests for per-tier message formatting."""

from __future__ import annotations

from codeloom.constants import TaskType, TierKind
from codeloom.orchestration.prompts import (
    DEFAULT_SYSTEM_PROMPTS,
    GENERIC_SYSTEM_PROMPT,
    PromptService,
)
from codeloom.orchestration.schemas import RequestOptions


class TestPromptService:
    def test_cloud_gets_system_and_user(self) -> None:
        messages = PromptService().format_messages(
            "do it", RequestOptions(system_prompt="be brief"), TierKind.CLOUD
        )
        assert messages == [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "do it"},
        ]

    def test_local_folds_system_into_user(self) -> None:
        messages = PromptService().format_messages(
            "do it", RequestOptions(system_prompt="be brief"), TierKind.LOCAL
        )
        assert messages == [{"role": "user", "content": "be brief\n\ndo it"}]

    def test_task_type_default_system_prompt(self) -> None:
        service = PromptService()
        options = RequestOptions(task_type=TaskType.PLANNING)
        assert service.system_prompt(options) == DEFAULT_SYSTEM_PROMPTS[
            TaskType.PLANNING
        ]

    def test_general_falls_back_to_generic(self) -> None:
        assert (
            PromptService().system_prompt(RequestOptions())
            == GENERIC_SYSTEM_PROMPT
        )
