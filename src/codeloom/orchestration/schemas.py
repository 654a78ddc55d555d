"""Request options and responses exchanged with model tiers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, TypeAlias

from pydantic import BaseModel, ConfigDict

from codeloom.constants import ModelPreference, TaskType, TierKind

Messages: TypeAlias = list[dict[str, str]]


class RequestOptions(BaseModel):
    """Per-request knobs. ``task_type`` drives routing and formatting."""

    model_config = ConfigDict(frozen=True)

    task_type: TaskType = TaskType.GENERAL
    model_preference: ModelPreference | None = None
    system_prompt: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    json_mode: bool = False
    timeout: float | None = None
    use_cache: bool = True

    def cache_fields(self) -> dict[str, Any]:
        """Fields that change the response, for the cache key."""
        return self.model_dump(
            mode="json",
            exclude={"timeout", "use_cache"},
            exclude_none=True,
        )


@dataclass(frozen=True)
class ModelResponse:
    content: str
    model: str
    tier: TierKind
    input_tokens: int = 0
    output_tokens: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StreamChunk:
    chunk: str | None = None
    error: str | None = None
    done: bool = False
