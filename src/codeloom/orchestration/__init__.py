"""Multi-model orchestration: routing, tiers, caching and fallback."""

from codeloom.orchestration.orchestrator import MultiModelOrchestrator
from codeloom.orchestration.schemas import (
    ModelResponse,
    RequestOptions,
    StreamChunk,
)

__all__ = [
    "ModelResponse",
    "MultiModelOrchestrator",
    "RequestOptions",
    "StreamChunk",
]
