"""Relevancy engine: multi-source retrieval plus hybrid scoring."""

from codeloom.relevancy.engine import RelevancyEngine
from codeloom.relevancy.schemas import (
    EditorState,
    RelevantContext,
    RetrievedItem,
    ScoringOptions,
)

__all__ = [
    "EditorState",
    "RelevancyEngine",
    "RelevantContext",
    "RetrievedItem",
    "ScoringOptions",
]
