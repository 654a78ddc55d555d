"""Transient retrieval types, built per query and discarded after use."""

from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict

from codeloom.constants import RetrievalSource
from codeloom.intelligence.schemas import CodeElement


class RetrievedItem(BaseModel):
    """One candidate snippet. Scorers return copies, never mutate."""

    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    file_path: str
    start_line: int
    end_line: int
    score: float
    source: RetrievalSource
    type: str
    final_score: float | None = None

    @property
    def current_score(self) -> float:
        """Score the next scorer builds on: final if set, else raw."""
        return self.final_score if self.final_score is not None else self.score

    def rescored(self, value: float) -> RetrievedItem:
        return self.model_copy(update={"final_score": value})

    @classmethod
    def from_element(
        cls, element: CodeElement, score: float, source: RetrievalSource
    ) -> RetrievedItem:
        return cls(
            id=element.id,
            content=element.content,
            file_path=element.file_path,
            start_line=element.start_line,
            end_line=element.end_line,
            score=score,
            source=source,
            type=str(element.type),
        )


@dataclass(frozen=True)
class EditorState:
    current_file: str | None = None
    cursor_line: int | None = None
    recent_files: tuple[str, ...] = ()


@dataclass(frozen=True)
class ScoringContext:
    current_file: str | None = None
    cursor_line: int | None = None
    recent_files: tuple[str, ...] = ()


@dataclass(frozen=True)
class ScoringOptions:
    context: ScoringContext = field(default_factory=ScoringContext)

    @classmethod
    def from_editor(cls, state: EditorState) -> ScoringOptions:
        return cls(
            context=ScoringContext(
                current_file=state.current_file,
                cursor_line=state.cursor_line,
                recent_files=state.recent_files,
            )
        )


@dataclass(frozen=True)
class RelevantContext:
    """Ranked context for one query.

    ``partial`` is set when at least one retriever failed; the failed
    sources are named in ``failed_sources``.
    """

    items: list[RetrievedItem]
    partial: bool = False
    failed_sources: tuple[str, ...] = ()
