"""Typed schemas for parsed code elements and search results."""

from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict

from codeloom.constants import ElementType, RelationType


class CodeElement(BaseModel):
    """A parsed unit of source code with location metadata.

    Immutable: a re-sync of the file supersedes elements, it never
    edits them in place.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    type: ElementType
    name: str
    content: str
    file_path: str
    start_line: int
    end_line: int
    language: str | None = None

    @property
    def extension(self) -> str:
        dot = self.file_path.rfind(".")
        return self.file_path[dot:] if dot != -1 else ""

    def contains_line(self, line: int) -> bool:
        return self.start_line <= line <= self.end_line


class ElementRelation(BaseModel):
    """Directed edge (from_id → to_id) in the code graph."""

    model_config = ConfigDict(frozen=True)

    from_id: str
    to_id: str
    relation_type: RelationType


class ParsedFile(BaseModel):
    """Everything the parser extracted from one file.

    ``unresolved_refs`` holds (owner_id, name, relation_type) triples that
    the sync service resolves against storage once all names are known.
    """

    file_path: str
    language: str
    elements: list[CodeElement]
    relations: list[ElementRelation] = []
    unresolved_refs: list[tuple[str, str, RelationType]] = []


@dataclass(frozen=True)
class VectorMatch:
    element: CodeElement
    similarity: float


@dataclass(frozen=True)
class GraphMatch:
    element: CodeElement
    distance: int
    path: tuple[str, ...] = field(default_factory=tuple)


def element_id(file_path: str, name: str, start_line: int) -> str:
    """Deterministic element id: ``path#name@line``."""
    return f"{file_path}#{name}@{start_line}"
