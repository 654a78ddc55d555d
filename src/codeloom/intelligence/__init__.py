"""Local code intelligence: parsing, embedding, storage, vector search."""

from codeloom.intelligence.schemas import (
    CodeElement,
    ElementRelation,
    GraphMatch,
    ParsedFile,
    VectorMatch,
)

__all__ = [
    "CodeElement",
    "ElementRelation",
    "GraphMatch",
    "ParsedFile",
    "VectorMatch",
]
