"""Retrievers: each turns a query into scored candidate snippets."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from typing import Protocol

from codeloom.constants import (
    GRAPH_MAX_DISTANCE,
    GRAPH_RESULT_LIMIT,
    LEXICAL_MIN_KEYWORD_LEN,
    LEXICAL_RESULT_LIMIT,
    RelationType,
    RetrievalSource,
)
from codeloom.intelligence.engine import LocalCodeIntelligenceEngine
from codeloom.relevancy.schemas import EditorState, RetrievedItem

logger = logging.getLogger(__name__)


class Retriever(Protocol):
    name: str

    async def retrieve(
        self,
        query: str,
        editor_state: EditorState,
        history: Sequence[str] | None = None,
    ) -> list[RetrievedItem]: ...


class VectorRetriever:
    """Semantic search: embed the query, ask the index for neighbours."""

    name = RetrievalSource.VECTOR.value

    def __init__(
        self,
        engine: LocalCodeIntelligenceEngine,
        *,
        limit: int = 10,
        threshold: float = 0.7,
        file_types: Sequence[str] | None = None,
    ) -> None:
        self._engine = engine
        self._limit = limit
        self._threshold = threshold
        self._file_types = file_types

    async def retrieve(
        self,
        query: str,
        editor_state: EditorState,
        history: Sequence[str] | None = None,
    ) -> list[RetrievedItem]:
        text = query
        if history:
            text = f"{history[-1]}\n{query}"
        vector = await self._engine.generate_embedding(text)
        matches = await self._engine.search_vectors(
            vector, self._limit, self._threshold, self._file_types
        )
        return [
            RetrievedItem.from_element(
                m.element, m.similarity, RetrievalSource.VECTOR
            )
            for m in matches
        ]


class GraphRetriever:
    """Structural neighbours of the element under the cursor."""

    name = RetrievalSource.GRAPH.value

    def __init__(
        self,
        engine: LocalCodeIntelligenceEngine,
        *,
        max_distance: int = GRAPH_MAX_DISTANCE,
        limit: int = GRAPH_RESULT_LIMIT,
        relation_types: Sequence[str] = tuple(RelationType),
    ) -> None:
        self._engine = engine
        self._max_distance = max_distance
        self._limit = limit
        self._relation_types = list(relation_types)

    async def retrieve(
        self,
        query: str,
        editor_state: EditorState,
        history: Sequence[str] | None = None,
    ) -> list[RetrievedItem]:
        if not editor_state.current_file or editor_state.cursor_line is None:
            return []
        start = f"{editor_state.current_file}:{editor_state.cursor_line}"
        matches = await self._engine.search_graph(
            start, self._max_distance, self._relation_types, self._limit
        )
        return [
            RetrievedItem.from_element(
                m.element, 1.0 / (1 + m.distance), RetrievalSource.GRAPH
            )
            for m in matches
        ]


_STOPWORDS = frozenset({
    "the", "and", "for", "with", "that", "this", "from", "into", "what",
    "how", "does", "why", "where", "when", "which", "who", "are", "was",
    "explain", "show", "tell", "about", "code", "function", "class",
    "please", "can", "you", "its", "have", "has", "use", "used",
})  # fmt: skip

_WORD_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def extract_keywords(query: str) -> list[str]:
    """Distinct lowercase identifiers from ``query`` minus stopwords."""
    seen: dict[str, None] = {}
    for word in _WORD_RE.findall(query):
        lowered = word.lower()
        if len(lowered) < LEXICAL_MIN_KEYWORD_LEN or lowered in _STOPWORDS:
            continue
        seen.setdefault(lowered, None)
    return list(seen)


class LexicalRetriever:
    """Keyword match on element names and bodies.

    Score is the fraction of query keywords an element contains, with
    a name match counting double.
    """

    name = RetrievalSource.LEXICAL.value

    def __init__(
        self,
        engine: LocalCodeIntelligenceEngine,
        *,
        limit: int = LEXICAL_RESULT_LIMIT,
    ) -> None:
        self._engine = engine
        self._limit = limit

    async def retrieve(
        self,
        query: str,
        editor_state: EditorState,
        history: Sequence[str] | None = None,
    ) -> list[RetrievedItem]:
        keywords = extract_keywords(query)
        if not keywords:
            return []
        elements = await self._engine.store.search_text(
            keywords, self._limit * 5
        )
        scored: list[RetrievedItem] = []
        for element in elements:
            name = element.name.lower()
            body = element.content.lower()
            points = 0.0
            for kw in keywords:
                if kw in name:
                    points += 2.0
                elif kw in body:
                    points += 1.0
            score = min(1.0, points / (2.0 * len(keywords)))
            if score > 0:
                scored.append(
                    RetrievedItem.from_element(
                        element, score, RetrievalSource.LEXICAL
                    )
                )
        scored.sort(key=lambda item: (-item.score, item.id))
        return scored[: self._limit]
