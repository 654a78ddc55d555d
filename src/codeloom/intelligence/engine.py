"""Local code intelligence engine: the read-side facade over the index.

Retrievers only talk to this class. Mutations go through the sync
service, which owns the same store and vector index.
"""

from __future__ import annotations

import logging
import re
from collections import deque
from collections.abc import Sequence

from codeloom.intelligence.embedder import EmbeddingService
from codeloom.intelligence.schemas import GraphMatch, VectorMatch
from codeloom.intelligence.vector_index import VectorIndex
from codeloom.repositories.protocols import CodeStore
from codeloom.resilience.errors import (
    DatabaseError,
    EmbeddingError,
    VectorIndexError,
)

logger = logging.getLogger(__name__)

# "path/to/file.py:42" cursor references accepted by search_graph
_CURSOR_REF_RE = re.compile(r"^(?P<path>.+):(?P<line>\d+)$")


class LocalCodeIntelligenceEngine:
    """Embedding, vector search and graph search over the local index."""

    def __init__(
        self,
        store: CodeStore,
        index: VectorIndex,
        embedder: EmbeddingService,
    ) -> None:
        self.store = store
        self.index = index
        self.embedder = embedder
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Create storage tables and load the persisted vector index."""
        if self._initialized:
            return
        await self.store.initialize()
        await self.index.initialize()
        self._initialized = True
        logger.info(
            "event=engine_initialized vectors=%d", self.index.size()
        )

    async def generate_embedding(self, text: str) -> list[float]:
        try:
            return await self.embedder.embed_one(text)
        except EmbeddingError:
            raise
        except Exception as exc:
            raise EmbeddingError(
                f"Failed to generate embedding: {exc}", cause=exc
            ) from exc

    async def search_vectors(
        self,
        vector: Sequence[float],
        limit: int,
        threshold: float,
        file_types: Sequence[str] | None = None,
    ) -> list[VectorMatch]:
        """Most similar elements first, similarity >= threshold."""
        if not self._initialized:
            raise VectorIndexError("Intelligence engine is not initialized")
        # Over-fetch so ids dropped from storage do not shrink results.
        hits = self.index.search(
            vector, limit * 2, threshold=threshold, file_types=file_types
        )
        if not hits:
            return []
        elements = await self.store.get_elements([eid for eid, _ in hits])
        by_id = {e.id: e for e in elements}
        matches = [
            VectorMatch(element=by_id[eid], similarity=score)
            for eid, score in hits
            if eid in by_id
        ]
        return matches[:limit]

    async def search_graph(
        self,
        start_id: str,
        max_distance: int,
        relation_types: Sequence[str],
        limit: int,
    ) -> list[GraphMatch]:
        """Bounded breadth-first traversal from ``start_id``.

        ``start_id`` is an element id or a ``file:line`` reference resolved
        to the innermost element enclosing that line. Edges are followed in
        both directions. Each element appears once, with the shortest path
        BFS discovered; the start element is included at distance 0.
        """
        if not self._initialized:
            raise DatabaseError("Intelligence engine is not initialized")
        start = await self.store.get_element(start_id)
        if start is None:
            ref = _CURSOR_REF_RE.match(start_id)
            if ref is not None:
                start = await self.store.element_at(
                    ref.group("path"), int(ref.group("line"))
                )
        if start is None or limit <= 0:
            return []

        paths: dict[str, tuple[str, ...]] = {start.id: (start.id,)}
        frontier = deque([start.id])
        depth = 0
        while frontier and depth < max_distance:
            depth += 1
            level = list(frontier)
            frontier.clear()
            edges = await self.store.relations_for(level, relation_types)
            level_set = set(level)
            for edge in edges:
                for src, dst in (
                    (edge.from_id, edge.to_id),
                    (edge.to_id, edge.from_id),
                ):
                    if src in level_set and dst not in paths:
                        paths[dst] = (*paths[src], dst)
                        frontier.append(dst)

        ordered = sorted(paths, key=lambda eid: (len(paths[eid]), eid))
        elements = await self.store.get_elements(ordered)
        matches = [
            GraphMatch(
                element=e, distance=len(paths[e.id]) - 1, path=paths[e.id]
            )
            for e in elements
        ]
        return matches[:limit]
