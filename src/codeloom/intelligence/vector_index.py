"""In-memory cosine-similarity index with copy-on-write snapshots.

Writers (the sync service) build a fresh immutable snapshot and swap it
in with a single reference assignment; readers grab the current
snapshot once per query, so a search never observes a half-applied
update. Snapshots persist to LanceDB between runs.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import lancedb
import numpy as np

from codeloom.constants import VECTORS_TABLE
from codeloom.resilience.errors import VectorIndexError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Snapshot:
    ids: tuple[str, ...]
    file_paths: tuple[str, ...]
    matrix: np.ndarray  # rows L2-normalized, read-only
    dimension: int | None
    generation: int


def _empty_snapshot(generation: int, dimension: int | None) -> _Snapshot:
    return _Snapshot(
        ids=(),
        file_paths=(),
        matrix=np.zeros((0, dimension or 0), dtype=np.float32),
        dimension=dimension,
        generation=generation,
    )


def _normalize(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms


@dataclass(frozen=True)
class VectorEntry:
    element_id: str
    file_path: str
    vector: Sequence[float]


class VectorIndex:
    """Exact nearest-neighbour search over element embeddings.

    The embedding dimension is fixed by the first insert of a
    generation; ``rebuild`` starts a new generation.
    """

    def __init__(
        self,
        uri: str | None = None,
        *,
        table_name: str = VECTORS_TABLE,
    ) -> None:
        self._uri = uri
        self._table_name = table_name
        self._snapshot = _empty_snapshot(0, None)
        self._write_lock = threading.Lock()
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def dimension(self) -> int | None:
        return self._snapshot.dimension

    @property
    def generation(self) -> int:
        return self._snapshot.generation

    def size(self) -> int:
        return len(self._snapshot.ids)

    def file_paths(self) -> set[str]:
        return set(self._snapshot.file_paths)

    def file_ids(self, file_path: str) -> list[str]:
        snap = self._snapshot
        return [
            eid
            for eid, fp in zip(snap.ids, snap.file_paths, strict=True)
            if fp == file_path
        ]

    async def initialize(self) -> None:
        """Load the persisted snapshot (if any) and accept queries."""
        if self._initialized:
            return
        if self._uri:
            await self.load()
        self._initialized = True

    # ── Writes ─────────────────────────────────────────────

    def _check_dimension(
        self, entries: Sequence[VectorEntry], dimension: int | None
    ) -> int | None:
        for entry in entries:
            dim = len(entry.vector)
            if dimension is None:
                dimension = dim
            elif dim != dimension:
                raise VectorIndexError(
                    f"Vector dimension {dim} for {entry.element_id} does "
                    f"not match index dimension {dimension}; rebuild the "
                    "index after changing the embedding model"
                )
        return dimension

    def check_entries(self, entries: Sequence[VectorEntry]) -> None:
        """Raise VectorIndexError if ``upsert_file`` would reject ``entries``."""
        self._require_initialized()
        self._check_dimension(entries, self._snapshot.dimension)

    def upsert_file(
        self, file_path: str, entries: Sequence[VectorEntry]
    ) -> None:
        """Replace every vector of ``file_path`` with ``entries``."""
        self._require_initialized()
        with self._write_lock:
            snap = self._snapshot
            dimension = self._check_dimension(entries, snap.dimension)
            keep = [
                i for i, fp in enumerate(snap.file_paths) if fp != file_path
            ]
            ids = [snap.ids[i] for i in keep]
            paths = [snap.file_paths[i] for i in keep]
            kept = snap.matrix[keep] if keep else None
            rows: list[np.ndarray] = [] if kept is None else [kept]
            if entries:
                new = np.asarray(
                    [list(e.vector) for e in entries], dtype=np.float32
                )
                rows.append(_normalize(new))
                ids.extend(e.element_id for e in entries)
                paths.extend(e.file_path for e in entries)
            matrix = (
                np.vstack(rows)
                if rows
                else np.zeros((0, dimension or 0), dtype=np.float32)
            )
            self._swap(ids, paths, matrix, dimension, snap.generation)

    def remove_file(self, file_path: str) -> int:
        """Drop every vector tied to ``file_path``; returns how many."""
        self._require_initialized()
        with self._write_lock:
            snap = self._snapshot
            keep = [
                i for i, fp in enumerate(snap.file_paths) if fp != file_path
            ]
            removed = len(snap.ids) - len(keep)
            if removed == 0:
                return 0
            self._swap(
                [snap.ids[i] for i in keep],
                [snap.file_paths[i] for i in keep],
                snap.matrix[keep],
                snap.dimension,
                snap.generation,
            )
            return removed

    def rebuild(self, entries: Sequence[VectorEntry]) -> None:
        """Replace the whole index, starting a new generation."""
        with self._write_lock:
            generation = self._snapshot.generation + 1
            dimension = self._check_dimension(entries, None)
            if entries:
                matrix = _normalize(
                    np.asarray(
                        [list(e.vector) for e in entries], dtype=np.float32
                    )
                )
            else:
                matrix = np.zeros((0, 0), dtype=np.float32)
            self._swap(
                [e.element_id for e in entries],
                [e.file_path for e in entries],
                matrix,
                dimension,
                generation,
            )
        self._initialized = True
        logger.info(
            "event=vector_index_rebuilt generation=%d size=%d",
            generation,
            len(entries),
        )

    def _swap(
        self,
        ids: list[str],
        paths: list[str],
        matrix: np.ndarray,
        dimension: int | None,
        generation: int,
    ) -> None:
        matrix = np.ascontiguousarray(matrix, dtype=np.float32)
        matrix.setflags(write=False)
        self._snapshot = _Snapshot(
            ids=tuple(ids),
            file_paths=tuple(paths),
            matrix=matrix,
            dimension=dimension,
            generation=generation,
        )

    # ── Reads ──────────────────────────────────────────────

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise VectorIndexError("Vector index is not initialized")

    def search(
        self,
        vector: Sequence[float],
        limit: int,
        threshold: float = 0.0,
        file_types: Sequence[str] | None = None,
    ) -> list[tuple[str, float]]:
        """Return (element_id, similarity) pairs, most similar first.

        Only pairs with similarity >= ``threshold`` are returned, at most
        ``limit`` of them; ``file_types`` restricts results to paths with
        one of the given extensions.
        """
        self._require_initialized()
        snap = self._snapshot
        if not snap.ids or limit <= 0:
            return []
        if len(vector) != snap.dimension:
            raise VectorIndexError(
                f"Query dimension {len(vector)} does not match index "
                f"dimension {snap.dimension}"
            )
        query = np.asarray(vector, dtype=np.float32)
        norm = float(np.linalg.norm(query))
        if norm == 0:
            return []
        scores = snap.matrix @ (query / norm)

        allowed: tuple[str, ...] | None = None
        if file_types:
            allowed = tuple(
                ft if ft.startswith(".") else f".{ft}" for ft in file_types
            )
        order = np.argsort(-scores, kind="stable")
        results: list[tuple[str, float]] = []
        for idx in order:
            score = float(scores[idx])
            if score < threshold:
                break
            if allowed is not None and not snap.file_paths[idx].endswith(
                allowed
            ):
                continue
            results.append((snap.ids[idx], score))
            if len(results) >= limit:
                break
        return results

    # ── Persistence ────────────────────────────────────────

    async def load(self) -> None:
        """Replace the in-memory snapshot with the persisted one."""
        if not self._uri:
            return
        try:
            db = await lancedb.connect_async(self._uri)
            table_list = await db.list_tables()
            if self._table_name not in table_list.tables:
                return
            table = await db.open_table(self._table_name)
            rows: list[dict[str, Any]] = await table.query().to_list()
        except Exception as exc:
            raise VectorIndexError(
                f"Failed to load vector index from {self._uri}", cause=exc
            ) from exc
        entries = [
            VectorEntry(
                element_id=str(row["element_id"]),
                file_path=str(row["file_path"]),
                vector=[float(v) for v in row["vector"]],
            )
            for row in rows
        ]
        self.rebuild(entries)
        logger.info(
            "event=vector_index_loaded uri=%s size=%d",
            self._uri,
            len(entries),
        )

    async def save(self) -> None:
        """Persist the current snapshot, overwriting the previous one."""
        if not self._uri or not self._initialized:
            return
        snap = self._snapshot
        records: list[dict[str, Any]] = [
            {
                "element_id": eid,
                "file_path": fp,
                "vector": snap.matrix[i].tolist(),
            }
            for i, (eid, fp) in enumerate(
                zip(snap.ids, snap.file_paths, strict=True)
            )
        ]
        try:
            db = await lancedb.connect_async(self._uri)
            table_list = await db.list_tables()
            if not records:
                if self._table_name in table_list.tables:
                    await db.drop_table(self._table_name)
                return
            await db.create_table(  # type: ignore[arg-type]
                self._table_name, records, mode="overwrite"
            )
        except Exception as exc:
            raise VectorIndexError(
                f"Failed to save vector index to {self._uri}", cause=exc
            ) from exc
        logger.info(
            "event=vector_index_saved uri=%s size=%d",
            self._uri,
            len(records),
        )
