"""In-memory fake CodeStore for tests and offline wiring.

Dict-backed, no SQLAlchemy, no I/O. Mutations swap whole dicts so a
concurrent reader always sees a consistent view.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from codeloom.intelligence.schemas import CodeElement, ElementRelation
from codeloom.resilience.errors import DatabaseError


class InMemoryCodeStore:
    """Dict-backed CodeStore."""

    def __init__(self) -> None:
        self._elements: dict[str, CodeElement] = {}
        self._relations: set[ElementRelation] = set()
        self._initialized = False
        self.fail_writes = 0  # fail the next N writes (tests)

    async def initialize(self) -> None:
        self._initialized = True

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise DatabaseError("Storage is not initialized")

    def _maybe_fail(self, file_path: str) -> None:
        if self.fail_writes > 0:
            self.fail_writes -= 1
            raise DatabaseError(f"Simulated write failure for {file_path}")

    async def replace_file(
        self,
        file_path: str,
        elements: Sequence[CodeElement],
        relations: Sequence[ElementRelation],
    ) -> None:
        self._require_initialized()
        self._maybe_fail(file_path)
        old_ids = {
            eid
            for eid, e in self._elements.items()
            if e.file_path == file_path
        }
        new_elements = {
            eid: e
            for eid, e in self._elements.items()
            if eid not in old_ids
        }
        new_elements.update({e.id: e for e in elements})
        new_relations = {
            r for r in self._relations if r.from_id not in old_ids
        }
        new_relations.update(relations)
        self._elements = new_elements
        self._relations = new_relations

    async def delete_file(self, file_path: str) -> list[str]:
        self._require_initialized()
        self._maybe_fail(file_path)
        ids = sorted(
            eid
            for eid, e in self._elements.items()
            if e.file_path == file_path
        )
        gone = set(ids)
        self._elements = {
            eid: e for eid, e in self._elements.items() if eid not in gone
        }
        self._relations = {
            r
            for r in self._relations
            if r.from_id not in gone and r.to_id not in gone
        }
        return ids

    async def get_element(self, element_id: str) -> CodeElement | None:
        self._require_initialized()
        return self._elements.get(element_id)

    async def get_elements(
        self, element_ids: Sequence[str]
    ) -> list[CodeElement]:
        self._require_initialized()
        elements = self._elements
        return [elements[i] for i in element_ids if i in elements]

    async def get_by_file(self, file_path: str) -> list[CodeElement]:
        self._require_initialized()
        return sorted(
            (e for e in self._elements.values() if e.file_path == file_path),
            key=lambda e: e.start_line,
        )

    async def find_ids_by_name(
        self, names: Iterable[str]
    ) -> dict[str, list[str]]:
        self._require_initialized()
        wanted = set(names)
        found: dict[str, list[str]] = {}
        for eid in sorted(self._elements):
            element = self._elements[eid]
            if element.name in wanted:
                found.setdefault(element.name, []).append(eid)
        return found

    async def element_at(
        self, file_path: str, line: int
    ) -> CodeElement | None:
        self._require_initialized()
        covering = [
            e
            for e in self._elements.values()
            if e.file_path == file_path and e.contains_line(line)
        ]
        if not covering:
            return None
        return min(
            covering,
            key=lambda e: (e.end_line - e.start_line, -e.start_line),
        )

    async def relations_for(
        self, element_ids: Sequence[str], relation_types: Sequence[str]
    ) -> list[ElementRelation]:
        self._require_initialized()
        ids = set(element_ids)
        types = {str(t) for t in relation_types}
        return sorted(
            (
                r
                for r in self._relations
                if str(r.relation_type) in types
                and (r.from_id in ids or r.to_id in ids)
            ),
            key=lambda r: (r.from_id, r.to_id, str(r.relation_type)),
        )

    async def search_text(
        self, terms: Sequence[str], limit: int
    ) -> list[CodeElement]:
        self._require_initialized()
        lowered = [t.lower() for t in terms]
        hits = [
            self._elements[eid]
            for eid in sorted(self._elements)
            if any(
                t in self._elements[eid].name.lower()
                or t in self._elements[eid].content.lower()
                for t in lowered
            )
        ]
        return hits[:limit]

    async def count_elements(self) -> int:
        self._require_initialized()
        return len(self._elements)
