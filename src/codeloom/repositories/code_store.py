"""SQL implementation of CodeStore (SQLAlchemy async + aiosqlite)."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from codeloom.constants import ElementType, RelationType
from codeloom.intelligence.schemas import CodeElement, ElementRelation
from codeloom.models.base import Base
from codeloom.models.element import CodeElementRecord
from codeloom.models.relation import ElementRelationRecord
from codeloom.resilience.errors import DatabaseError

logger = logging.getLogger(__name__)


def _to_element(rec: CodeElementRecord) -> CodeElement:
    return CodeElement(
        id=rec.id,
        type=ElementType(rec.element_type),
        name=rec.name,
        content=rec.content,
        file_path=rec.file_path,
        start_line=rec.start_line,
        end_line=rec.end_line,
        language=rec.language,
    )


def _to_record(element: CodeElement) -> CodeElementRecord:
    return CodeElementRecord(
        id=element.id,
        element_type=str(element.type),
        name=element.name,
        content=element.content,
        file_path=element.file_path,
        start_line=element.start_line,
        end_line=element.end_line,
        language=element.language,
    )


class SqlCodeStore:
    """Persists elements and relations; one short session per operation.

    Each file is replaced inside a single transaction, so concurrent
    readers see either the old or the new rows for that file.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._sessions = async_sessionmaker(engine, expire_on_commit=False)
        self._initialized = False

    async def initialize(self) -> None:
        if self._initialized:
            return
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as exc:
            raise DatabaseError(
                "Failed to initialize storage", cause=exc
            ) from exc
        self._initialized = True
        logger.info("event=storage_initialized url=%s", self._engine.url)

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise DatabaseError("Storage is not initialized")

    async def replace_file(
        self,
        file_path: str,
        elements: Sequence[CodeElement],
        relations: Sequence[ElementRelation],
    ) -> None:
        self._require_initialized()
        try:
            async with self._sessions() as session, session.begin():
                old_ids = select(CodeElementRecord.id).where(
                    CodeElementRecord.file_path == file_path
                )
                await session.execute(
                    sa_delete(ElementRelationRecord).where(
                        ElementRelationRecord.from_id.in_(old_ids)
                    )
                )
                await session.execute(
                    sa_delete(CodeElementRecord).where(
                        CodeElementRecord.file_path == file_path
                    )
                )
                session.add_all([_to_record(e) for e in elements])
                await session.flush()
                seen: set[tuple[str, str, str]] = set()
                for rel in relations:
                    key = (rel.from_id, rel.to_id, str(rel.relation_type))
                    if key in seen:
                        continue
                    seen.add(key)
                    session.add(
                        ElementRelationRecord(
                            from_id=rel.from_id,
                            to_id=rel.to_id,
                            relation_type=str(rel.relation_type),
                        )
                    )
        except SQLAlchemyError as exc:
            raise DatabaseError(
                f"Failed to store elements for {file_path}", cause=exc
            ) from exc

    async def delete_file(self, file_path: str) -> list[str]:
        """Remove every element and edge tied to ``file_path``.

        Returns the ids that were removed.
        """
        self._require_initialized()
        try:
            async with self._sessions() as session, session.begin():
                result = await session.execute(
                    select(CodeElementRecord.id).where(
                        CodeElementRecord.file_path == file_path
                    )
                )
                ids = list(result.scalars().all())
                if ids:
                    await session.execute(
                        sa_delete(ElementRelationRecord).where(
                            or_(
                                ElementRelationRecord.from_id.in_(ids),
                                ElementRelationRecord.to_id.in_(ids),
                            )
                        )
                    )
                    await session.execute(
                        sa_delete(CodeElementRecord).where(
                            CodeElementRecord.file_path == file_path
                        )
                    )
                return ids
        except SQLAlchemyError as exc:
            raise DatabaseError(
                f"Failed to delete elements for {file_path}", cause=exc
            ) from exc

    async def get_element(self, element_id: str) -> CodeElement | None:
        self._require_initialized()
        async with self._sessions() as session:
            rec = await session.get(CodeElementRecord, element_id)
            return _to_element(rec) if rec else None

    async def get_elements(
        self, element_ids: Sequence[str]
    ) -> list[CodeElement]:
        """Fetch elements, preserving the order of ``element_ids``."""
        self._require_initialized()
        if not element_ids:
            return []
        async with self._sessions() as session:
            result = await session.execute(
                select(CodeElementRecord).where(
                    CodeElementRecord.id.in_(list(element_ids))
                )
            )
            by_id = {r.id: _to_element(r) for r in result.scalars().all()}
        return [by_id[i] for i in element_ids if i in by_id]

    async def get_by_file(self, file_path: str) -> list[CodeElement]:
        self._require_initialized()
        async with self._sessions() as session:
            result = await session.execute(
                select(CodeElementRecord)
                .where(CodeElementRecord.file_path == file_path)
                .order_by(CodeElementRecord.start_line)
            )
            return [_to_element(r) for r in result.scalars().all()]

    async def find_ids_by_name(
        self, names: Iterable[str]
    ) -> dict[str, list[str]]:
        self._require_initialized()
        wanted = sorted(set(names))
        if not wanted:
            return {}
        async with self._sessions() as session:
            result = await session.execute(
                select(CodeElementRecord.name, CodeElementRecord.id)
                .where(CodeElementRecord.name.in_(wanted))
                .order_by(CodeElementRecord.id)
            )
            found: dict[str, list[str]] = {}
            for name, eid in result.all():
                found.setdefault(name, []).append(eid)
            return found

    async def element_at(
        self, file_path: str, line: int
    ) -> CodeElement | None:
        """Innermost element of ``file_path`` whose span covers ``line``."""
        self._require_initialized()
        async with self._sessions() as session:
            result = await session.execute(
                select(CodeElementRecord)
                .where(
                    CodeElementRecord.file_path == file_path,
                    CodeElementRecord.start_line <= line,
                    CodeElementRecord.end_line >= line,
                )
                .order_by(
                    (
                        CodeElementRecord.end_line
                        - CodeElementRecord.start_line
                    ).asc(),
                    CodeElementRecord.start_line.desc(),
                )
                .limit(1)
            )
            rec = result.scalars().first()
            return _to_element(rec) if rec else None

    async def relations_for(
        self, element_ids: Sequence[str], relation_types: Sequence[str]
    ) -> list[ElementRelation]:
        """Edges touching any of ``element_ids`` in either direction."""
        self._require_initialized()
        if not element_ids or not relation_types:
            return []
        ids = list(element_ids)
        async with self._sessions() as session:
            result = await session.execute(
                select(ElementRelationRecord).where(
                    ElementRelationRecord.relation_type.in_(
                        [str(t) for t in relation_types]
                    ),
                    or_(
                        ElementRelationRecord.from_id.in_(ids),
                        ElementRelationRecord.to_id.in_(ids),
                    ),
                )
            )
            return [
                ElementRelation(
                    from_id=r.from_id,
                    to_id=r.to_id,
                    relation_type=RelationType(r.relation_type),
                )
                for r in result.scalars().all()
            ]

    async def search_text(
        self, terms: Sequence[str], limit: int
    ) -> list[CodeElement]:
        """Elements whose name or content contains any of ``terms``."""
        self._require_initialized()
        if not terms:
            return []
        clauses = []
        for term in terms:
            pattern = f"%{term}%"
            clauses.append(CodeElementRecord.name.ilike(pattern))
            clauses.append(CodeElementRecord.content.ilike(pattern))
        async with self._sessions() as session:
            result = await session.execute(
                select(CodeElementRecord)
                .where(or_(*clauses))
                .order_by(CodeElementRecord.id)
                .limit(limit)
            )
            return [_to_element(r) for r in result.scalars().all()]

    async def count_elements(self) -> int:
        self._require_initialized()
        async with self._sessions() as session:
            result = await session.execute(
                select(func.count()).select_from(CodeElementRecord)
            )
            return int(result.scalar_one())
