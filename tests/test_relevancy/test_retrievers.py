"""Tests for the vector, graph and lexical retrievers."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from codeloom.constants import RelationType, RetrievalSource
from codeloom.intelligence.embedder import HashingEmbeddingService
from codeloom.intelligence.engine import LocalCodeIntelligenceEngine
from codeloom.intelligence.schemas import ElementRelation
from codeloom.intelligence.vector_index import VectorEntry, VectorIndex
from codeloom.relevancy.retrievers import (
    GraphRetriever,
    LexicalRetriever,
    VectorRetriever,
    extract_keywords,
)
from codeloom.relevancy.schemas import EditorState
from codeloom.repositories.fakes import InMemoryCodeStore
from tests.conftest import make_element


@pytest.fixture
async def seeded() -> LocalCodeIntelligenceEngine:
    engine = LocalCodeIntelligenceEngine(
        InMemoryCodeStore(), VectorIndex(), HashingEmbeddingService(1024)
    )
    load = make_element(
        "load_user", start_line=1, end_line=5,
        content="def load_user(uid):\n    return db.fetch(uid)",
    )
    save = make_element(
        "save_user", start_line=7, end_line=9,
        content="def save_user(user):\n    load_user(user.id)",
    )
    chart = make_element(
        "render_chart", file_path="ui/chart.py",
        content="def render_chart(): draw_axis()",
    )
    await engine.initialize()
    await engine.store.replace_file("ui/chart.py", [chart], [])
    await engine.store.replace_file(
        "src/app.py",
        [load, save],
        [ElementRelation(
            from_id=save.id, to_id=load.id, relation_type=RelationType.CALLS
        )],
    )
    by_file: dict[str, list[VectorEntry]] = {}
    for element in (load, save, chart):
        vector = await engine.generate_embedding(element.content)
        by_file.setdefault(element.file_path, []).append(
            VectorEntry(element.id, element.file_path, vector)
        )
    for file_path, entries in by_file.items():
        engine.index.upsert_file(file_path, entries)
    return engine


class TestVectorRetriever:
    async def test_returns_vector_items(
        self, seeded: LocalCodeIntelligenceEngine
    ) -> None:
        retriever = VectorRetriever(seeded, limit=5, threshold=0.1)
        items = await retriever.retrieve("render chart", EditorState())
        assert items
        assert all(i.source == RetrievalSource.VECTOR for i in items)
        assert items[0].id == "ui/chart.py#render_chart@1"
        assert items[0].score > 0.5

    async def test_last_history_turn_folded_into_query(
        self, memory_engine: LocalCodeIntelligenceEngine
    ) -> None:
        memory_engine.generate_embedding = AsyncMock(  # type: ignore[method-assign]
            return_value=[1.0]
        )
        memory_engine.search_vectors = AsyncMock(  # type: ignore[method-assign]
            return_value=[]
        )
        await VectorRetriever(memory_engine).retrieve(
            "and now?", EditorState(), ["first", "what calls save"]
        )
        memory_engine.generate_embedding.assert_awaited_once_with(
            "what calls save\nand now?"
        )


class TestGraphRetriever:
    async def test_needs_cursor(
        self, seeded: LocalCodeIntelligenceEngine
    ) -> None:
        retriever = GraphRetriever(seeded)
        assert await retriever.retrieve("q", EditorState()) == []
        assert await retriever.retrieve(
            "q", EditorState(current_file="src/app.py")
        ) == []

    async def test_scores_decay_with_distance(
        self, seeded: LocalCodeIntelligenceEngine
    ) -> None:
        items = await GraphRetriever(seeded).retrieve(
            "q", EditorState(current_file="src/app.py", cursor_line=8)
        )
        scores = {i.id: i.score for i in items}
        assert scores["src/app.py#save_user@7"] == 1.0
        assert scores["src/app.py#load_user@1"] == 0.5
        assert all(i.source == RetrievalSource.GRAPH for i in items)


class TestLexicalRetriever:
    def test_extract_keywords(self) -> None:
        assert extract_keywords("How does the load_user function work?") == [
            "load_user",
            "work",
        ]

    async def test_name_match_outranks_body_match(
        self, seeded: LocalCodeIntelligenceEngine
    ) -> None:
        items = await LexicalRetriever(seeded).retrieve(
            "load_user", EditorState()
        )
        assert [i.id for i in items] == [
            "src/app.py#load_user@1",
            "src/app.py#save_user@7",
        ]
        assert items[0].score == 1.0
        assert items[1].score == 0.5

    async def test_only_stopwords_returns_nothing(
        self, seeded: LocalCodeIntelligenceEngine
    ) -> None:
        assert await LexicalRetriever(seeded).retrieve(
            "what is the code", EditorState()
        ) == []
