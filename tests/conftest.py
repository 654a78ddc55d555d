"""Shared test fixtures: in-memory SQLite, fakes, breaker reset."""

import os

# Force demo API keys for all tests, no real LLM calls.
# These are set unconditionally at import time, so even if you have
# real keys in your shell environment, pytest overwrites them before
# any Settings() is created.
os.environ["ANTHROPIC_API_KEY"] = "for-demo-purposes-only"
os.environ["OPENAI_API_KEY"] = "for-demo-purposes-only"

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from circuitbreaker import CircuitBreakerMonitor
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from codeloom.constants import ElementType
from codeloom.intelligence.embedder import HashingEmbeddingService
from codeloom.intelligence.engine import LocalCodeIntelligenceEngine
from codeloom.intelligence.schemas import CodeElement
from codeloom.intelligence.vector_index import VectorIndex
from codeloom.orchestration._llm_call import _breaker_registry
from codeloom.repositories.fakes import InMemoryCodeStore


@pytest.fixture(autouse=True)
def _reset_breakers() -> None:
    """Reset circuit breakers between tests."""
    _breaker_registry.clear()
    for cb in CircuitBreakerMonitor.get_circuits():
        cb.reset()  # type: ignore[union-attr]


@pytest_asyncio.fixture
async def db_engine() -> AsyncIterator[AsyncEngine]:
    """Fresh in-memory database per test; tables come from initialize()."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    yield engine
    await engine.dispose()


@pytest.fixture
def memory_engine() -> LocalCodeIntelligenceEngine:
    """Engine over the in-memory store, an unpersisted index and
    deterministic hashing embeddings."""
    return LocalCodeIntelligenceEngine(
        InMemoryCodeStore(),
        VectorIndex(),
        HashingEmbeddingService(64),
    )


def make_element(
    name: str,
    *,
    file_path: str = "src/app.py",
    start_line: int = 1,
    end_line: int = 5,
    element_type: ElementType = ElementType.FUNCTION,
    content: str | None = None,
    language: str = "python",
) -> CodeElement:
    return CodeElement(
        id=f"{file_path}#{name}@{start_line}",
        type=element_type,
        name=name,
        content=content if content is not None else f"def {name}(): pass",
        file_path=file_path,
        start_line=start_line,
        end_line=end_line,
        language=language,
    )
