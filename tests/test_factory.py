"""Tests for runtime wiring."""

from __future__ import annotations

from pathlib import Path

import pytest

from codeloom.config import Settings
from codeloom.constants import TierKind
from codeloom.factory import (
    build_embedder,
    build_runtime,
    build_tiers,
    resolve_database_url,
)
from codeloom.intelligence.embedder import (
    HashingEmbeddingService,
    LiteLLMEmbeddingService,
)
from codeloom.orchestration.schemas import ModelResponse
from codeloom.relevancy.schemas import EditorState


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "ws"
    (root / "src").mkdir(parents=True)
    (root / "src" / "greet.py").write_text(
        "def greet(name):\n    return 'hi ' + name\n\n\n"
        "def main():\n    greet('bob')\n"
    )
    (root / "node_modules").mkdir()
    (root / "node_modules" / "dep.js").write_text("function dep() {}\n")
    return root


def _settings(**overrides: object) -> Settings:
    return Settings(
        embedding_backend="hashing",
        embedding_dimension=64,
        **overrides,  # type: ignore[arg-type]
    )


class TestResolveDatabaseUrl:
    def test_relative_sqlite_path_anchored(self, tmp_path: Path) -> None:
        url = resolve_database_url("sqlite:///.codeloom/x.db", tmp_path)
        assert url == f"sqlite:///{tmp_path / '.codeloom/x.db'}"

    def test_absolute_path_unchanged(self, tmp_path: Path) -> None:
        url = f"sqlite:///{tmp_path}/x.db"
        assert resolve_database_url(url, Path("/elsewhere")) == url

    def test_memory_unchanged(self, tmp_path: Path) -> None:
        url = "sqlite:///:memory:"
        assert resolve_database_url(url, tmp_path) == url


class TestBuilders:
    def test_embedder_backend(self) -> None:
        assert isinstance(build_embedder(_settings()), HashingEmbeddingService)
        assert isinstance(
            build_embedder(Settings(embedding_backend="litellm")),
            LiteLLMEmbeddingService,
        )

    def test_tiers_local_first_then_chain(self) -> None:
        tiers = build_tiers(
            _settings(litellm_model_chain=["openai/a", "anthropic/b"])
        )
        assert [t.kind for t in tiers] == [
            TierKind.LOCAL,
            TierKind.CLOUD,
            TierKind.CLOUD,
        ]
        assert tiers[1].name == "cloud:openai/a"

    def test_tiers_without_local(self) -> None:
        tiers = build_tiers(
            _settings(local_enabled=False, litellm_model_chain=["openai/a"])
        )
        assert [t.name for t in tiers] == ["cloud:openai/a"]


class TestBuildRuntime:
    async def test_index_and_retrieve(self, workspace: Path) -> None:
        runtime = build_runtime(
            _settings(), workspace, autostart_governor=False
        )
        try:
            await runtime.sync.start()
            queued = await runtime.sync.scan_workspace()
            await runtime.sync.drain()
            context = await runtime.relevancy.get_context(
                "greet", EditorState()
            )
        finally:
            await runtime.close()

        assert queued == 1
        assert runtime.sync.stats.indexed == 1
        assert any(item.id.startswith("src/greet.py#greet") for item in context.items)
        assert (workspace / ".codeloom" / "codeloom.db").exists()
        assert (workspace / ".codeloom" / "logs").is_dir()

    async def test_file_change_clears_response_cache(
        self, workspace: Path
    ) -> None:
        runtime = build_runtime(
            _settings(), workspace, autostart_governor=False
        )
        try:
            runtime.orchestrator.cache.put(
                "k", ModelResponse(content="x", model="m", tier=TierKind.LOCAL)
            )
            await runtime.sync.start()
            await runtime.sync.scan_workspace()
            await runtime.sync.drain()
        finally:
            await runtime.close()
        assert len(runtime.orchestrator.cache) == 0

    async def test_agent_has_file_reader(self, workspace: Path) -> None:
        runtime = build_runtime(
            _settings(), workspace, autostart_governor=False
        )
        try:
            tool = runtime.tools.get("readFile")
            assert tool is not None
            out = await tool.execute({"path": "src/greet.py"})
        finally:
            await runtime.close()
        assert out.startswith("def greet")
