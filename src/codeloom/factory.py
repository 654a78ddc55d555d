"""Wire settings into a ready-to-use runtime.

Every component is built here and handed its collaborators explicitly;
nothing below reads Settings on its own.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncEngine

from codeloom.agent.agent import CodeAgent
from codeloom.agent.progress import ProgressCallback
from codeloom.config import Settings, create_app_engine
from codeloom.governor import ResourceGovernor
from codeloom.intelligence.embedder import (
    EmbeddingService,
    HashingEmbeddingService,
    LiteLLMEmbeddingService,
)
from codeloom.intelligence.engine import LocalCodeIntelligenceEngine
from codeloom.intelligence.vector_index import VectorIndex
from codeloom.logger import TaskLogger
from codeloom.orchestration.cache import ResponseCache
from codeloom.orchestration.orchestrator import MultiModelOrchestrator
from codeloom.orchestration.router import ModelRouter
from codeloom.orchestration.tiers import (
    CloudModelTier,
    LocalModelTier,
    ModelTier,
)
from codeloom.relevancy.engine import RelevancyEngine
from codeloom.relevancy.retrievers import (
    GraphRetriever,
    LexicalRetriever,
    VectorRetriever,
)
from codeloom.relevancy.scoring import HybridScorer
from codeloom.repositories.code_store import SqlCodeStore
from codeloom.sync.service import SyncEvent, SyncService
from codeloom.tools.file_reader import FileReaderTool
from codeloom.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    settings: Settings
    root: Path
    db_engine: AsyncEngine
    engine: LocalCodeIntelligenceEngine
    governor: ResourceGovernor
    sync: SyncService
    relevancy: RelevancyEngine
    orchestrator: MultiModelOrchestrator
    tools: ToolRegistry
    agent: CodeAgent
    task_logger: TaskLogger

    async def close(self) -> None:
        """Stop background work, persist the index, release handles."""
        await self.sync.stop()
        self.governor.stop()
        self.task_logger.close()
        await self.db_engine.dispose()


def _under_root(root: Path, value: str | Path) -> Path:
    path = Path(value)
    return path if path.is_absolute() else root / path


def resolve_database_url(url: str, root: Path) -> str:
    """Anchor a relative sqlite path at the workspace root."""
    prefix = "sqlite:///"
    if url.startswith(prefix):
        db_file = url[len(prefix):]
        if db_file and db_file != ":memory:":
            return prefix + str(_under_root(root, db_file))
    return url


def build_embedder(settings: Settings) -> EmbeddingService:
    if settings.embedding_backend == "hashing":
        return HashingEmbeddingService(settings.embedding_dimension)
    return LiteLLMEmbeddingService(settings.litellm_embedding_model)


def build_tiers(settings: Settings) -> list[ModelTier]:
    tiers: list[ModelTier] = []
    if settings.local_enabled:
        tiers.append(
            LocalModelTier(
                settings.local_model,
                api_base=settings.local_api_base,
                timeout=settings.llm_timeout_seconds,
            )
        )
    tiers.extend(
        CloudModelTier(model, timeout=settings.llm_timeout_seconds)
        for model in settings.litellm_model_chain
    )
    return tiers


def build_runtime(
    settings: Settings,
    root: Path,
    *,
    progress: ProgressCallback | None = None,
    on_sync_event: Callable[[SyncEvent], None] | None = None,
    autostart_governor: bool = True,
) -> Runtime:
    root = root.resolve()

    db_engine = create_app_engine(
        resolve_database_url(settings.database_url, root)
    )
    engine = LocalCodeIntelligenceEngine(
        SqlCodeStore(db_engine),
        VectorIndex(str(_under_root(root, settings.lancedb_uri))),
        build_embedder(settings),
    )

    governor = ResourceGovernor(
        high_load_ratio=settings.governor_high_load_ratio,
        max_memory_mb=settings.governor_max_memory_mb,
        check_interval=settings.governor_check_interval_seconds,
        min_workers=settings.governor_min_workers,
        max_workers=settings.governor_max_workers,
        autostart=autostart_governor,
    )

    sync = SyncService(
        root,
        engine,
        governor,
        concurrency=settings.sync_concurrency,
        skip_dirs=set(settings.skip_directories),
        on_event=on_sync_event,
    )

    relevancy = RelevancyEngine(
        [
            VectorRetriever(
                engine,
                limit=settings.vector_search_limit,
                threshold=settings.vector_similarity_threshold,
            ),
            GraphRetriever(engine),
            LexicalRetriever(engine),
        ],
        HybridScorer.default(
            settings.source_weights,
            source_boost=settings.relevancy_source_boost,
        ),
        max_snippets=settings.max_context_snippets,
    )

    orchestrator = MultiModelOrchestrator(
        build_tiers(settings),
        router=ModelRouter(settings.model_preference, governor),
        cache=ResponseCache(settings.response_cache_size),
        default_timeout=settings.llm_timeout_seconds,
    )
    # Edited files invalidate answers that may have quoted them.
    sync.add_change_listener(lambda _path: orchestrator.clear_cache())

    tools = ToolRegistry([FileReaderTool(root)])
    task_logger = TaskLogger(
        _under_root(root, settings.log_dir), settings.log_level
    )
    agent = CodeAgent(
        relevancy,
        orchestrator,
        tools,
        progress=progress,
        task_logger=task_logger,
    )

    logger.info(
        "event=runtime_built root=%s tiers=%d embedding_backend=%s",
        root,
        len(orchestrator.tiers),
        settings.embedding_backend,
    )
    return Runtime(
        settings=settings,
        root=root,
        db_engine=db_engine,
        engine=engine,
        governor=governor,
        sync=sync,
        relevancy=relevancy,
        orchestrator=orchestrator,
        tools=tools,
        agent=agent,
        task_logger=task_logger,
    )
