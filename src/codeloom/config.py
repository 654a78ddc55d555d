"""Environment-based configuration and application constants."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Any

from pydantic import ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from codeloom.constants import ModelPreference
from codeloom.resilience.errors import ConfigurationError

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Reads from .env file and environment variables.

    Components receive one instance explicitly and treat it as an
    immutable snapshot for the duration of an operation.
    """

    # LLM Provider
    anthropic_api_key: str = ""
    openai_api_key: str = ""

    # Cloud model chain (first = primary, rest = fallbacks tried in order)
    litellm_model_chain: Annotated[list[str], NoDecode] = [
        "openai/gpt-4.1-mini",
        "anthropic/claude-3-5-haiku-latest",
    ]
    # Local tier (Ollama or any OpenAI-compatible local server)
    local_model: str = "ollama/qwen2.5-coder:7b"
    local_api_base: str = "http://localhost:11434"
    local_enabled: bool = True
    model_preference: ModelPreference = ModelPreference.AUTO
    llm_timeout_seconds: int = 60
    response_cache_size: int = 100

    # Embeddings
    embedding_backend: str = "litellm"
    litellm_embedding_model: str = "openai/text-embedding-3-small"
    embedding_dimension: int = 384

    # Storage
    database_url: str = "sqlite:///.codeloom/codeloom.db"
    lancedb_uri: str = ".codeloom/lancedb"

    # Relevancy
    relevancy_vector_weight: float = 0.6
    relevancy_graph_weight: float = 0.3
    relevancy_lexical_weight: float = 0.1
    relevancy_source_boost: bool = True
    max_context_snippets: int = 20
    vector_search_limit: int = 10
    vector_similarity_threshold: float = 0.7

    # Sync
    sync_concurrency: int = 0  # 0 = governor baseline
    sync_debounce_seconds: float = 0.5
    skip_directories: list[str] = [
        "node_modules",
        "vendor",
        ".venv",
        "__pycache__",
        "build",
        "dist",
        "target",
        ".git",
        ".codeloom",
    ]

    # Resource governor
    governor_high_load_ratio: float = 1.0
    governor_max_memory_mb: int = 1024
    governor_check_interval_seconds: float = 5.0
    governor_min_workers: int = 1
    governor_max_workers: int | None = None

    # Logging
    log_level: str = "INFO"
    # Level for the sync and governor loggers; unset follows log_level
    background_log_level: str | None = None
    log_dir: Path = Path(".codeloom/logs")

    @field_validator("litellm_model_chain", mode="before")
    @classmethod
    def _parse_chain(cls, v: Any) -> Any:
        """Accept comma-separated string or JSON array."""
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @field_validator("litellm_model_chain")
    @classmethod
    def _validate_chain(cls, v: list[str]) -> list[str]:
        seen: set[str] = set()
        dupes: list[str] = []
        for m in v:
            if m in seen:
                dupes.append(m)
            seen.add(m)
        if dupes:
            logger.warning(
                "Duplicate models in LITELLM_MODEL_CHAIN: %s",
                ", ".join(dupes),
            )
        return v

    @field_validator(
        "relevancy_vector_weight",
        "relevancy_graph_weight",
        "relevancy_lexical_weight",
    )
    @classmethod
    def _non_negative_weight(cls, v: float) -> float:
        if v < 0:
            raise ValueError("relevancy weights must be >= 0")
        return v

    @field_validator("log_level", "background_log_level")
    @classmethod
    def _known_level(cls, v: str | None) -> str | None:
        if v is not None and not isinstance(
            logging.getLevelName(v.upper()), int
        ):
            raise ValueError(f"unknown log level: {v}")
        return v

    @field_validator("embedding_backend")
    @classmethod
    def _known_backend(cls, v: str) -> str:
        if v not in ("litellm", "hashing"):
            raise ValueError(
                "embedding_backend must be 'litellm' or 'hashing'"
            )
        return v

    @field_validator(
        "max_context_snippets",
        "response_cache_size",
        "embedding_dimension",
        "governor_min_workers",
    )
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @model_validator(mode="after")
    def _check_consistency(self) -> Settings:
        if (
            self.relevancy_vector_weight
            + self.relevancy_graph_weight
            + self.relevancy_lexical_weight
        ) <= 0:
            raise ValueError("at least one relevancy weight must be > 0")
        if not self.litellm_model_chain and not self.local_enabled:
            raise ValueError(
                "no model tiers configured: set LITELLM_MODEL_CHAIN"
                " or enable the local tier"
            )
        return self

    @property
    def source_weights(self) -> dict[str, float]:
        """Per-retriever weights keyed by RetrievalSource value."""
        return {
            "vector": self.relevancy_vector_weight,
            "graph": self.relevancy_graph_weight,
            "lexical": self.relevancy_lexical_weight,
        }

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "",
        "extra": "ignore",
    }


def load_settings(**overrides: Any) -> Settings:
    """Build a Settings snapshot, translating validation failures."""
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        raise ConfigurationError(
            f"Invalid configuration: {exc.error_count()} error(s): "
            + "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in exc.errors()
            ),
            cause=exc,
        ) from exc


# File extension → language name mapping
EXTENSION_MAP: dict[str, str] = {
    # Python
    ".py": "python",
    ".pyi": "python",
    # JavaScript
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".jsx": "javascript",
    # TypeScript
    ".ts": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".tsx": "tsx",
    # Java
    ".java": "java",
    # Go
    ".go": "go",
    # Rust
    ".rs": "rust",
}

# Language → (grammar module, language function) for tree-sitter grammars
GRAMMAR_MODULES: dict[str, tuple[str, str]] = {
    "python": ("tree_sitter_python", "language"),
    "javascript": ("tree_sitter_javascript", "language"),
    "typescript": ("tree_sitter_typescript", "language_typescript"),
    "tsx": ("tree_sitter_typescript", "language_tsx"),
    "java": ("tree_sitter_java", "language"),
    "go": ("tree_sitter_go", "language"),
    "rust": ("tree_sitter_rust", "language"),
}


def create_app_engine(
    url: str, *, echo: bool = False
) -> AsyncEngine:
    """Create async SQLite engine with WAL journal mode.

    Handles URL conversion (sqlite:/// → sqlite+aiosqlite:///)
    and sets WAL mode via a pool-connect event listener so it
    fires once per raw DBAPI connection, not per ORM session.
    WAL lets retrievers read a consistent snapshot while the sync
    service holds a write transaction.
    """
    if url.startswith("sqlite:///"):
        db_url = "sqlite+aiosqlite:///" + url[len("sqlite:///"):]
        db_file = url[len("sqlite:///"):]
        if db_file and db_file != ":memory:":
            Path(db_file).parent.mkdir(parents=True, exist_ok=True)
    else:
        db_url = url
    engine = create_async_engine(db_url, echo=echo)

    @event.listens_for(engine.sync_engine, "connect")
    def _set_wal_mode(
        dbapi_conn: object,
        _connection_record: object,
    ) -> None:
        cursor = dbapi_conn.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    return engine
