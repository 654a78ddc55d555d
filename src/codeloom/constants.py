"""Shared constants used across modules.

StrEnum members are str-compatible, so downstream code (JSON, SQL,
log lines) works unchanged.
"""

from __future__ import annotations

from enum import StrEnum

# ── String Enums ─────────────────────────────────────────


class ElementType(StrEnum):
    """Kinds of parsed code elements."""

    MODULE = "module"
    FUNCTION = "function"
    CLASS = "class"
    METHOD = "method"
    INTERFACE = "interface"


class RelationType(StrEnum):
    """Edge types in the code graph."""

    CALLS = "calls"
    IMPORTS = "imports"
    DEFINES = "defines"
    USES = "uses"


class RetrievalSource(StrEnum):
    """Which retriever produced a RetrievedItem."""

    VECTOR = "vector"
    GRAPH = "graph"
    LEXICAL = "lexical"


class TierKind(StrEnum):
    """Model tier families."""

    LOCAL = "local"
    CLOUD = "cloud"


class TaskType(StrEnum):
    """Request discriminator consumed by routing and prompt formatting."""

    PLANNING = "planning"
    EXECUTION = "execution"
    CODE_GENERATION = "code_generation"
    COMPLEX_REASONING = "complex_reasoning"
    SIMPLE_QUERY = "simple_query"
    GENERAL = "general"


class ModelPreference(StrEnum):
    """Explicit tier preference from settings or request options."""

    AUTO = "auto"
    FORCE_LOCAL = "force_local"
    FORCE_CLOUD = "force_cloud"
    PREFER_LOCAL = "prefer_local"
    PREFER_CLOUD = "prefer_cloud"


class ChangeKind(StrEnum):
    """File change kinds delivered to the sync service."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


class SyncEventKind(StrEnum):
    """Outcome of one sync unit."""

    INDEXED = "indexed"
    DELETED = "deleted"
    SKIPPED = "skipped"
    STORAGE_FAILED = "storage_failed"


class TaskStatus(StrEnum):
    """Terminal status of an agent task."""

    COMPLETED = "completed"
    ERROR = "error"


class ProgressType(StrEnum):
    """Progress channel event types."""

    STATUS = "status"
    PLAN = "plan"
    STEP = "step"


# Task types that the router sends to the cloud tier under AUTO.
CLOUD_TASK_TYPES = frozenset({
    TaskType.CODE_GENERATION,
    TaskType.COMPLEX_REASONING,
})

# ── Circuit Breaker Configuration ────────────────────────

CB_LLM_FAILURE_THRESHOLD = 5
CB_LLM_RECOVERY_TIMEOUT = 30
CB_EMBED_FAILURE_THRESHOLD = 3
CB_EMBED_RECOVERY_TIMEOUT = 30

# ── Retry Strategy ───────────────────────────────────────

RETRY_MAX_ATTEMPTS = 3
RETRY_INITIAL_WAIT = 2
RETRY_MAX_WAIT = 30
STORAGE_WRITE_ATTEMPTS = 2  # first try + one retry
STORAGE_RETRY_WAIT = 0.1

# ── LLM Output ───────────────────────────────────────────

LLM_MAX_OUTPUT_TOKENS = 4096
PLANNING_MAX_TOKENS = 1000
PLANNING_TEMPERATURE = 0.2
EXECUTION_MAX_TOKENS = 2000
EXECUTION_TEMPERATURE = 0.5

# ── Routing ──────────────────────────────────────────────

ROUTER_LONG_PROMPT_CHARS = 1000

# ── Embedding Limits ─────────────────────────────────────

MAX_TOKENS_PER_CHUNK = 8000  # text-embedding-3-small max is 8191
MAX_TOKENS_PER_BATCH = 250_000  # OpenAI batch limit is ~300K

# ── Vector Index ─────────────────────────────────────────

VECTORS_TABLE = "element_vectors"

# ── Retrieval ────────────────────────────────────────────

GRAPH_MAX_DISTANCE = 3
GRAPH_RESULT_LIMIT = 20
LEXICAL_RESULT_LIMIT = 10
LEXICAL_MIN_KEYWORD_LEN = 3

# ── Scoring ──────────────────────────────────────────────

PROXIMITY_WEIGHT = 0.2
PROXIMITY_DISTANCE_SCALE = 1000
RECENCY_WEIGHT = 0.15
RECENCY_DECAY = 5.0
RECENCY_MAX_BOOST = 0.5

# ── Sync ─────────────────────────────────────────────────

GOVERNOR_POLL_SECONDS = 0.25
BINARY_DETECTION_BUFFER = 8192
MAX_INDEXED_FILE_BYTES = 1_000_000

# ── Misc ─────────────────────────────────────────────────

ERROR_TRUNCATION_CHARS = 200
MODULE_ELEMENT_NAME = "<module>"

# ── Token Estimation ────────────────────────────────────

CHARS_PER_TOKEN_ESTIMATE = 4


def estimate_tokens(text: str) -> int:
    """Rough token estimate using chars-per-token ratio."""
    return len(text) // CHARS_PER_TOKEN_ESTIMATE
