"""Error taxonomy and classification for structured error handling.

Every codeloom error carries an optional underlying ``cause`` so the
original exception survives for diagnostics even after it has been
translated into a domain error. ``classify_error`` sorts arbitrary
exceptions (mostly from litellm) into categories for logging and for
deciding whether a tier failure is worth retrying.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any


class CodeloomError(Exception):
    """Base class for all codeloom errors."""

    def __init__(
        self, message: str, *, cause: BaseException | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


class ParsingError(CodeloomError):
    """A single file could not be parsed. Recoverable: skip the file."""

    def __init__(
        self,
        message: str,
        *,
        file_path: str,
        language: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.file_path = file_path
        self.language = language


class EmbeddingError(CodeloomError):
    """Embedding generation failed. Recoverable: skip the unit."""


class VectorIndexError(CodeloomError):
    """Vector index not initialized, or a dimension mismatch."""


class DatabaseError(CodeloomError):
    """Storage not initialized, or a storage operation failed."""


class ToolExecutionError(CodeloomError):
    """A tool rejected its arguments or failed while running."""

    def __init__(
        self,
        message: str,
        *,
        tool_name: str,
        args: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.tool_name = tool_name
        self.tool_args = dict(args or {})


class ApiError(CodeloomError):
    """Remote model failure or exhaustion of every tier."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.status_code = status_code


class ConfigurationError(CodeloomError):
    """The settings snapshot is invalid."""


class OperationCancelledError(CodeloomError):
    """Cooperative stop or cancellation was observed."""


class AgentBusyError(CodeloomError):
    """run_task was called while another task is in flight."""


class ErrorClass(Enum):
    TRANSIENT = "transient"  # 429, network errors, retryable
    SERVER = "server"  # 500, 502, 503, retryable
    TIMEOUT = "timeout"  # deadline exceeded, retryable with backoff
    CLIENT = "client"  # 400, 401, 403, do NOT retry
    UNKNOWN = "unknown"  # unclassified, do NOT retry


def classify_error(error: BaseException) -> ErrorClass:
    """Classify an error to determine handling strategy.

    Checks structured attributes first (status_code), falls back
    to string matching for untyped exceptions.
    """
    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int):
        if status_code == 429:
            return ErrorClass.TRANSIENT
        if 400 <= status_code < 500:
            return ErrorClass.CLIENT
        if 500 <= status_code < 600:
            return ErrorClass.SERVER

    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return ErrorClass.TIMEOUT

    msg = str(error).lower()

    if "timeout" in msg or "timed out" in msg:
        return ErrorClass.TIMEOUT
    if "429" in msg or "rate limit" in msg or "rate_limit" in msg:
        return ErrorClass.TRANSIENT
    if any(code in msg for code in ("500", "502", "503", "504")):
        return ErrorClass.SERVER
    if "econnrefused" in msg or "connection" in msg:
        return ErrorClass.TRANSIENT
    if any(code in msg for code in ("400", "401", "403", "404")):
        return ErrorClass.CLIENT

    return ErrorClass.UNKNOWN


_RETRYABLE = frozenset({
    ErrorClass.TRANSIENT,
    ErrorClass.SERVER,
    ErrorClass.TIMEOUT,
})


def is_retryable(error: BaseException) -> bool:
    """Return True if the error category supports retry."""
    return classify_error(error) in _RETRYABLE


def status_code_of(error: BaseException) -> int | None:
    """Best-effort HTTP status code carried by an exception."""
    code = getattr(error, "status_code", None)
    return code if isinstance(code, int) else None
