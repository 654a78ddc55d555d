"""Generate embeddings for code elements and queries.

Two interchangeable implementations of ``EmbeddingService``:

- ``LiteLLMEmbeddingService`` calls a hosted (or local) embedding model
  through litellm behind a circuit breaker.
- ``HashingEmbeddingService`` produces deterministic feature-hashing
  vectors offline; used when no embedding provider is configured and
  throughout the test suite.
"""

from __future__ import annotations

import hashlib
import logging
import math
import re
from collections.abc import Callable, Coroutine, Sequence
from typing import TYPE_CHECKING, Any, Protocol

import litellm
from circuitbreaker import (
    CircuitBreakerError,
    circuit,  # pyright: ignore[reportUnknownVariableType]
)

from codeloom.constants import (
    CB_EMBED_FAILURE_THRESHOLD,
    CB_EMBED_RECOVERY_TIMEOUT,
    MAX_TOKENS_PER_BATCH,
    MAX_TOKENS_PER_CHUNK,
    estimate_tokens,
)
from codeloom.resilience.errors import EmbeddingError

logger = logging.getLogger(__name__)

# litellm stubs have partially unknown types, so use a typed alias
if TYPE_CHECKING:
    _aembedding: Callable[..., Coroutine[Any, Any, Any]]
else:
    _aembedding = litellm.aembedding


class EmbeddingService(Protocol):
    async def embed(self, texts: Sequence[str]) -> list[list[float]]: ...
    async def embed_one(self, text: str) -> list[float]: ...


@circuit(  # pyright: ignore[reportUntypedFunctionDecorator]
    failure_threshold=CB_EMBED_FAILURE_THRESHOLD,
    recovery_timeout=CB_EMBED_RECOVERY_TIMEOUT,
    expected_exception=Exception,
    name="embedding",
)
async def _guarded_embed(
    model: str, texts: list[str], api_base: str | None = None
) -> Any:
    """Circuit-breaker-protected embedding call."""
    kwargs: dict[str, Any] = {"model": model, "input": texts}
    if api_base:
        kwargs["api_base"] = api_base
    return await _aembedding(**kwargs)


def _truncate(
    text: str, max_tokens: int = MAX_TOKENS_PER_CHUNK
) -> str:
    """Truncate text to stay within embedding token limit."""
    max_chars = max_tokens * 4
    if len(text) <= max_chars:
        return text
    logger.debug(
        "event=embed_text_truncated original_len=%d max_chars=%d",
        len(text),
        max_chars,
    )
    return text[:max_chars]


def _batch_texts(
    texts: Sequence[str],
    max_batch_tokens: int = MAX_TOKENS_PER_BATCH,
) -> list[list[tuple[int, str]]]:
    """Split texts into sub-batches that fit within API token limits."""
    batches: list[list[tuple[int, str]]] = []
    current: list[tuple[int, str]] = []
    current_tokens = 0
    for i, text in enumerate(texts):
        est = estimate_tokens(text)
        if current and current_tokens + est > max_batch_tokens:
            batches.append(current)
            current = []
            current_tokens = 0
        current.append((i, text))
        current_tokens += est
    if current:
        batches.append(current)
    return batches


class LiteLLMEmbeddingService:
    """Embeds text with a litellm embedding model.

    Any failure (provider error, open circuit, malformed response)
    surfaces as EmbeddingError so callers can skip the unit.
    """

    def __init__(self, model: str, *, api_base: str | None = None) -> None:
        self._model = model
        self._api_base = api_base

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        truncated = [_truncate(t) for t in texts]
        vectors: list[list[float]] = [[] for _ in truncated]
        for batch in _batch_texts(truncated):
            batch_texts = [text for _, text in batch]
            try:
                response: Any = await _guarded_embed(
                    self._model, batch_texts, self._api_base
                )
            except CircuitBreakerError as exc:
                logger.warning(
                    "event=circuit_open component=embedding action=skip"
                )
                raise EmbeddingError(
                    "Embedding circuit is open", cause=exc
                ) from exc
            except Exception as exc:
                logger.warning(
                    "event=embedding_api_failed model=%s",
                    self._model,
                    exc_info=True,
                )
                raise EmbeddingError(
                    f"Embedding request failed: {exc}", cause=exc
                ) from exc

            if len(response.data) != len(batch_texts):
                raise EmbeddingError(
                    "Embedding count mismatch: "
                    f"{len(response.data)} vectors for "
                    f"{len(batch_texts)} texts"
                )
            for (orig_idx, _), item in zip(
                batch, response.data, strict=True
            ):
                vectors[orig_idx] = list(item["embedding"])

        if any(len(v) == 0 for v in vectors):
            raise EmbeddingError("Embedding response incomplete")
        return vectors

    async def embed_one(self, text: str) -> list[float]:
        return (await self.embed([text]))[0]


_TOKEN_RE = re.compile(r"[A-Za-z][a-z]+|[A-Z]+(?![a-z])|[a-z]+|\d+")


def _tokenize(text: str) -> list[str]:
    """Split identifiers on camelCase and snake_case boundaries."""
    return [t.lower() for t in _TOKEN_RE.findall(text)]


class HashingEmbeddingService:
    """Deterministic feature-hashing embeddings (no network).

    Each token lands in one of ``dimension`` buckets with a hashed
    sign; vectors are L2-normalized so cosine similarity reflects
    token overlap.
    """

    def __init__(self, dimension: int = 384) -> None:
        self.dimension = dimension

    def _vector(self, text: str) -> list[float]:
        vec = [0.0] * self.dimension
        tokens = _tokenize(text)
        for token in tokens:
            digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8)
            value = int.from_bytes(digest.digest(), "little")
            bucket = value % self.dimension
            sign = 1.0 if (value >> 63) & 1 else -1.0
            vec[bucket] += sign
        norm = math.sqrt(sum(v * v for v in vec))
        if norm == 0:
            return vec
        return [v / norm for v in vec]

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        return [self._vector(t) for t in texts]

    async def embed_one(self, text: str) -> list[float]:
        return self._vector(text)
