"""Tests for embedding services."""

from __future__ import annotations

import math
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from codeloom.intelligence.embedder import (
    HashingEmbeddingService,
    LiteLLMEmbeddingService,
    _batch_texts,
    _tokenize,
    _truncate,
)
from codeloom.resilience.errors import EmbeddingError


def _response(vectors: list[list[float]]) -> Any:
    resp = MagicMock()
    resp.data = [{"embedding": v} for v in vectors]
    return resp


def test_truncate_long_text() -> None:
    result = _truncate("x" * 40_000, max_tokens=100)
    assert result == "x" * 400


def test_batch_texts_splits_at_limit() -> None:
    texts = ["a" * 400, "b" * 400, "c" * 400]  # 100 tokens each
    batches = _batch_texts(texts, max_batch_tokens=150)
    assert len(batches) == 3
    assert [idx for batch in batches for idx, _ in batch] == [0, 1, 2]


def test_tokenize_splits_identifiers() -> None:
    assert _tokenize("parseHTTPResponse load_user_id") == [
        "parse",
        "http",
        "response",
        "load",
        "user",
        "id",
    ]


class TestHashingEmbeddingService:
    async def test_deterministic_and_normalized(self) -> None:
        svc = HashingEmbeddingService(32)
        a = await svc.embed_one("getUserName")
        b = await svc.embed_one("getUserName")
        assert a == b
        assert len(a) == 32
        assert math.isclose(sum(v * v for v in a), 1.0, rel_tol=1e-6)

    async def test_shared_tokens_are_more_similar(self) -> None:
        svc = HashingEmbeddingService(256)
        query, near, far = await svc.embed(
            ["load user profile", "loadUserProfile()", "render chart axis"]
        )

        def cos(x: list[float], y: list[float]) -> float:
            return sum(p * q for p, q in zip(x, y, strict=True))

        assert cos(query, near) > cos(query, far)

    async def test_text_without_tokens_is_zero_vector(self) -> None:
        vec = await HashingEmbeddingService(8).embed_one("!!! ---")
        assert vec == [0.0] * 8


class TestLiteLLMEmbeddingService:
    async def test_vectors_returned_in_input_order(self) -> None:
        svc = LiteLLMEmbeddingService("test/embed")
        with patch(
            "codeloom.intelligence.embedder._aembedding",
            new_callable=AsyncMock,
            return_value=_response([[1.0, 0.0], [0.0, 1.0]]),
        ) as mock_embed:
            vectors = await svc.embed(["first", "second"])
        assert vectors == [[1.0, 0.0], [0.0, 1.0]]
        assert mock_embed.call_args.kwargs["input"] == ["first", "second"]

    async def test_empty_input_skips_call(self) -> None:
        svc = LiteLLMEmbeddingService("test/embed")
        with patch(
            "codeloom.intelligence.embedder._aembedding",
            new_callable=AsyncMock,
        ) as mock_embed:
            assert await svc.embed([]) == []
        mock_embed.assert_not_called()

    async def test_api_failure_becomes_embedding_error(self) -> None:
        svc = LiteLLMEmbeddingService("test/embed")
        with (
            patch(
                "codeloom.intelligence.embedder._aembedding",
                new_callable=AsyncMock,
                side_effect=ConnectionError("down"),
            ),
            pytest.raises(EmbeddingError, match="Embedding request failed"),
        ):
            await svc.embed_one("text")

    async def test_count_mismatch_raises(self) -> None:
        svc = LiteLLMEmbeddingService("test/embed")
        with (
            patch(
                "codeloom.intelligence.embedder._aembedding",
                new_callable=AsyncMock,
                return_value=_response([[1.0]]),
            ),
            pytest.raises(EmbeddingError, match="count mismatch"),
        ):
            await svc.embed(["a", "b"])
