"""Tests for the multi-model orchestrator using scripted tiers."""

from __future__ import annotations

import asyncio

import pytest

from codeloom.constants import ModelPreference, TaskType, TierKind
from codeloom.orchestration.cache import ResponseCache
from codeloom.orchestration.fakes import ScriptedModelTier
from codeloom.orchestration.orchestrator import MultiModelOrchestrator
from codeloom.orchestration.schemas import RequestOptions
from codeloom.resilience.cancellation import CancellationToken
from codeloom.resilience.errors import ApiError, OperationCancelledError


def _local(
    *script: str | BaseException, **kw: object
) -> ScriptedModelTier:
    return ScriptedModelTier("local", TierKind.LOCAL, list(script), **kw)  # type: ignore[arg-type]


def _cloud(
    *script: str | BaseException, **kw: object
) -> ScriptedModelTier:
    return ScriptedModelTier("cloud", TierKind.CLOUD, list(script), **kw)  # type: ignore[arg-type]


class TestMakeApiRequest:
    async def test_primary_tier_answers(self) -> None:
        local, cloud = _local("from local"), _cloud("from cloud")
        orch = MultiModelOrchestrator([cloud, local])
        response = await orch.make_api_request("hi")
        assert response.content == "from local"
        assert response.tier == TierKind.LOCAL
        assert cloud.calls == []

    async def test_falls_back_on_exception(self) -> None:
        local = _local(ConnectionError("ollama down"))
        cloud = _cloud("from cloud")
        orch = MultiModelOrchestrator([local, cloud])
        response = await orch.make_api_request("hi")
        assert response.content == "from cloud"
        assert len(local.calls) == 1

    async def test_empty_response_falls_through(self) -> None:
        local, cloud = _local("   "), _cloud("real answer")
        orch = MultiModelOrchestrator([local, cloud])
        response = await orch.make_api_request("hi")
        assert response.content == "real answer"

    async def test_unavailable_tier_skipped(self) -> None:
        local = _local("never", available=False)
        cloud = _cloud("from cloud")
        orch = MultiModelOrchestrator([local, cloud])
        response = await orch.make_api_request("hi")
        assert response.content == "from cloud"
        assert local.calls == []

    async def test_timeout_falls_back(self) -> None:
        local = _local("slow", delay=1.0)
        cloud = _cloud("fast")
        orch = MultiModelOrchestrator([local, cloud])
        response = await orch.make_api_request(
            "hi", RequestOptions(timeout=0.05)
        )
        assert response.content == "fast"

    async def test_all_tiers_failing_raises_api_error(self) -> None:
        orch = MultiModelOrchestrator(
            [_local(ConnectionError("a")), _cloud(ConnectionError("b"))]
        )
        with pytest.raises(ApiError, match="All model tiers failed"):
            await orch.make_api_request("hi")

    async def test_no_matching_tier_raises(self) -> None:
        orch = MultiModelOrchestrator([_cloud("x")])
        options = RequestOptions(model_preference=ModelPreference.FORCE_LOCAL)
        with pytest.raises(ApiError, match="No model tier matches"):
            await orch.make_api_request("hi", options)

    async def test_cloud_task_type_routes_cloud_first(self) -> None:
        local, cloud = _local("l"), _cloud("c")
        orch = MultiModelOrchestrator([local, cloud])
        response = await orch.make_api_request(
            "write code", RequestOptions(task_type=TaskType.CODE_GENERATION)
        )
        assert response.content == "c"
        assert local.calls == []

    async def test_messages_formatted_per_tier(self) -> None:
        local = _local(ConnectionError("down"))
        cloud = _cloud("ok")
        orch = MultiModelOrchestrator([local, cloud])
        await orch.make_api_request("question", RequestOptions(system_prompt="sys"))
        assert local.calls[0].system is None
        assert local.calls[0].prompt == "sys\n\nquestion"
        assert cloud.calls[0].system == "sys"
        assert cloud.calls[0].prompt == "question"


class TestCaching:
    async def test_second_identical_request_served_from_cache(self) -> None:
        local = _local("first", "second")
        orch = MultiModelOrchestrator([local])
        first = await orch.make_api_request("hi")
        again = await orch.make_api_request("hi\r\n")
        assert first.content == again.content == "first"
        assert len(local.calls) == 1
        assert orch.cache.hits == 1

    async def test_use_cache_false_bypasses(self) -> None:
        local = _local("first", "second")
        orch = MultiModelOrchestrator([local])
        options = RequestOptions(use_cache=False)
        await orch.make_api_request("hi", options)
        response = await orch.make_api_request("hi", options)
        assert response.content == "second"
        assert len(orch.cache) == 0

    async def test_failures_not_cached(self) -> None:
        local = _local(ConnectionError("down"), "recovered")
        orch = MultiModelOrchestrator([local])
        with pytest.raises(ApiError):
            await orch.make_api_request("hi")
        response = await orch.make_api_request("hi")
        assert response.content == "recovered"

    async def test_clear_cache(self) -> None:
        local = _local("first", "second")
        orch = MultiModelOrchestrator([local], cache=ResponseCache(4))
        await orch.make_api_request("hi")
        orch.clear_cache()
        response = await orch.make_api_request("hi")
        assert response.content == "second"


class TestCancellation:
    async def test_already_cancelled_token_short_circuits(self) -> None:
        local = _local("x")
        orch = MultiModelOrchestrator([local])
        token = CancellationToken()
        token.cancel("stop")
        with pytest.raises(OperationCancelledError, match="stop"):
            await orch.make_api_request("hi", cancellation=token)
        assert local.calls == []

    async def test_cancel_abandons_inflight_call(self) -> None:
        local = _local("late", delay=5.0)
        cloud = _cloud("should not be tried")
        orch = MultiModelOrchestrator([local, cloud])
        token = CancellationToken()
        request = asyncio.create_task(
            orch.make_api_request("hi", cancellation=token)
        )
        await asyncio.sleep(0.05)
        token.cancel("user abort")
        with pytest.raises(OperationCancelledError, match="user abort"):
            await request
        assert cloud.calls == []
        assert len(orch.cache) == 0


class TestStreaming:
    async def test_streams_primary_tier(self) -> None:
        orch = MultiModelOrchestrator([_local("hello world")])
        chunks = [c async for c in orch.stream_api_request("hi")]
        text = "".join(c.chunk or "" for c in chunks)
        assert text == "hello world "
        assert chunks[-1].done is True

    async def test_falls_back_before_first_chunk(self) -> None:
        local = _local(ConnectionError("down"))
        cloud = _cloud("from cloud")
        orch = MultiModelOrchestrator([local, cloud])
        chunks = [c async for c in orch.stream_api_request("hi")]
        assert all(c.error is None for c in chunks)
        assert "".join(c.chunk or "" for c in chunks) == "from cloud "

    async def test_all_failing_yields_final_error(self) -> None:
        orch = MultiModelOrchestrator(
            [_local(ConnectionError("a")), _cloud(ConnectionError("b"))]
        )
        chunks = [c async for c in orch.stream_api_request("hi")]
        assert chunks[-1].done is True
        assert (chunks[-1].error or "").startswith("All model tiers failed")
