"""Multi-model orchestrator: cache → route → tiers with fallback."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Sequence

from codeloom.orchestration.cache import ResponseCache, make_cache_key
from codeloom.orchestration.prompts import PromptService
from codeloom.orchestration.router import ModelRouter
from codeloom.orchestration.schemas import (
    ModelResponse,
    RequestOptions,
    StreamChunk,
)
from codeloom.orchestration.tiers import ModelTier
from codeloom.resilience.cancellation import CancellationToken
from codeloom.resilience.errors import (
    ApiError,
    OperationCancelledError,
    classify_error,
    status_code_of,
)

logger = logging.getLogger(__name__)


class MultiModelOrchestrator:
    """Routes requests across tiers and caches successful responses.

    A failing tier (exception, timeout, open circuit, empty body) hands
    the request to the next ranked tier; ApiError is raised only when
    every tier has failed. A cancellation token abandons the in-flight
    tier call and nothing is cached for that request.
    """

    def __init__(
        self,
        tiers: Sequence[ModelTier],
        *,
        router: ModelRouter | None = None,
        cache: ResponseCache | None = None,
        prompts: PromptService | None = None,
        default_timeout: float = 60,
    ) -> None:
        self._tiers = list(tiers)
        self._router = router or ModelRouter()
        self._cache = cache if cache is not None else ResponseCache()
        self._prompts = prompts or PromptService()
        self._default_timeout = default_timeout

    @property
    def tiers(self) -> list[ModelTier]:
        return list(self._tiers)

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.debug("event=response_cache_cleared")

    async def make_api_request(
        self,
        prompt: str,
        options: RequestOptions | None = None,
        cancellation: CancellationToken | None = None,
    ) -> ModelResponse:
        options = options or RequestOptions()
        if cancellation is not None:
            cancellation.raise_if_cancelled()

        key = make_cache_key(prompt, options)
        if options.use_cache:
            cached = self._cache.get(key)
            if cached is not None:
                logger.debug(
                    "event=response_cache_hit task_type=%s", options.task_type
                )
                return cached

        ranked = self._router.rank(prompt, options, self._tiers)
        if not ranked:
            raise ApiError("No model tier matches the requested preference")

        last_error: BaseException | None = None
        for tier in ranked:
            if not tier.is_available():
                logger.info("event=tier_skipped tier=%s reason=unavailable", tier.name)
                last_error = ApiError(f"{tier.name} unavailable")
                continue
            messages = self._prompts.format_messages(prompt, options, tier.kind)
            timeout = options.timeout or self._default_timeout
            start = time.monotonic()
            call = asyncio.wait_for(tier.invoke(messages, options), timeout)
            try:
                if cancellation is not None:
                    response = await cancellation.race(call)
                else:
                    response = await call
            except OperationCancelledError:
                logger.info(
                    "event=request_cancelled tier=%s task_type=%s",
                    tier.name,
                    options.task_type,
                )
                raise
            except Exception as exc:
                logger.warning(
                    "event=tier_failed tier=%s error_class=%s error=%s",
                    tier.name,
                    classify_error(exc).value,
                    exc,
                )
                last_error = exc
                continue

            if not response.content.strip():
                logger.warning(
                    "event=tier_failed tier=%s error_class=malformed"
                    " error=empty response",
                    tier.name,
                )
                last_error = ApiError(f"{tier.name} returned an empty response")
                continue

            if cancellation is not None:
                cancellation.raise_if_cancelled()
            if options.use_cache:
                self._cache.put(key, response)
            logger.info(
                "event=request_completed tier=%s model=%s task_type=%s"
                " duration_ms=%.0f",
                tier.name,
                response.model,
                options.task_type,
                (time.monotonic() - start) * 1000,
            )
            return response

        raise ApiError(
            f"All model tiers failed: {last_error}",
            status_code=(
                status_code_of(last_error) if last_error is not None else None
            ),
            cause=last_error,
        )

    async def stream_api_request(
        self,
        prompt: str,
        options: RequestOptions | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream from the first tier that produces output.

        Falls back only while nothing has been yielded; streams are never
        cached.
        """
        options = options or RequestOptions()
        ranked = [
            t
            for t in self._router.rank(prompt, options, self._tiers)
            if t.is_available()
        ]
        last_error = "no model tier available"
        for tier in ranked:
            messages = self._prompts.format_messages(prompt, options, tier.kind)
            started = False
            async for chunk in tier.stream(messages, options):
                if chunk.error and not started:
                    last_error = chunk.error
                    logger.warning(
                        "event=tier_stream_fallback tier=%s error=%s",
                        tier.name,
                        chunk.error,
                    )
                    break
                if chunk.chunk:
                    started = True
                yield chunk
                if chunk.done:
                    return
            else:
                if started:
                    return
        yield StreamChunk(error=f"All model tiers failed: {last_error}", done=True)
