"""Model tiers: local (fast, free, weaker) and cloud (capable, paid)."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Protocol

from circuitbreaker import CircuitBreakerError

from codeloom.constants import TierKind
from codeloom.orchestration._llm_call import (
    guarded_llm_call,
    guarded_llm_stream,
    is_model_available,
)
from codeloom.orchestration.schemas import (
    Messages,
    ModelResponse,
    RequestOptions,
    StreamChunk,
)
from codeloom.resilience.errors import ApiError, status_code_of

logger = logging.getLogger(__name__)


class ModelTier(Protocol):
    name: str
    kind: TierKind

    def is_available(self) -> bool: ...

    async def invoke(
        self, messages: Messages, options: RequestOptions
    ) -> ModelResponse: ...

    def stream(
        self, messages: Messages, options: RequestOptions
    ) -> AsyncIterator[StreamChunk]: ...


class LiteLLMTier:
    """A tier backed by one litellm model string."""

    kind: TierKind = TierKind.CLOUD

    def __init__(
        self,
        model: str,
        *,
        api_base: str | None = None,
        timeout: float = 60,
    ) -> None:
        self.model = model
        self.name = f"{self.kind}:{model}"
        self._api_base = api_base
        self._timeout = timeout

    def is_available(self) -> bool:
        return is_model_available(self.model)

    async def invoke(
        self, messages: Messages, options: RequestOptions
    ) -> ModelResponse:
        try:
            result = await guarded_llm_call(
                self.model,
                messages,
                options.timeout or self._timeout,
                max_tokens=options.max_tokens,
                temperature=options.temperature,
                api_base=self._api_base,
                json_mode=options.json_mode,
            )
        except CircuitBreakerError as exc:
            raise ApiError(
                f"{self.name} unavailable: circuit open", cause=exc
            ) from exc
        except TimeoutError:
            raise
        except Exception as exc:
            raise ApiError(
                f"{self.name} request failed: {exc}",
                status_code=status_code_of(exc),
                cause=exc,
            ) from exc
        return ModelResponse(
            content=result.content,
            model=result.model,
            tier=self.kind,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
        )

    async def stream(
        self, messages: Messages, options: RequestOptions
    ) -> AsyncIterator[StreamChunk]:
        try:
            async for delta in guarded_llm_stream(
                self.model,
                messages,
                options.timeout or self._timeout,
                max_tokens=options.max_tokens,
                temperature=options.temperature,
                api_base=self._api_base,
            ):
                yield StreamChunk(chunk=delta)
        except Exception as exc:
            logger.warning(
                "event=tier_stream_failed tier=%s error=%s", self.name, exc
            )
            yield StreamChunk(error=str(exc), done=True)
            return
        yield StreamChunk(done=True)


class LocalModelTier(LiteLLMTier):
    """Model served on this machine (Ollama by default)."""

    kind = TierKind.LOCAL

    def __init__(
        self,
        model: str,
        *,
        api_base: str | None = "http://localhost:11434",
        timeout: float = 60,
    ) -> None:
        super().__init__(model, api_base=api_base, timeout=timeout)


class CloudModelTier(LiteLLMTier):
    """Hosted provider model; credentials come from litellm's env vars."""

    kind = TierKind.CLOUD
