"""Shared LLM call with per-model circuit breaker and rate-limit retry."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Coroutine
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import litellm
from circuitbreaker import (  # pyright: ignore[reportUnknownVariableType]
    CircuitBreaker,
    CircuitBreakerError,
)
from litellm.exceptions import RateLimitError as LitellmRateLimitError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from codeloom.constants import (
    CB_LLM_FAILURE_THRESHOLD,
    CB_LLM_RECOVERY_TIMEOUT,
    LLM_MAX_OUTPUT_TOKENS,
    RETRY_INITIAL_WAIT,
    RETRY_MAX_ATTEMPTS,
    RETRY_MAX_WAIT,
)

logger = logging.getLogger(__name__)

# litellm stubs have partially unknown types, so use a typed alias
if TYPE_CHECKING:
    _acompletion: Callable[..., Coroutine[Any, Any, Any]]
else:
    _acompletion = litellm.acompletion


@dataclass(frozen=True)
class LLMCallResult:
    """Structured return from guarded_llm_call with token metadata."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int


def _is_non_rate_limit_error(
    thrown_type: type, thrown_value: BaseException
) -> bool:
    """Return True if NOT a rate limit error (should count as CB failure).

    Rate limit errors are transient backpressure signals, not system
    failures, so they are excluded from circuit breaker failure tracking.
    """
    return not issubclass(thrown_type, LitellmRateLimitError)


# Per-model circuit breaker registry; one provider's outage must not
# block fallback to another.
_breaker_registry: dict[str, CircuitBreaker] = {}  # pyright: ignore[reportUnknownVariableType]


def _get_breaker(model: str) -> CircuitBreaker:  # pyright: ignore[reportUnknownParameterType]
    """Get or create a circuit breaker for the given model."""
    if model not in _breaker_registry:
        _breaker_registry[model] = CircuitBreaker(  # pyright: ignore[reportUnknownMemberType]
            failure_threshold=CB_LLM_FAILURE_THRESHOLD,
            recovery_timeout=CB_LLM_RECOVERY_TIMEOUT,
            expected_exception=_is_non_rate_limit_error,
            name=f"llm_{model}",
        )
    return _breaker_registry[model]


def is_model_available(model: str) -> bool:
    """False while the model's circuit breaker is open."""
    breaker = _breaker_registry.get(model)
    return breaker is None or not breaker.opened  # pyright: ignore[reportUnknownMemberType]


def _build_kwargs(
    model: str,
    messages: list[dict[str, str]],
    timeout: float,
    max_tokens: int | None,
    temperature: float | None,
    api_base: str | None,
    json_mode: bool,
) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "timeout": timeout,
        "max_tokens": max_tokens or LLM_MAX_OUTPUT_TOKENS,
    }
    if temperature is not None:
        kwargs["temperature"] = temperature
    if api_base:
        kwargs["api_base"] = api_base
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}
    return kwargs


@retry(
    stop=stop_after_attempt(RETRY_MAX_ATTEMPTS),
    wait=wait_exponential_jitter(
        initial=RETRY_INITIAL_WAIT, max=RETRY_MAX_WAIT
    ),
    retry=retry_if_exception_type(LitellmRateLimitError),
    reraise=True,
)
async def guarded_llm_call(
    model: str,
    messages: list[dict[str, str]],
    timeout: float,
    *,
    max_tokens: int | None = None,
    temperature: float | None = None,
    api_base: str | None = None,
    json_mode: bool = False,
) -> LLMCallResult:
    """Per-model circuit-breaker-protected completion with rate-limit retry.

    - Each model has its own circuit breaker (per-model registry).
    - The breaker opens after 5 consecutive non-rate-limit failures and
      recovers after 30s.
    - Tenacity retries rate-limit errors (429) with jittered exponential
      backoff.
    """
    breaker = _get_breaker(model)
    if breaker.opened:  # pyright: ignore[reportUnknownMemberType]
        raise CircuitBreakerError(breaker)  # pyright: ignore[reportUnknownArgumentType]
    with breaker:  # pyright: ignore[reportUnknownMemberType]
        response: Any = await _acompletion(
            **_build_kwargs(
                model, messages, timeout, max_tokens, temperature,
                api_base, json_mode,
            )
        )

    usage: Any = getattr(response, "usage", None)
    return LLMCallResult(
        content=str(response.choices[0].message.content or ""),
        model=model,
        input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
        output_tokens=getattr(usage, "completion_tokens", 0) or 0,
    )


async def guarded_llm_stream(
    model: str,
    messages: list[dict[str, str]],
    timeout: float,
    *,
    max_tokens: int | None = None,
    temperature: float | None = None,
    api_base: str | None = None,
) -> AsyncIterator[str]:
    """Stream completion text deltas through the model's circuit breaker."""
    breaker = _get_breaker(model)
    if breaker.opened:  # pyright: ignore[reportUnknownMemberType]
        raise CircuitBreakerError(breaker)  # pyright: ignore[reportUnknownArgumentType]
    with breaker:  # pyright: ignore[reportUnknownMemberType]
        kwargs = _build_kwargs(
            model, messages, timeout, max_tokens, temperature,
            api_base, False,
        )
        response: Any = await _acompletion(**kwargs, stream=True)
        async for part in response:
            delta = part.choices[0].delta.content if part.choices else None
            if delta:
                yield delta
