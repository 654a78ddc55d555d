"""Scripted model tier for tests and offline demos.

Plays back a fixed list of replies (or exceptions) and records every
call, so orchestrator and agent behaviour can be asserted without a
provider.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass

from codeloom.constants import TierKind
from codeloom.orchestration.schemas import (
    Messages,
    ModelResponse,
    RequestOptions,
    StreamChunk,
)


@dataclass(frozen=True)
class RecordedCall:
    messages: Messages
    options: RequestOptions

    @property
    def prompt(self) -> str:
        return self.messages[-1]["content"]

    @property
    def system(self) -> str | None:
        for message in self.messages:
            if message["role"] == "system":
                return message["content"]
        return None


class ScriptedModelTier:
    """ModelTier that answers from a script.

    Each script entry is a reply string or an exception to raise. When
    the script runs out the last entry repeats.
    """

    def __init__(
        self,
        name: str,
        kind: TierKind,
        script: Sequence[str | BaseException],
        *,
        delay: float = 0.0,
        available: bool = True,
    ) -> None:
        if not script:
            raise ValueError("script must not be empty")
        self.name = name
        self.kind = kind
        self._script = list(script)
        self._delay = delay
        self.available = available
        self.calls: list[RecordedCall] = []

    def is_available(self) -> bool:
        return self.available

    def _next(self) -> str | BaseException:
        idx = min(len(self.calls) - 1, len(self._script) - 1)
        return self._script[idx]

    async def invoke(
        self, messages: Messages, options: RequestOptions
    ) -> ModelResponse:
        self.calls.append(RecordedCall(list(messages), options))
        entry = self._next()
        if self._delay:
            await asyncio.sleep(self._delay)
        if isinstance(entry, BaseException):
            raise entry
        return ModelResponse(content=entry, model=self.name, tier=self.kind)

    async def stream(
        self, messages: Messages, options: RequestOptions
    ) -> AsyncIterator[StreamChunk]:
        self.calls.append(RecordedCall(list(messages), options))
        entry = self._next()
        if isinstance(entry, BaseException):
            yield StreamChunk(error=str(entry), done=True)
            return
        for word in entry.split(" "):
            if self._delay:
                await asyncio.sleep(self._delay)
            yield StreamChunk(chunk=word + " ")
        yield StreamChunk(done=True)
