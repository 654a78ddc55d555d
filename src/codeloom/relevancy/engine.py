"""Fan a query out to every retriever, merge, score and rank."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from codeloom.constants import estimate_tokens
from codeloom.relevancy.retrievers import Retriever
from codeloom.relevancy.schemas import (
    EditorState,
    RelevantContext,
    RetrievedItem,
    ScoringOptions,
)
from codeloom.relevancy.scoring import HybridScorer

logger = logging.getLogger(__name__)


def dedupe_by_id(items: Sequence[RetrievedItem]) -> list[RetrievedItem]:
    """Keep one item per id: the one with the highest raw score."""
    best: dict[str, RetrievedItem] = {}
    for item in items:
        kept = best.get(item.id)
        if kept is None or item.score > kept.score:
            best[item.id] = item
    return list(best.values())


def trim_to_tokens(
    items: Sequence[RetrievedItem], token_limit: int
) -> list[RetrievedItem]:
    """Keep ranked items, in order, that still fit in ``token_limit``."""
    kept: list[RetrievedItem] = []
    used = 0
    for item in items:
        cost = estimate_tokens(item.content)
        if used + cost > token_limit:
            continue
        kept.append(item)
        used += cost
    return kept


class RelevancyEngine:
    """Multi-source retrieval with hybrid scoring.

    A retriever that raises contributes nothing; the result is marked
    partial and names the failed source instead of failing the query.
    """

    def __init__(
        self,
        retrievers: Sequence[Retriever],
        scorer: HybridScorer,
        *,
        max_snippets: int = 20,
    ) -> None:
        self._retrievers = list(retrievers)
        self._scorer = scorer
        self._max_snippets = max_snippets

    async def get_context(
        self,
        query: str,
        editor_state: EditorState,
        history: Sequence[str] | None = None,
        token_limit: int | None = None,
    ) -> RelevantContext:
        results = await asyncio.gather(
            *(r.retrieve(query, editor_state, history) for r in self._retrievers),
            return_exceptions=True,
        )

        collected: list[RetrievedItem] = []
        failed: list[str] = []
        for retriever, result in zip(self._retrievers, results, strict=True):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                failed.append(retriever.name)
                logger.warning(
                    "event=retriever_failed source=%s error=%s",
                    retriever.name,
                    result,
                    exc_info=result,
                )
                continue
            collected.extend(result)

        unique = dedupe_by_id(collected)
        scored = self._scorer.score(
            unique, ScoringOptions.from_editor(editor_state)
        )
        scored.sort(key=lambda item: (-item.current_score, item.id))
        ranked = scored[: self._max_snippets]
        if token_limit is not None:
            ranked = trim_to_tokens(ranked, token_limit)

        logger.debug(
            "event=context_retrieved items=%d candidates=%d failed=%s",
            len(ranked),
            len(collected),
            ",".join(failed) or "-",
        )
        return RelevantContext(
            items=ranked, partial=bool(failed), failed_sources=tuple(failed)
        )
