"""Hybrid scoring: independent boosts applied in a fixed order.

Every scorer reads ``current_score`` (final score if an earlier scorer
set one, raw score otherwise) and returns a copy with ``final_score``
replaced. Raw boost factors are clamped into [0, 1] before use.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from typing import Protocol

from codeloom.constants import (
    PROXIMITY_DISTANCE_SCALE,
    PROXIMITY_WEIGHT,
    RECENCY_DECAY,
    RECENCY_MAX_BOOST,
    RECENCY_WEIGHT,
)
from codeloom.relevancy.schemas import RetrievedItem, ScoringOptions


def clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, value))


class Scorer(Protocol):
    def score(
        self, items: Sequence[RetrievedItem], options: ScoringOptions
    ) -> list[RetrievedItem]: ...


class SourceWeightScorer:
    """Scale each item by the configured weight of its retriever.

    Weights are normalized so the largest maps to 1.0; unknown sources
    keep their score.
    """

    def __init__(self, weights: Mapping[str, float]) -> None:
        top = max(weights.values(), default=0.0)
        self._factors = {
            source: clamp_unit(w / top) if top > 0 else 1.0
            for source, w in weights.items()
        }

    def score(
        self, items: Sequence[RetrievedItem], options: ScoringOptions
    ) -> list[RetrievedItem]:
        return [
            item.rescored(
                item.current_score * self._factors.get(str(item.source), 1.0)
            )
            for item in items
        ]


class ProximityScorer:
    """Boost items in the current file by closeness to the cursor."""

    def __init__(
        self,
        weight: float = PROXIMITY_WEIGHT,
        distance_scale: float = PROXIMITY_DISTANCE_SCALE,
    ) -> None:
        self._weight = weight
        self._scale = distance_scale

    def boost(self, distance: int) -> float:
        """Strictly decreasing in ``distance``, within [0, weight]."""
        factor = clamp_unit(1.0 / (1.0 + max(0, distance) / self._scale))
        return factor * self._weight

    def score(
        self, items: Sequence[RetrievedItem], options: ScoringOptions
    ) -> list[RetrievedItem]:
        ctx = options.context
        if not ctx.current_file or ctx.cursor_line is None:
            return list(items)
        cursor = ctx.cursor_line
        scored: list[RetrievedItem] = []
        for item in items:
            if item.file_path != ctx.current_file:
                scored.append(item)
                continue
            if item.start_line <= cursor <= item.end_line:
                distance = 0
            else:
                distance = min(
                    abs(item.start_line - cursor), abs(item.end_line - cursor)
                )
            base = item.current_score
            scored.append(item.rescored(base * (1 + self.boost(distance))))
        return scored


class RecencyScorer:
    """Boost items whose file was opened recently.

    ``recent_files`` is ordered most recent first; the boost decays
    exponentially with list position and never exceeds half the score.
    """

    def __init__(
        self,
        weight: float = RECENCY_WEIGHT,
        decay: float = RECENCY_DECAY,
        max_boost: float = RECENCY_MAX_BOOST,
    ) -> None:
        self._weight = weight
        self._decay = decay
        self._max_boost = max_boost

    def boost(self, position: int, total: int) -> float:
        factor = clamp_unit(math.exp(-self._decay * position / total))
        return min(self._max_boost, factor * self._weight)

    def score(
        self, items: Sequence[RetrievedItem], options: ScoringOptions
    ) -> list[RetrievedItem]:
        recent = options.context.recent_files
        if not recent:
            return list(items)
        positions: dict[str, int] = {}
        for idx, path in enumerate(recent):
            positions.setdefault(path, idx)
        scored: list[RetrievedItem] = []
        for item in items:
            idx = positions.get(item.file_path)
            if idx is None:
                scored.append(item)
                continue
            base = item.current_score
            scored.append(
                item.rescored(base * (1 + self.boost(idx, len(recent))))
            )
        return scored


class HybridScorer:
    """Runs scorers in sequence; order is fixed at construction."""

    def __init__(self, scorers: Sequence[Scorer]) -> None:
        self._scorers = tuple(scorers)

    def score(
        self, items: Sequence[RetrievedItem], options: ScoringOptions
    ) -> list[RetrievedItem]:
        current = list(items)
        for scorer in self._scorers:
            current = scorer.score(current, options)
        # Items no scorer touched still carry their raw score as final.
        return [
            item if item.final_score is not None else item.rescored(item.score)
            for item in current
        ]

    @classmethod
    def default(
        cls,
        weights: Mapping[str, float] | None = None,
        *,
        source_boost: bool = True,
    ) -> HybridScorer:
        scorers: list[Scorer] = []
        if source_boost and weights:
            scorers.append(SourceWeightScorer(weights))
        scorers.append(ProximityScorer())
        scorers.append(RecencyScorer())
        return cls(scorers)
