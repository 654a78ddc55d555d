"""Pick the order in which tiers are tried for a request."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from codeloom.constants import (
    CLOUD_TASK_TYPES,
    ROUTER_LONG_PROMPT_CHARS,
    ModelPreference,
    TierKind,
)
from codeloom.governor import ResourceGovernor
from codeloom.orchestration.schemas import RequestOptions
from codeloom.orchestration.tiers import ModelTier

logger = logging.getLogger(__name__)


class ModelRouter:
    """Ranks tiers by preference, task type and prompt size.

    When a governor is wired in and reports load, automatic routing
    stops favouring the local tier, which would compete with the host
    for CPU and memory.
    """

    def __init__(
        self,
        default_preference: ModelPreference = ModelPreference.AUTO,
        governor: ResourceGovernor | None = None,
    ) -> None:
        self._default = default_preference
        self._governor = governor

    def primary_kind(self, prompt: str, options: RequestOptions) -> TierKind:
        preference = options.model_preference or self._default
        match preference:
            case ModelPreference.FORCE_LOCAL | ModelPreference.PREFER_LOCAL:
                kind = TierKind.LOCAL
            case ModelPreference.FORCE_CLOUD | ModelPreference.PREFER_CLOUD:
                kind = TierKind.CLOUD
            case _:
                if options.task_type in CLOUD_TASK_TYPES:
                    kind = TierKind.CLOUD
                elif len(prompt) > ROUTER_LONG_PROMPT_CHARS:
                    kind = TierKind.CLOUD
                else:
                    kind = TierKind.LOCAL
        if (
            kind == TierKind.LOCAL
            and preference != ModelPreference.FORCE_LOCAL
            and self._governor is not None
            and not self._governor.can_dispatch_task()
        ):
            logger.info("event=route_demoted_local reason=under_load")
            kind = TierKind.CLOUD
        return kind

    def rank(
        self,
        prompt: str,
        options: RequestOptions,
        tiers: Sequence[ModelTier],
    ) -> list[ModelTier]:
        """Tiers to try, in order. Forced preferences exclude the other kind."""
        preference = options.model_preference or self._default
        if preference == ModelPreference.FORCE_LOCAL:
            return [t for t in tiers if t.kind == TierKind.LOCAL]
        if preference == ModelPreference.FORCE_CLOUD:
            return [t for t in tiers if t.kind == TierKind.CLOUD]
        primary = self.primary_kind(prompt, options)
        ranked = [t for t in tiers if t.kind == primary]
        ranked.extend(t for t in tiers if t.kind != primary)
        logger.debug(
            "event=route_selected task_type=%s primary=%s order=%s",
            options.task_type,
            primary,
            ",".join(t.name for t in ranked),
        )
        return ranked
