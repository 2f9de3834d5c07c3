"""Stage lookups: display names, closed/excluded classification and weights.

Classification is two-tier. When pipeline metadata is available, a stage is
closed-won/lost only if the metadata marks it closed *and* its id or label
matches a won/lost pattern. When metadata is missing (the whole list, or just
one stage id), the id/label alone is matched against the same patterns via
``classify_stage_by_pattern``.
"""

import logging
from datetime import date
from types import MappingProxyType

from revops.engine.calendar_math import QuarterWindow
from revops.engine.models import Pipeline, StageInfo
from revops.engine.policy import DEFAULT_POLICY, Policy, StageCategory

logger = logging.getLogger(__name__)

_MID_TERMS = ("demo",)
_LATE_TERMS = ("proposal", "negotiation", "contract", "legal", "procurement")


def _matches_any(texts: tuple[str, ...], patterns: tuple[str, ...]) -> bool:
    return any(p in text for text in texts for p in patterns)


def stage_weight_for_label(label: str | None, policy: Policy = DEFAULT_POLICY) -> float:
    """Close probability for a free-text stage label.

    Exact lowercased match against the policy table first, then the ordered
    substring rules, then the policy default.

    Args:
        label: Stage label as configured in the CRM.
        policy: Engine policy holding the weight tables.

    Returns:
        A weight in [0, 1].
    """
    if not label:
        return policy.default_stage_weight

    lower = label.strip().lower()
    exact = policy.stage_weights.get(lower)
    if exact is not None:
        return exact

    for terms, weight in policy.stage_weight_rules:
        if all(term in lower for term in terms):
            return weight

    return policy.default_stage_weight


def stage_category(label: str | None, policy: Policy = DEFAULT_POLICY) -> StageCategory:
    """Group a stage label into early, mid, late or closed."""
    lower = (label or "").lower()
    if _matches_any((lower,), policy.terminal_patterns):
        return StageCategory.CLOSED
    if _matches_any((lower,), _MID_TERMS):
        return StageCategory.MID
    if _matches_any((lower,), _LATE_TERMS):
        return StageCategory.LATE
    return StageCategory.EARLY


def classify_stage_by_pattern(
    stage_id: str,
    label: str | None = None,
    policy: Policy = DEFAULT_POLICY,
) -> StageInfo:
    """Build StageInfo for a stage using pattern matching alone.

    Used when pipeline metadata is unavailable or does not know the stage.
    """
    display_name = label or stage_id
    texts = (stage_id.lower(), display_name.lower())
    return StageInfo(
        stage_id=stage_id,
        display_name=display_name,
        is_closed_won=_matches_any(texts, policy.closed_won_patterns),
        is_closed_lost=_matches_any(texts, policy.closed_lost_patterns),
        is_excluded=_matches_any(texts, policy.excluded_patterns),
        forecast_weight=stage_weight_for_label(display_name, policy),
        category=stage_category(display_name, policy),
    )


class StageRegistry:
    """Read-only stage lookup built once per pipeline snapshot."""

    def __init__(self, pipelines: list[Pipeline] | None = None, policy: Policy = DEFAULT_POLICY):
        self._policy = policy
        self._has_metadata = pipelines is not None
        stages: dict[str, StageInfo] = {}

        for pipeline in pipelines or []:
            for stage in pipeline.stages:
                texts = (stage.id.lower(), stage.label.lower())
                is_closed = bool(stage.is_closed)
                stages[stage.id] = StageInfo(
                    stage_id=stage.id,
                    display_name=stage.label,
                    is_closed_won=is_closed
                    and _matches_any(texts, policy.closed_won_patterns),
                    is_closed_lost=is_closed
                    and _matches_any(texts, policy.closed_lost_patterns),
                    is_excluded=_matches_any(texts, policy.excluded_patterns),
                    forecast_weight=stage_weight_for_label(stage.label, policy),
                    category=StageCategory.CLOSED
                    if is_closed
                    else stage_category(stage.label, policy),
                )

        self._stages = MappingProxyType(stages)

        logger.debug(
            "Built stage registry",
            extra={"stage_count": len(stages), "has_metadata": self._has_metadata},
        )

    @property
    def has_metadata(self) -> bool:
        return self._has_metadata

    @property
    def policy(self) -> Policy:
        return self._policy

    def stage_info(self, stage_id: str | None) -> StageInfo:
        """Return StageInfo for a stage id, falling back to pattern matching."""
        key = stage_id or ""
        known = self._stages.get(key)
        if known is not None:
            return known
        return classify_stage_by_pattern(key or "Unknown", None, self._policy)

    def display_name(self, stage_id: str | None) -> str:
        return self.stage_info(stage_id).display_name

    def weight(self, stage_id: str | None) -> float:
        return self.stage_info(stage_id).forecast_weight

    def category(self, stage_id: str | None) -> StageCategory:
        return self.stage_info(stage_id).category

    def is_closed_won(self, stage_id: str | None) -> bool:
        return self.stage_info(stage_id).is_closed_won

    def is_closed_lost(self, stage_id: str | None) -> bool:
        return self.stage_info(stage_id).is_closed_lost

    def is_closed(self, stage_id: str | None) -> bool:
        info = self.stage_info(stage_id)
        return info.is_closed_won or info.is_closed_lost

    def is_excluded(self, stage_id: str | None) -> bool:
        return self.stage_info(stage_id).is_excluded

    def is_terminal(self, stage_id: str | None) -> bool:
        """True for closed won/lost stages and disqualified-style stages."""
        info = self.stage_info(stage_id)
        if info.is_closed_won or info.is_closed_lost:
            return True
        return info.category == StageCategory.CLOSED

    def is_open(self, stage_id: str | None) -> bool:
        """Not closed and not excluded from pipeline."""
        return not self.is_terminal(stage_id) and not self.is_excluded(stage_id)

    def is_open_pipeline(
        self,
        stage_id: str | None,
        close_date: date | None,
        window: QuarterWindow,
    ) -> bool:
        """True iff the deal is open and its close date falls inside ``window``."""
        if close_date is None:
            return False
        return self.is_open(stage_id) and window.contains(close_date)
