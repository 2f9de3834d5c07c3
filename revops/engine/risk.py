"""Per-deal risk classification.

A deal accumulates independent risk factors (missing or overdue next step,
past close date, activity drought, too long in stage). One moderate factor
makes it ``at_risk``; two or more, or any single severe factor, make it
``stale``. Missing input fields never raise: they just suppress the factor
that would have used them.
"""

import logging
from datetime import date, datetime

from revops.engine.calendar_math import business_days_since, days_until, is_in_past
from revops.engine.models import (
    DealSnapshot,
    RiskAssessment,
    RiskFactor,
    RiskFactorType,
    RiskLevel,
)
from revops.engine.policy import DEFAULT_POLICY, Policy
from revops.engine.stage_registry import StageRegistry

logger = logging.getLogger(__name__)

# Most actionable first.
FACTOR_ORDER: tuple[RiskFactorType, ...] = (
    RiskFactorType.OVERDUE_NEXT_STEP,
    RiskFactorType.PAST_CLOSE_DATE,
    RiskFactorType.ACTIVITY_DROUGHT,
    RiskFactorType.NO_NEXT_STEP,
    RiskFactorType.STAGE_AGE,
)
_FACTOR_RANK = {factor_type: rank for rank, factor_type in enumerate(FACTOR_ORDER)}


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def has_next_step(deal: DealSnapshot) -> bool:
    return bool(deal.next_step and deal.next_step.strip())


def next_step_days_overdue(
    deal: DealSnapshot,
    as_of: date | datetime,
    committed_statuses: frozenset[str],
) -> int | None:
    """Calendar days a committed next step is overdue, or None if it is not.

    Only ``date_found``/``date_inferred`` style statuses count as committed;
    vague or externally-blocked next steps never go overdue.
    """
    if deal.next_step_due_date is None or deal.next_step_status is None:
        return None
    if deal.next_step_status.value not in committed_statuses:
        return None
    if not is_in_past(deal.next_step_due_date, as_of):
        return None
    return -days_until(deal.next_step_due_date, as_of)


class RiskClassifier:
    """Stateless risk assessment for single deals."""

    def __init__(self, registry: StageRegistry, policy: Policy = DEFAULT_POLICY):
        self._registry = registry
        self._policy = policy

    @property
    def registry(self) -> StageRegistry:
        return self._registry

    def days_since_activity(self, deal: DealSnapshot, as_of: date | datetime) -> int:
        """Business days since last activity, falling back to deal age."""
        reference = deal.last_activity_at or deal.created_at
        if reference is None:
            return 0
        return business_days_since(reference, as_of)

    def days_in_stage(self, deal: DealSnapshot, as_of: date | datetime) -> int:
        """Business days since the deal entered its current stage."""
        entered_at = None
        if deal.stage_id:
            entered_at = deal.stage_entered_at.get(deal.stage_id)
        reference = entered_at or deal.created_at
        if reference is None:
            return 0
        return business_days_since(reference, as_of)

    def assess(self, deal: DealSnapshot, as_of: date | datetime) -> RiskAssessment:
        """Classify a deal's risk as of a given date.

        Args:
            deal: Deal snapshot; any field other than ``id`` may be missing.
            as_of: Reference date. The system clock is never consulted.

        Returns:
            RiskAssessment with factors in fixed severity order.
        """
        days_since_activity = self.days_since_activity(deal, as_of)
        days_in_stage = self.days_in_stage(deal, as_of)

        if self._registry.is_terminal(deal.stage_id):
            return RiskAssessment(
                level=RiskLevel.HEALTHY,
                days_since_activity=days_since_activity,
                days_in_stage=days_in_stage,
                factors=[],
            )

        factors = self._collect_factors(deal, as_of, days_since_activity, days_in_stage)
        factors.sort(key=lambda f: _FACTOR_RANK[f.type])

        if len(factors) >= 2 or any(f.severe for f in factors):
            level = RiskLevel.STALE
        elif factors:
            level = RiskLevel.AT_RISK
        else:
            level = RiskLevel.HEALTHY

        logger.debug(
            "Assessed deal %s as %s",
            deal.id,
            level.value,
            extra={"deal_id": deal.id, "factor_count": len(factors)},
        )

        return RiskAssessment(
            level=level,
            days_since_activity=days_since_activity,
            days_in_stage=days_in_stage,
            factors=factors,
        )

    def _collect_factors(
        self,
        deal: DealSnapshot,
        as_of: date | datetime,
        days_since_activity: int,
        days_in_stage: int,
    ) -> list[RiskFactor]:
        policy = self._policy
        factors: list[RiskFactor] = []

        if not has_next_step(deal):
            factors.append(
                RiskFactor(
                    type=RiskFactorType.NO_NEXT_STEP,
                    message="No next step defined",
                )
            )

        days_overdue = next_step_days_overdue(deal, as_of, policy.committed_next_step_statuses)
        if days_overdue is not None:
            factors.append(
                RiskFactor(
                    type=RiskFactorType.OVERDUE_NEXT_STEP,
                    message=f"Next step overdue by {_plural(days_overdue, 'day')}",
                    magnitude=days_overdue,
                    severe=days_overdue >= policy.severe_next_step_overdue_days,
                )
            )

        if deal.close_date is not None and is_in_past(deal.close_date, as_of):
            days_past = -days_until(deal.close_date, as_of)
            factors.append(
                RiskFactor(
                    type=RiskFactorType.PAST_CLOSE_DATE,
                    message=f"Close date passed {_plural(days_past, 'day')} ago",
                    magnitude=days_past,
                )
            )

        if days_since_activity > policy.activity_drought_days:
            factors.append(
                RiskFactor(
                    type=RiskFactorType.ACTIVITY_DROUGHT,
                    message=(
                        f"No activity in {_plural(days_since_activity, 'business day')} "
                        f"(SLA: {policy.activity_drought_days})"
                    ),
                    magnitude=days_since_activity,
                    severe=days_since_activity >= policy.exception_drought_days,
                )
            )

        dwell = policy.dwell_for(self._registry.category(deal.stage_id))
        if dwell is not None and days_in_stage >= dwell.at_risk:
            factors.append(
                RiskFactor(
                    type=RiskFactorType.STAGE_AGE,
                    message=(
                        f"In stage {_plural(days_in_stage, 'business day')} "
                        f"(expected: {dwell.expected})"
                    ),
                    magnitude=days_in_stage,
                    severe=days_in_stage >= dwell.stale,
                )
            )

        return factors
