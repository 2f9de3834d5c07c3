"""Per-deal findings rolled up into exception lists and per-owner status.

One deterministic pass over the deal set. For each open deal the risk
assessment and next-step check are computed once; exception records are
derived from those with a fixed precedence so the same underlying problem is
not reported twice:

* ``overdue_next_step`` and ``past_close_date`` are independent records.
* ``activity_drought`` is dropped when the deal already has an
  ``overdue_next_step`` record.
* ``no_next_step`` and ``stale_stage`` are only emitted for deals with no
  other record.
* ``high_value_at_risk`` is its own lane with a synthetic ``<id>-hvr`` record
  id and is never deduplicated.

Summary counters count every finding, including suppressed records.
Closed-stage deals produce no records but still count as healthy in their
owner's rollup, so rollup totals match the owned deals passed in.
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import date, datetime

from revops.engine.compliance import ComplianceTracker
from revops.engine.models import (
    AEStatusRollup,
    AggregationResult,
    DealSnapshot,
    ExceptionCounts,
    ExceptionRecord,
    ExceptionType,
    NextStepComplianceStatus,
    RiskAssessment,
    RiskFactorType,
    RiskLevel,
    RollupStatus,
)
from revops.engine.policy import DEFAULT_POLICY, Policy
from revops.engine.risk import RiskClassifier

logger = logging.getLogger(__name__)

_SORT_LANE = {
    ExceptionType.HIGH_VALUE_AT_RISK: 0,
    ExceptionType.OVERDUE_NEXT_STEP: 1,
}


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def rollup_status(overdue_count: int, stale_count: int, policy: Policy = DEFAULT_POLICY) -> RollupStatus:
    """Red/amber/green for an owner from overdue and stale counts."""
    if overdue_count >= policy.red_overdue_count or stale_count >= policy.red_stale_count:
        return RollupStatus.RED
    if overdue_count >= policy.amber_overdue_count or stale_count >= policy.amber_stale_count:
        return RollupStatus.AMBER
    return RollupStatus.GREEN


def sort_exceptions(records: Iterable[ExceptionRecord]) -> list[ExceptionRecord]:
    """Order records and assign 1-based priority ranks.

    High-value escalations first, then overdue next steps, then by amount
    descending. Deal id and record id break remaining ties.
    """
    ordered = sorted(
        records,
        key=lambda r: (
            _SORT_LANE.get(r.exception_type, 2),
            -(r.amount or 0.0),
            r.deal_id,
            r.record_id,
        ),
    )
    return [r.model_copy(update={"priority": rank}) for rank, r in enumerate(ordered, start=1)]


class ExceptionAggregator:
    """Runs risk and compliance checks over a deal set and rolls them up."""

    def __init__(
        self,
        classifier: RiskClassifier,
        tracker: ComplianceTracker,
        policy: Policy = DEFAULT_POLICY,
    ):
        self._classifier = classifier
        self._tracker = tracker
        self._policy = policy
        self._registry = classifier.registry

    def aggregate(
        self,
        deals: Sequence[DealSnapshot],
        as_of: date | datetime,
        owner_ids: Sequence[str] | None = None,
    ) -> AggregationResult:
        """Build the exception list and per-owner rollups for a deal set.

        Args:
            deals: Deal snapshots; terminal-stage deals only feed the rollups.
            as_of: Reference date for every check.
            owner_ids: Owners to report on. Listed owners always get a rollup,
                even with no deals; when given, deals owned by anyone else are
                left out entirely.

        Returns:
            AggregationResult with sorted exceptions, rollups and counters.
        """
        policy = self._policy
        per_owner: dict[str, AEStatusRollup] = {}
        if owner_ids is not None:
            for owner_id in owner_ids:
                per_owner[owner_id] = AEStatusRollup(owner_id=owner_id)
        allowed = set(owner_ids) if owner_ids is not None else None

        counts = ExceptionCounts()
        records: list[ExceptionRecord] = []
        active = 0

        for deal in deals:
            if allowed is not None and deal.owner_id not in allowed:
                continue
            assessment = self._classifier.assess(deal, as_of)
            is_overdue = False
            # Closed deals still count toward their owner, as healthy with no records.
            if not self._registry.is_terminal(deal.stage_id):
                active += 1
                next_step = self._tracker.check_deal_next_step(deal, as_of)
                is_overdue = next_step.status == NextStepComplianceStatus.OVERDUE
                records.extend(
                    self._deal_records(deal, assessment, next_step.days_overdue, counts)
                )

            if deal.owner_id:
                rollup = per_owner.get(deal.owner_id)
                if rollup is None:
                    rollup = AEStatusRollup(owner_id=deal.owner_id)
                per_owner[deal.owner_id] = self._bump(rollup, assessment, is_overdue)

        per_owner = {
            owner_id: rollup.model_copy(
                update={
                    "status": rollup_status(rollup.overdue_count, rollup.stale_count, policy)
                }
            )
            for owner_id, rollup in per_owner.items()
        }

        exceptions = sort_exceptions(records)
        critical = [
            r
            for r in exceptions
            if r.exception_type == ExceptionType.HIGH_VALUE_AT_RISK
            or (
                r.exception_type == ExceptionType.PAST_CLOSE_DATE
                and (r.amount or 0.0) >= policy.high_value_threshold
            )
        ]
        critical_deals = len({r.deal_id for r in critical})
        message = None
        if critical_deals:
            verb = "needs" if critical_deals == 1 else "need"
            message = (
                f"{_plural(critical_deals, 'high-value deal')} {verb} immediate attention"
            )

        logger.info(
            "Aggregated %d active deals into %d exceptions",
            active,
            len(exceptions),
            extra={"owner_count": len(per_owner), "critical_deals": critical_deals},
        )

        return AggregationResult(
            exceptions=exceptions,
            per_owner=per_owner,
            counts=counts,
            total_active_deals=active,
            has_critical_alert=critical_deals > 0,
            critical_alert_message=message,
        )

    @staticmethod
    def _bump(rollup: AEStatusRollup, assessment: RiskAssessment, is_overdue: bool) -> AEStatusRollup:
        # Buckets are exclusive so the four counts always add up to total_deals.
        if is_overdue:
            field = "overdue_count"
        elif assessment.level == RiskLevel.STALE:
            field = "stale_count"
        elif assessment.level == RiskLevel.AT_RISK:
            field = "at_risk_count"
        else:
            field = "healthy_count"
        return rollup.model_copy(
            update={field: getattr(rollup, field) + 1, "total_deals": rollup.total_deals + 1}
        )

    def _record(
        self,
        deal: DealSnapshot,
        assessment: RiskAssessment,
        exception_type: ExceptionType,
        detail: str,
        record_id: str | None = None,
    ) -> ExceptionRecord:
        return ExceptionRecord(
            record_id=record_id or f"{deal.id}-{exception_type.value}",
            deal_id=deal.id,
            owner_id=deal.owner_id,
            deal_name=deal.deal_name,
            amount=deal.amount,
            stage_name=self._registry.display_name(deal.stage_id),
            exception_type=exception_type,
            detail=detail,
            days_since_activity=assessment.days_since_activity,
            days_in_stage=assessment.days_in_stage,
            close_date=deal.close_date,
            next_step_due_date=deal.next_step_due_date,
        )

    def _deal_records(
        self,
        deal: DealSnapshot,
        assessment: RiskAssessment,
        days_overdue: int | None,
        counts: ExceptionCounts,
    ) -> list[ExceptionRecord]:
        policy = self._policy
        out: list[ExceptionRecord] = []

        if days_overdue is not None:
            counts.overdue_next_step += 1
            out.append(
                self._record(
                    deal,
                    assessment,
                    ExceptionType.OVERDUE_NEXT_STEP,
                    f"Next step overdue by {_plural(days_overdue, 'day')}",
                )
            )

        past_close = assessment.factor(RiskFactorType.PAST_CLOSE_DATE)
        if past_close is not None:
            counts.past_close_date += 1
            out.append(
                self._record(
                    deal,
                    assessment,
                    ExceptionType.PAST_CLOSE_DATE,
                    f"Close date passed {_plural(past_close.magnitude or 0, 'day')} ago",
                )
            )

        if assessment.days_since_activity >= policy.exception_drought_days:
            counts.activity_drought += 1
            if days_overdue is None:
                out.append(
                    self._record(
                        deal,
                        assessment,
                        ExceptionType.ACTIVITY_DROUGHT,
                        f"No activity in {assessment.days_since_activity} days",
                    )
                )

        if assessment.has_factor(RiskFactorType.NO_NEXT_STEP):
            counts.no_next_step += 1
            if not out:
                out.append(
                    self._record(
                        deal, assessment, ExceptionType.NO_NEXT_STEP, "No next step defined"
                    )
                )

        stage_age = assessment.factor(RiskFactorType.STAGE_AGE)
        if stage_age is not None:
            counts.stale_stage += 1
            if not out:
                out.append(
                    self._record(deal, assessment, ExceptionType.STALE_STAGE, stage_age.message)
                )

        amount = deal.amount or 0.0
        if amount >= policy.high_value_threshold and assessment.level == RiskLevel.STALE:
            counts.high_value_at_risk += 1
            out.append(
                self._record(
                    deal,
                    assessment,
                    ExceptionType.HIGH_VALUE_AT_RISK,
                    f"${amount / 1000:.0f}k deal with {_plural(len(assessment.factors), 'risk factor')}",
                    record_id=f"{deal.id}-hvr",
                )
            )

        return out
