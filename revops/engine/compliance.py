"""Hygiene commitments, next-step compliance and task/stall checks.

The hygiene commitment is the only persisted lifecycle the engine looks at.
An AE promises to fill in missing deal fields by a date; the record is
``pending`` until it is marked ``fulfilled`` outside the engine or the date
passes (``expired``). This module only reads the current state and decides
whether the deal should be escalated; it never writes a commitment back.
"""

import logging
from datetime import date, datetime

from revops.engine.calendar_math import business_days_since, days_until, is_in_past, to_date
from revops.engine.models import (
    CommitmentStatus,
    DealSnapshot,
    HygieneCheckResult,
    HygieneCommitment,
    HygieneStatus,
    HygieneStatusResult,
    NextStepCheckResult,
    NextStepComplianceStatus,
    NextStepStatus,
    OverdueTask,
    OverdueTasksResult,
    StalledDealResult,
    StalledSeverity,
    TaskSnapshot,
    parse_next_step_status,
)
from revops.engine.policy import DEFAULT_POLICY, Policy
from revops.engine.risk import has_next_step, next_step_days_overdue

logger = logging.getLogger(__name__)


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def _is_blank(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


class ComplianceTracker:
    """Stateless compliance checks driven by a Policy."""

    def __init__(self, policy: Policy = DEFAULT_POLICY):
        self._policy = policy

    # Hygiene

    def check_hygiene(self, deal: DealSnapshot) -> HygieneCheckResult:
        """List required fields the deal is missing (a zero amount counts as missing)."""
        missing: list[str] = []
        for field_name, label in self._policy.hygiene_required_fields:
            value = getattr(deal, field_name, None)
            if _is_blank(value) or (field_name == "amount" and value == 0):
                missing.append(label)
        return HygieneCheckResult(has_gap=bool(missing), missing_fields=missing)

    def commitment_state(
        self,
        commitment: HygieneCommitment,
        as_of: date | datetime,
    ) -> CommitmentStatus:
        """Effective status of a commitment on ``as_of``.

        A pending commitment whose date is before ``as_of`` has expired.
        Fulfilled and expired commitments are returned unchanged.
        """
        if commitment.status == CommitmentStatus.PENDING and is_in_past(
            commitment.commitment_date, as_of
        ):
            return CommitmentStatus.EXPIRED
        return commitment.status

    def determine_hygiene_status(
        self,
        deal: DealSnapshot,
        commitment: HygieneCommitment | None,
        as_of: date | datetime,
    ) -> HygieneStatusResult:
        """Decide whether a deal's hygiene gap is compliant, pending or escalated.

        Args:
            deal: Deal snapshot to check.
            commitment: Current commitment for the deal, or None if none was made.
            as_of: Reference date.

        Returns:
            HygieneStatusResult with the missing field labels and a reason.
        """
        check = self.check_hygiene(deal)
        days_old = None
        if deal.created_at is not None:
            days_old = (to_date(as_of) - to_date(deal.created_at)).days
        is_new = days_old is not None and days_old <= self._policy.hygiene_grace_days

        if not check.has_gap:
            return HygieneStatusResult(
                status=HygieneStatus.COMPLIANT,
                missing_fields=[],
                reason="",
                days_old=days_old,
                is_new_deal=is_new,
            )

        field_list = ", ".join(check.missing_fields)

        if commitment is None:
            if is_new:
                return HygieneStatusResult(
                    status=HygieneStatus.PENDING,
                    missing_fields=check.missing_fields,
                    reason=f"New deal missing: {field_list}. Please set a date to complete.",
                    days_old=days_old,
                    is_new_deal=True,
                )
            return HygieneStatusResult(
                status=HygieneStatus.ESCALATED,
                missing_fields=check.missing_fields,
                reason=f"Missing required fields: {field_list}. Action required.",
                days_old=days_old,
                is_new_deal=False,
            )

        state = self.commitment_state(commitment, as_of)
        days_left = days_until(commitment.commitment_date, as_of)

        if state == CommitmentStatus.FULFILLED:
            # Marked done but the fields are still empty.
            reason = f"Commitment marked complete but still missing {field_list}."
            status = HygieneStatus.ESCALATED
        elif state == CommitmentStatus.EXPIRED:
            overdue = abs(days_left)
            reason = f"OVERDUE by {_plural(overdue, 'day')}: Still missing {field_list}."
            status = HygieneStatus.ESCALATED
        elif days_left == 0:
            reason = f"Missing: {field_list}. Due today."
            status = HygieneStatus.PENDING
        elif days_left == 1:
            reason = f"Missing: {field_list}. Due tomorrow."
            status = HygieneStatus.PENDING
        else:
            reason = f"Missing: {field_list}. Due in {days_left} days."
            status = HygieneStatus.PENDING

        return HygieneStatusResult(
            status=status,
            missing_fields=check.missing_fields,
            reason=reason,
            days_old=days_old,
            is_new_deal=is_new,
            commitment_date=commitment.commitment_date,
        )

    # Next steps

    def check_next_step_compliance(
        self,
        next_step: str | None,
        due_date: date | None,
        status: NextStepStatus | str | None,
        as_of: date | datetime,
    ) -> NextStepCheckResult:
        """Classify a next step as overdue, missing or compliant (checked in that order)."""
        probe = DealSnapshot(
            id="",
            next_step=next_step,
            next_step_due_date=due_date,
            next_step_status=parse_next_step_status(status),
        )
        days_overdue = next_step_days_overdue(
            probe, as_of, self._policy.committed_next_step_statuses
        )
        if days_overdue is not None:
            return NextStepCheckResult(
                status=NextStepComplianceStatus.OVERDUE,
                days_overdue=days_overdue,
                reason=f"Next step is {_plural(days_overdue, 'day')} overdue. Update or complete it.",
            )

        if not has_next_step(probe):
            return NextStepCheckResult(
                status=NextStepComplianceStatus.MISSING,
                reason="This deal has no next step defined. Add one to keep it moving.",
            )

        return NextStepCheckResult(status=NextStepComplianceStatus.COMPLIANT, reason="")

    def check_deal_next_step(self, deal: DealSnapshot, as_of: date | datetime) -> NextStepCheckResult:
        return self.check_next_step_compliance(
            deal.next_step, deal.next_step_due_date, deal.next_step_status, as_of
        )

    # Tasks

    def check_overdue_tasks(
        self,
        tasks: list[TaskSnapshot],
        as_of: date | datetime,
    ) -> OverdueTasksResult:
        """Find incomplete tasks whose due date is in the past, most overdue first."""
        completed = {s.lower() for s in self._policy.completed_task_statuses}
        overdue: list[OverdueTask] = []

        for task in tasks:
            if task.due_at is None:
                continue
            if (task.status or "").lower() in completed:
                continue
            if not is_in_past(task.due_at, as_of):
                continue
            overdue.append(
                OverdueTask(
                    task_id=task.id,
                    subject=task.subject or "Untitled Task",
                    due_at=task.due_at,
                    days_overdue=-days_until(task.due_at, as_of),
                )
            )

        overdue.sort(key=lambda t: (-t.days_overdue, t.task_id))
        oldest = overdue[0].days_overdue if overdue else 0

        return OverdueTasksResult(
            overdue_tasks=overdue,
            overdue_count=len(overdue),
            oldest_overdue_days=oldest,
            is_critical=oldest > self._policy.overdue_task_critical_days,
        )

    # Stalled deals

    def check_deal_staleness(self, deal: DealSnapshot, as_of: date | datetime) -> StalledDealResult:
        """Decide whether a deal has stalled and how badly.

        A deal is stalled when it is older than the minimum age, has had no
        activity for more than the watch threshold, and has nothing scheduled
        in the future. Deals with no recorded activity use their age instead.
        """
        policy = self._policy
        if deal.created_at is None:
            return StalledDealResult(is_stalled=False)

        deal_age = business_days_since(deal.created_at, as_of)
        if deal_age <= policy.stalled_min_age_days:
            return StalledDealResult(is_stalled=False, deal_age_days=deal_age)

        if deal.last_activity_at is None:
            inactive = deal_age
        else:
            inactive = business_days_since(deal.last_activity_at, as_of)
            if deal.next_activity_at is not None and not is_in_past(deal.next_activity_at, as_of):
                return StalledDealResult(
                    is_stalled=False, days_since_activity=inactive, deal_age_days=deal_age
                )

        if inactive <= policy.stalled_watch_days:
            return StalledDealResult(
                is_stalled=False, days_since_activity=inactive, deal_age_days=deal_age
            )

        if inactive > policy.stalled_critical_days:
            severity = StalledSeverity.CRITICAL
        elif inactive > policy.stalled_warning_days:
            severity = StalledSeverity.WARNING
        else:
            severity = StalledSeverity.WATCH

        close_in_past = deal.close_date is not None and is_in_past(deal.close_date, as_of)
        close_soon = (
            deal.close_date is not None
            and not close_in_past
            and days_until(deal.close_date, as_of) <= policy.stalled_close_soon_days
        )

        return StalledDealResult(
            is_stalled=True,
            severity=severity,
            days_since_activity=inactive,
            deal_age_days=deal_age,
            close_date_in_past=close_in_past,
            close_date_within_window=close_soon,
            no_next_step=not has_next_step(deal),
            next_step_overdue=next_step_days_overdue(
                deal, as_of, policy.committed_next_step_statuses
            )
            is not None,
        )
