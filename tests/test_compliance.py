"""Tests for hygiene, next-step, task and stalled-deal checks."""

from collections.abc import Callable
from datetime import date, datetime, timedelta

from revops.engine.compliance import ComplianceTracker
from revops.engine.models import (
    CommitmentStatus,
    DealSnapshot,
    HygieneCommitment,
    HygieneStatus,
    NextStepComplianceStatus,
    NextStepStatus,
    StalledSeverity,
    TaskSnapshot,
)


def _at(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, 9, 0)


def _commitment(day: date, status: CommitmentStatus = CommitmentStatus.PENDING) -> HygieneCommitment:
    return HygieneCommitment(deal_id="deal-1", commitment_date=day, status=status)


class TestHygieneCheck:
    def test_complete_deal_has_no_gap(
        self, tracker: ComplianceTracker, make_deal: Callable[..., DealSnapshot]
    ) -> None:
        result = tracker.check_hygiene(make_deal())
        assert not result.has_gap
        assert result.missing_fields == []

    def test_missing_fields_use_labels_in_policy_order(
        self, tracker: ComplianceTracker, make_deal: Callable[..., DealSnapshot]
    ) -> None:
        deal = make_deal(products="", lead_source=None, close_date=None)
        result = tracker.check_hygiene(deal)
        assert result.missing_fields == ["Close Date", "Lead Source", "Products"]

    def test_zero_amount_counts_as_missing(
        self, tracker: ComplianceTracker, make_deal: Callable[..., DealSnapshot]
    ) -> None:
        assert tracker.check_hygiene(make_deal(amount=0)).missing_fields == ["Amount"]


class TestHygieneStatus:
    """Commitment lifecycle and escalation."""

    def test_old_deal_without_commitment_is_escalated(
        self, tracker: ComplianceTracker, make_deal: Callable[..., DealSnapshot], as_of: date
    ) -> None:
        deal = make_deal(products=None, created_at=_at(as_of - timedelta(days=10)))
        result = tracker.determine_hygiene_status(deal, None, as_of)

        assert result.status == HygieneStatus.ESCALATED
        assert result.days_old == 10
        assert not result.is_new_deal
        assert result.reason == "Missing required fields: Products. Action required."

    def test_new_deal_without_commitment_is_pending(
        self, tracker: ComplianceTracker, make_deal: Callable[..., DealSnapshot], as_of: date
    ) -> None:
        deal = make_deal(products=None, created_at=_at(as_of - timedelta(days=3)))
        result = tracker.determine_hygiene_status(deal, None, as_of)

        assert result.status == HygieneStatus.PENDING
        assert result.is_new_deal
        assert result.reason == "New deal missing: Products. Please set a date to complete."

    def test_grace_period_boundary_is_inclusive(
        self, tracker: ComplianceTracker, make_deal: Callable[..., DealSnapshot], as_of: date
    ) -> None:
        seven = make_deal(products=None, created_at=_at(as_of - timedelta(days=7)))
        eight = make_deal(products=None, created_at=_at(as_of - timedelta(days=8)))
        assert tracker.determine_hygiene_status(seven, None, as_of).status == HygieneStatus.PENDING
        assert tracker.determine_hygiene_status(eight, None, as_of).status == HygieneStatus.ESCALATED

    def test_unknown_creation_date_is_not_new(
        self, tracker: ComplianceTracker, make_deal: Callable[..., DealSnapshot], as_of: date
    ) -> None:
        deal = make_deal(products=None, created_at=None)
        result = tracker.determine_hygiene_status(deal, None, as_of)
        assert result.status == HygieneStatus.ESCALATED
        assert result.days_old is None

    def test_compliant_deal_ignores_commitment(
        self, tracker: ComplianceTracker, make_deal: Callable[..., DealSnapshot], as_of: date
    ) -> None:
        result = tracker.determine_hygiene_status(
            make_deal(), _commitment(as_of - timedelta(days=5)), as_of
        )
        assert result.status == HygieneStatus.COMPLIANT
        assert result.reason == ""

    def test_pending_commitment_countdown(
        self, tracker: ComplianceTracker, make_deal: Callable[..., DealSnapshot], as_of: date
    ) -> None:
        deal = make_deal(products=None)

        today = tracker.determine_hygiene_status(deal, _commitment(as_of), as_of)
        tomorrow = tracker.determine_hygiene_status(
            deal, _commitment(as_of + timedelta(days=1)), as_of
        )
        later = tracker.determine_hygiene_status(deal, _commitment(as_of + timedelta(days=3)), as_of)

        assert today.status == HygieneStatus.PENDING
        assert today.reason == "Missing: Products. Due today."
        assert tomorrow.reason == "Missing: Products. Due tomorrow."
        assert later.reason == "Missing: Products. Due in 3 days."
        assert later.commitment_date == as_of + timedelta(days=3)

    def test_lapsed_commitment_is_escalated(
        self, tracker: ComplianceTracker, make_deal: Callable[..., DealSnapshot], as_of: date
    ) -> None:
        deal = make_deal(products=None)
        result = tracker.determine_hygiene_status(
            deal, _commitment(as_of - timedelta(days=2)), as_of
        )
        assert result.status == HygieneStatus.ESCALATED
        assert result.reason == "OVERDUE by 2 days: Still missing Products."

    def test_fulfilled_commitment_with_gap_is_escalated(
        self, tracker: ComplianceTracker, make_deal: Callable[..., DealSnapshot], as_of: date
    ) -> None:
        deal = make_deal(products=None)
        commitment = _commitment(as_of + timedelta(days=5), CommitmentStatus.FULFILLED)
        result = tracker.determine_hygiene_status(deal, commitment, as_of)
        assert result.status == HygieneStatus.ESCALATED
        assert result.reason == "Commitment marked complete but still missing Products."

    def test_commitment_state_transitions(self, tracker: ComplianceTracker, as_of: date) -> None:
        assert tracker.commitment_state(_commitment(as_of), as_of) == CommitmentStatus.PENDING
        assert (
            tracker.commitment_state(_commitment(as_of - timedelta(days=1)), as_of)
            == CommitmentStatus.EXPIRED
        )
        fulfilled = _commitment(as_of - timedelta(days=1), CommitmentStatus.FULFILLED)
        assert tracker.commitment_state(fulfilled, as_of) == CommitmentStatus.FULFILLED


class TestNextStepCompliance:
    def test_overdue_is_checked_before_missing(
        self, tracker: ComplianceTracker, as_of: date
    ) -> None:
        result = tracker.check_next_step_compliance(
            None, as_of - timedelta(days=1), NextStepStatus.DATE_FOUND, as_of
        )
        assert result.status == NextStepComplianceStatus.OVERDUE
        assert result.days_overdue == 1
        assert result.reason == "Next step is 1 day overdue. Update or complete it."

    def test_missing_next_step(self, tracker: ComplianceTracker, as_of: date) -> None:
        result = tracker.check_next_step_compliance("", None, None, as_of)
        assert result.status == NextStepComplianceStatus.MISSING
        assert result.days_overdue is None

    def test_string_status_is_accepted(self, tracker: ComplianceTracker, as_of: date) -> None:
        result = tracker.check_next_step_compliance(
            "Call", as_of - timedelta(days=4), "date_inferred", as_of
        )
        assert result.status == NextStepComplianceStatus.OVERDUE
        assert result.days_overdue == 4

    def test_hyphenated_status_is_accepted(self, tracker: ComplianceTracker, as_of: date) -> None:
        result = tracker.check_next_step_compliance(
            "Call", as_of - timedelta(days=4), "Date-Found", as_of
        )
        assert result.status == NextStepComplianceStatus.OVERDUE
        assert result.days_overdue == 4

    def test_unknown_status_is_never_overdue(self, tracker: ComplianceTracker, as_of: date) -> None:
        result = tracker.check_next_step_compliance(
            "Call", as_of - timedelta(days=4), "someday", as_of
        )
        assert result.status == NextStepComplianceStatus.COMPLIANT

    def test_deal_wrapper(
        self, tracker: ComplianceTracker, make_deal: Callable[..., DealSnapshot], as_of: date
    ) -> None:
        assert tracker.check_deal_next_step(make_deal(), as_of).status == (
            NextStepComplianceStatus.COMPLIANT
        )


class TestOverdueTasks:
    def test_orders_most_overdue_first(self, tracker: ComplianceTracker, as_of: date) -> None:
        tasks = [
            TaskSnapshot(id="task-c", subject="Recap", due_at=_at(as_of - timedelta(days=3))),
            TaskSnapshot(id="task-b", subject="Pricing", due_at=_at(as_of - timedelta(days=10))),
            TaskSnapshot(id="task-a", subject=None, due_at=_at(as_of - timedelta(days=10))),
            TaskSnapshot(
                id="task-done",
                status="Completed",
                due_at=_at(as_of - timedelta(days=20)),
            ),
            TaskSnapshot(id="task-undated", subject="Someday"),
            TaskSnapshot(id="task-future", due_at=_at(as_of + timedelta(days=2))),
            TaskSnapshot(id="task-today", due_at=_at(as_of)),
        ]

        result = tracker.check_overdue_tasks(tasks, as_of)

        assert [t.task_id for t in result.overdue_tasks] == ["task-a", "task-b", "task-c"]
        assert result.overdue_tasks[0].subject == "Untitled Task"
        assert result.overdue_count == 3
        assert result.oldest_overdue_days == 10
        assert result.is_critical

    def test_no_overdue_tasks(self, tracker: ComplianceTracker, as_of: date) -> None:
        result = tracker.check_overdue_tasks([], as_of)
        assert result.overdue_count == 0
        assert result.oldest_overdue_days == 0
        assert not result.is_critical

    def test_seven_days_is_not_critical(self, tracker: ComplianceTracker, as_of: date) -> None:
        tasks = [TaskSnapshot(id="t", due_at=_at(as_of - timedelta(days=7)))]
        assert not tracker.check_overdue_tasks(tasks, as_of).is_critical


class TestStalledDeals:
    """Tiers by business days since last activity."""

    def _old_deal(self, make_deal: Callable[..., DealSnapshot], **overrides) -> DealSnapshot:
        return make_deal(created_at=datetime(2025, 1, 6, 9, 0), **overrides)

    def test_watch_warning_critical(
        self, tracker: ComplianceTracker, make_deal: Callable[..., DealSnapshot], as_of: date
    ) -> None:
        watch = self._old_deal(make_deal, last_activity_at=datetime(2025, 3, 5, 9, 0))
        warning = self._old_deal(make_deal, last_activity_at=datetime(2025, 2, 27, 9, 0))
        critical = self._old_deal(make_deal, last_activity_at=datetime(2025, 2, 24, 9, 0))

        assert tracker.check_deal_staleness(watch, as_of).severity == StalledSeverity.WATCH
        assert tracker.check_deal_staleness(warning, as_of).severity == StalledSeverity.WARNING
        result = tracker.check_deal_staleness(critical, as_of)
        assert result.is_stalled
        assert result.severity == StalledSeverity.CRITICAL
        assert result.days_since_activity == 15

    def test_recent_activity_is_not_stalled(
        self, tracker: ComplianceTracker, make_deal: Callable[..., DealSnapshot], as_of: date
    ) -> None:
        deal = self._old_deal(make_deal, last_activity_at=datetime(2025, 3, 6, 9, 0))
        result = tracker.check_deal_staleness(deal, as_of)
        assert not result.is_stalled
        assert result.days_since_activity == 7

    def test_scheduled_activity_suppresses(
        self, tracker: ComplianceTracker, make_deal: Callable[..., DealSnapshot], as_of: date
    ) -> None:
        deal = self._old_deal(
            make_deal,
            last_activity_at=datetime(2025, 2, 24, 9, 0),
            next_activity_at=_at(as_of + timedelta(days=2)),
        )
        assert not tracker.check_deal_staleness(deal, as_of).is_stalled

    def test_young_deal_is_not_stalled(
        self, tracker: ComplianceTracker, make_deal: Callable[..., DealSnapshot], as_of: date
    ) -> None:
        deal = make_deal(created_at=_at(as_of - timedelta(days=7)), last_activity_at=None)
        result = tracker.check_deal_staleness(deal, as_of)
        assert not result.is_stalled
        assert result.deal_age_days == 5

    def test_no_activity_uses_deal_age(
        self, tracker: ComplianceTracker, make_deal: Callable[..., DealSnapshot], as_of: date
    ) -> None:
        deal = make_deal(created_at=_at(as_of - timedelta(weeks=4)), last_activity_at=None)
        result = tracker.check_deal_staleness(deal, as_of)
        assert result.is_stalled
        assert result.days_since_activity == 20
        assert result.severity == StalledSeverity.CRITICAL

    def test_aggravating_flags(
        self, tracker: ComplianceTracker, make_deal: Callable[..., DealSnapshot], as_of: date
    ) -> None:
        deal = self._old_deal(
            make_deal,
            last_activity_at=datetime(2025, 2, 24, 9, 0),
            close_date=as_of - timedelta(days=1),
            next_step=None,
        )
        result = tracker.check_deal_staleness(deal, as_of)
        assert result.close_date_in_past
        assert not result.close_date_within_window
        assert result.no_next_step
        assert not result.next_step_overdue

    def test_missing_creation_date(
        self, tracker: ComplianceTracker, make_deal: Callable[..., DealSnapshot], as_of: date
    ) -> None:
        assert not tracker.check_deal_staleness(make_deal(created_at=None), as_of).is_stalled
