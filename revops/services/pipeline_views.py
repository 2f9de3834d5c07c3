"""Dashboard, queue and digest payloads built from one engine pass.

Live dashboards, queue pages and the scheduled digest all go through these
builders so they compute the same facts the same way. Everything here is
synchronous and pure; loading happens in ``pipeline_data``.
"""

from collections.abc import Sequence
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field

from revops.engine.aggregator import ExceptionAggregator
from revops.engine.calendar_math import (
    QuarterProgress,
    QuarterWindow,
    quarter_progress,
    to_date,
)
from revops.engine.compliance import ComplianceTracker
from revops.engine.forecast import ForecastEngine
from revops.engine.models import (
    AEStatusRollup,
    DealSnapshot,
    ExceptionCounts,
    ExceptionRecord,
    ForecastComparison,
    HygieneCommitment,
    HygieneStatus,
    HygieneStatusResult,
    NextStepCheckResult,
    NextStepComplianceStatus,
    QuarterProjection,
    RiskAssessment,
    RiskLevel,
    StageForecast,
    StalledDealResult,
    StalledSeverity,
)
from revops.engine.policy import Policy
from revops.engine.risk import RiskClassifier
from revops.engine.stage_registry import StageRegistry
from revops.services.pipeline_data import owner_display_name

MAX_DASHBOARD_EXCEPTIONS = 50

_SEVERITY_RANK = {
    StalledSeverity.CRITICAL: 0,
    StalledSeverity.WARNING: 1,
    StalledSeverity.WATCH: 2,
}


class PipelineEngine:
    """All engine components wired to one registry and policy."""

    def __init__(self, registry: StageRegistry, policy: Policy):
        self.registry = registry
        self.policy = policy
        self.classifier = RiskClassifier(registry, policy)
        self.tracker = ComplianceTracker(policy)
        self.forecast = ForecastEngine(registry, policy)
        self.aggregator = ExceptionAggregator(self.classifier, self.tracker, policy)


# Response models


class OwnerStatus(AEStatusRollup):
    name: str
    email: str | None = None


class DailySummary(BaseModel):
    as_of: date
    total_active_deals: int
    total_exceptions: int
    counts: ExceptionCounts
    has_critical_alert: bool
    critical_alert_message: str | None = None
    ae_statuses: list[OwnerStatus] = Field(default_factory=list)
    exceptions: list[ExceptionRecord] = Field(default_factory=list)


class OwnerProjection(BaseModel):
    owner_id: str
    name: str
    projection: QuarterProjection


class QuarterlySummary(BaseModel):
    quarter: QuarterWindow
    progress: QuarterProgress
    team: QuarterProjection
    owners: list[OwnerProjection] = Field(default_factory=list)
    win_rate: float


class AEForecast(BaseModel):
    owner_id: str
    name: str
    quarter: QuarterWindow
    quota: float
    comparison: ForecastComparison
    stage_forecast: StageForecast


class QueueItem(BaseModel):
    deal_id: str
    deal_name: str | None = None
    owner_id: str | None = None
    amount: float | None = None
    stage_name: str
    close_date: date | None = None


class AtRiskItem(QueueItem):
    assessment: RiskAssessment


class HygieneItem(QueueItem):
    hygiene: HygieneStatusResult


class NextStepItem(QueueItem):
    next_step: str | None = None
    next_step_due_date: date | None = None
    check: NextStepCheckResult


class StalledItem(QueueItem):
    stalled: StalledDealResult


def _queue_fields(engine: PipelineEngine, deal: DealSnapshot) -> dict[str, Any]:
    return {
        "deal_id": deal.id,
        "deal_name": deal.deal_name,
        "owner_id": deal.owner_id,
        "amount": deal.amount,
        "stage_name": engine.registry.display_name(deal.stage_id),
        "close_date": deal.close_date,
    }


def _open_deals(engine: PipelineEngine, deals: Sequence[DealSnapshot]) -> list[DealSnapshot]:
    return [d for d in deals if not engine.registry.is_terminal(d.stage_id)]


# Builders


def build_daily_summary(
    engine: PipelineEngine,
    deals: Sequence[DealSnapshot],
    owners: Sequence[dict[str, Any]],
    as_of: date | datetime,
    limit: int = MAX_DASHBOARD_EXCEPTIONS,
) -> DailySummary:
    """Exceptions and per-AE status for the daily dashboard.

    Args:
        engine: Engine components for this run.
        deals: Deals for the listed owners.
        owners: Owner rows (id, names, email); every owner gets a status.
        as_of: Reference date.
        limit: Maximum number of exception records returned.

    Returns:
        DailySummary with exceptions already sorted and ranked.
    """
    owner_ids = [str(o["id"]) for o in owners]
    result = engine.aggregator.aggregate(_open_deals(engine, deals), as_of, owner_ids=owner_ids)

    statuses = [
        OwnerStatus(
            **result.per_owner[str(owner["id"])].model_dump(),
            name=owner_display_name(owner),
            email=owner.get("email"),
        )
        for owner in owners
    ]

    return DailySummary(
        as_of=to_date(as_of),
        total_active_deals=result.total_active_deals,
        total_exceptions=len(result.exceptions),
        counts=result.counts,
        has_critical_alert=result.has_critical_alert,
        critical_alert_message=result.critical_alert_message,
        ae_statuses=statuses,
        exceptions=result.exceptions[:limit],
    )


def build_quarterly_summary(
    engine: PipelineEngine,
    deals: Sequence[DealSnapshot],
    owners: Sequence[dict[str, Any]],
    quotas: dict[str, float],
    window: QuarterWindow,
    as_of: date | datetime,
) -> QuarterlySummary:
    """Team and per-AE quarter projections.

    Owners without a quota entry use the policy default. The team quota is
    the sum of the owner quotas.
    """
    by_owner: dict[str, list[DealSnapshot]] = {str(o["id"]): [] for o in owners}
    for deal in deals:
        if deal.owner_id in by_owner:
            by_owner[deal.owner_id].append(deal)

    owner_rows: list[OwnerProjection] = []
    team_quota = 0.0
    for owner in owners:
        owner_id = str(owner["id"])
        quota = quotas.get(owner_id, engine.policy.default_quota)
        team_quota += quota
        owner_rows.append(
            OwnerProjection(
                owner_id=owner_id,
                name=owner_display_name(owner),
                projection=engine.forecast.quarter_projection(
                    by_owner[owner_id], quota, window, as_of
                ),
            )
        )

    team_deals = [d for owner_deals in by_owner.values() for d in owner_deals]
    if not owners:
        team_quota = engine.policy.default_quota

    return QuarterlySummary(
        quarter=window,
        progress=quarter_progress(window, as_of),
        team=engine.forecast.quarter_projection(team_deals, team_quota, window, as_of),
        owners=owner_rows,
        win_rate=engine.forecast.win_rate(team_deals, window),
    )


def build_ae_forecast(
    engine: PipelineEngine,
    deals: Sequence[DealSnapshot],
    owner: dict[str, Any],
    quota: float,
    window: QuarterWindow,
    as_of: date | datetime,
) -> AEForecast:
    """Forecast-vs-actual series and funnel targets for one AE."""
    return AEForecast(
        owner_id=str(owner["id"]),
        name=owner_display_name(owner),
        quarter=window,
        quota=quota,
        comparison=engine.forecast.forecast_vs_actual(deals, quota, window, as_of),
        stage_forecast=engine.forecast.stage_forecast(quota),
    )


def build_at_risk_queue(
    engine: PipelineEngine,
    deals: Sequence[DealSnapshot],
    as_of: date | datetime,
) -> list[AtRiskItem]:
    """Open deals that are not healthy, stale first, then by amount."""
    items = []
    for deal in _open_deals(engine, deals):
        assessment = engine.classifier.assess(deal, as_of)
        if assessment.level == RiskLevel.HEALTHY:
            continue
        items.append(AtRiskItem(**_queue_fields(engine, deal), assessment=assessment))

    items.sort(
        key=lambda i: (
            i.assessment.level != RiskLevel.STALE,
            -(i.amount or 0.0),
            i.deal_id,
        )
    )
    return items


def build_hygiene_queue(
    engine: PipelineEngine,
    deals: Sequence[DealSnapshot],
    commitments: dict[str, HygieneCommitment],
    as_of: date | datetime,
) -> list[HygieneItem]:
    """Open deals with hygiene gaps, escalated first."""
    items = []
    for deal in _open_deals(engine, deals):
        result = engine.tracker.determine_hygiene_status(deal, commitments.get(deal.id), as_of)
        if result.status == HygieneStatus.COMPLIANT:
            continue
        items.append(HygieneItem(**_queue_fields(engine, deal), hygiene=result))

    items.sort(
        key=lambda i: (
            i.hygiene.status != HygieneStatus.ESCALATED,
            -len(i.hygiene.missing_fields),
            i.deal_id,
        )
    )
    return items


def build_next_step_queue(
    engine: PipelineEngine,
    deals: Sequence[DealSnapshot],
    as_of: date | datetime,
) -> list[NextStepItem]:
    """Open deals whose next step is missing or overdue, most overdue first."""
    items = []
    for deal in _open_deals(engine, deals):
        check = engine.tracker.check_deal_next_step(deal, as_of)
        if check.status == NextStepComplianceStatus.COMPLIANT:
            continue
        items.append(
            NextStepItem(
                **_queue_fields(engine, deal),
                next_step=deal.next_step,
                next_step_due_date=deal.next_step_due_date,
                check=check,
            )
        )

    items.sort(
        key=lambda i: (
            i.check.status != NextStepComplianceStatus.OVERDUE,
            -(i.check.days_overdue or 0),
            -(i.amount or 0.0),
            i.deal_id,
        )
    )
    return items


def build_stalled_queue(
    engine: PipelineEngine,
    deals: Sequence[DealSnapshot],
    as_of: date | datetime,
) -> list[StalledItem]:
    """Open deals gone quiet, critical first, then longest inactive."""
    items = []
    for deal in _open_deals(engine, deals):
        result = engine.tracker.check_deal_staleness(deal, as_of)
        if not result.is_stalled:
            continue
        items.append(StalledItem(**_queue_fields(engine, deal), stalled=result))

    items.sort(
        key=lambda i: (
            _SEVERITY_RANK.get(i.stalled.severity, len(_SEVERITY_RANK)),
            -i.stalled.days_since_activity,
            i.deal_id,
        )
    )
    return items
