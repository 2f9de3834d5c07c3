"""Quota pacing and stage-weighted pipeline forecasts.

Weekly targets come from a 13-week ramp on the Policy. The default ramp is
back-loaded for B2B deal cycles of about six weeks: weeks 1-4 build pipeline
(18% of quota), weeks 5-9 are the main closing phase (65% cumulative) and
weeks 10-13 are the quarter push.

Cumulative targets are computed from the running share of the ramp and then
rounded, so the series is non-decreasing and always ends exactly on the
target. Weekly targets are the differences between consecutive cumulatives.
"""

import logging
import math
from datetime import date, datetime
from collections.abc import Sequence

from revops.engine.calendar_math import (
    WEEKS_PER_QUARTER,
    QuarterWindow,
    quarter_progress,
    quarter_weeks,
    to_date,
    week_number_in_quarter,
)
from revops.engine.models import (
    CoverageStatus,
    DealSnapshot,
    ForecastActualWeek,
    ForecastComparison,
    ForecastWeek,
    QuarterProjection,
    StageForecast,
    StageTargets,
    StageWeek,
    VarianceResult,
    VarianceStatus,
)
from revops.engine.policy import DEFAULT_POLICY, Policy
from revops.engine.stage_registry import StageRegistry

logger = logging.getLogger(__name__)

# Absorbs float noise such as 6 / 0.6 == 10.000000000000002 before ceil().
_CEIL_EPSILON = 1e-9


def _ceil(value: float) -> int:
    return max(0, math.ceil(value - _CEIL_EPSILON))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _cumulative_shares(weights: Sequence[float]) -> list[float]:
    """Running share of the ramp at the end of each week, normalized to 1."""
    total = sum(weights)
    running = 0.0
    shares: list[float] = []
    for weight in weights:
        running += weight
        shares.append(running / total)
    shares[-1] = 1.0
    return shares


def _amount(deal: DealSnapshot) -> float:
    return deal.amount or 0.0


class ForecastEngine:
    """Weekly quota targets, funnel targets, variance and pipeline coverage."""

    def __init__(self, registry: StageRegistry, policy: Policy = DEFAULT_POLICY):
        self._registry = registry
        self._policy = policy

    # Quota ramp

    def weekly_forecast(
        self,
        target: float,
        window: QuarterWindow | None = None,
    ) -> list[ForecastWeek]:
        """Split a quarterly target into 13 weekly cumulative targets.

        Args:
            target: Quota or target amount for the quarter.
            window: Optional quarter window used to attach week boundaries.

        Returns:
            Thirteen ForecastWeek entries, the last cumulative equal to ``target``.
        """
        target = max(target, 0.0)
        shares = _cumulative_shares(self._policy.weekly_ramp)
        bounds = quarter_weeks(window) if window is not None else None

        weeks: list[ForecastWeek] = []
        previous = 0.0
        for index, share in enumerate(shares):
            if index == WEEKS_PER_QUARTER - 1:
                cumulative = target
            else:
                cumulative = min(round(target * share, 2), target)
            weeks.append(
                ForecastWeek(
                    week_number=index + 1,
                    weekly_target=round(cumulative - previous, 2),
                    cumulative_target=cumulative,
                    percent_of_quota=round(share * 100, 2) if target > 0 else 0.0,
                    week_start=bounds[index].week_start if bounds else None,
                    week_end=bounds[index].week_end if bounds else None,
                )
            )
            previous = cumulative
        return weeks

    def forecast_for_week(self, target: float, week_number: int) -> float:
        """Cumulative target at the end of a week; 0 for weeks outside 1-13."""
        if week_number < 1 or week_number > WEEKS_PER_QUARTER:
            return 0.0
        return self.weekly_forecast(target)[week_number - 1].cumulative_target

    # Funnel

    def stage_targets(self, target: float, avg_deal_size: float | None = None) -> StageTargets:
        """Back-calculate deals, proposals, demos and SQLs needed for a target."""
        rates = self._policy.conversion_rates
        if not avg_deal_size or avg_deal_size <= 0:
            avg_deal_size = self._policy.default_avg_deal_size

        deals_needed = _ceil(target / avg_deal_size)
        proposals_needed = _ceil(deals_needed / rates.proposal_to_close)
        demos_needed = _ceil(proposals_needed / rates.demo_to_proposal)
        sqls_needed = _ceil(demos_needed / rates.sql_to_demo)

        return StageTargets(
            deals_needed=deals_needed,
            proposals_needed=proposals_needed,
            demos_needed=demos_needed,
            sqls_needed=sqls_needed,
            avg_deal_size=avg_deal_size,
        )

    def _stage_ramp(self, stage: str, total: int) -> list[StageWeek]:
        shares = _cumulative_shares(self._policy.stage_ramps[stage])
        weeks: list[StageWeek] = []
        previous = 0
        for index, share in enumerate(shares):
            cumulative = total if index == WEEKS_PER_QUARTER - 1 else _round_half_up(total * share)
            weeks.append(
                StageWeek(
                    week_number=index + 1,
                    weekly_target=cumulative - previous,
                    cumulative_target=cumulative,
                )
            )
            previous = cumulative
        return weeks

    def stage_forecast(self, target: float, avg_deal_size: float | None = None) -> StageForecast:
        """Funnel targets with a 13-week integer ramp per stage."""
        targets = self.stage_targets(target, avg_deal_size)
        return StageForecast(
            targets=targets,
            sql=self._stage_ramp("sql", targets.sqls_needed),
            demo=self._stage_ramp("demo", targets.demos_needed),
            proposal=self._stage_ramp("proposal", targets.proposals_needed),
        )

    # Variance and coverage

    def variance(self, actual: float, target: float) -> VarianceResult:
        """Compare actual against target.

        ``ahead`` at or above 100% of target, ``behind`` below the policy
        cutoff, ``on_pace`` in between. With no target there is nothing to be
        behind on: the result is ``ahead`` when anything closed, else ``on_pace``.
        """
        variance = actual - target
        if target <= 0:
            status = VarianceStatus.AHEAD if actual > 0 else VarianceStatus.ON_PACE
            return VarianceResult(variance=variance, percent_of_forecast=0.0, status=status)

        percent = actual / target * 100
        if percent >= 100:
            status = VarianceStatus.AHEAD
        elif percent < self._policy.behind_cutoff_percent:
            status = VarianceStatus.BEHIND
        else:
            status = VarianceStatus.ON_PACE
        return VarianceResult(variance=variance, percent_of_forecast=percent, status=status)

    def weighted_pipeline_value(
        self,
        open_deals: Sequence[DealSnapshot],
        window: QuarterWindow | None = None,
    ) -> float:
        """Sum of amount x stage weight over open deals.

        Closed and excluded stages never count. When ``window`` is given, only
        deals closing inside it count.
        """
        total = 0.0
        for deal in open_deals:
            if window is not None:
                if not self._registry.is_open_pipeline(deal.stage_id, deal.close_date, window):
                    continue
            elif not self._registry.is_open(deal.stage_id):
                continue
            total += _amount(deal) * self._registry.weight(deal.stage_id)
        return round(total, 2)

    def coverage_ratio(self, open_value: float, remaining_quota: float) -> float:
        """Open pipeline divided by remaining quota.

        Once quota is met the ratio is the policy sentinel if there is still
        pipeline, and 0 if there is none.
        """
        if remaining_quota > 0:
            return open_value / remaining_quota
        return self._policy.coverage_sentinel if open_value > 0 else 0.0

    def coverage_status(self, coverage: float) -> CoverageStatus:
        if coverage >= self._policy.coverage_healthy_ratio:
            return CoverageStatus.HEALTHY
        if coverage >= self._policy.coverage_watch_ratio:
            return CoverageStatus.WATCH
        return CoverageStatus.AT_RISK

    # Quarter views

    def _closed_won_in(
        self, deals: Sequence[DealSnapshot], window: QuarterWindow
    ) -> list[DealSnapshot]:
        return [
            d
            for d in deals
            if self._registry.is_closed_won(d.stage_id)
            and d.close_date is not None
            and window.contains(d.close_date)
        ]

    def forecast_vs_actual(
        self,
        deals: Sequence[DealSnapshot],
        target: float,
        window: QuarterWindow,
        as_of: date | datetime,
    ) -> ForecastComparison:
        """Weekly closed-won revenue against the cumulative forecast.

        Closed-won deals are bucketed by close date. Weeks that start after
        ``as_of`` carry no cumulative actual.
        """
        forecast = self.weekly_forecast(target, window)
        won = self._closed_won_in(deals, window)

        weekly_actuals = [0.0] * WEEKS_PER_QUARTER
        for deal in won:
            week = week_number_in_quarter(deal.close_date, window.start_date)
            weekly_actuals[week - 1] += _amount(deal)

        today = to_date(as_of)
        running = 0.0
        weeks: list[ForecastActualWeek] = []
        for entry, actual in zip(forecast, weekly_actuals):
            running += actual
            is_future = entry.week_start > today
            weeks.append(
                ForecastActualWeek(
                    week_number=entry.week_number,
                    week_start=entry.week_start,
                    week_end=entry.week_end,
                    forecast_cumulative=entry.cumulative_target,
                    actual_weekly=round(actual, 2),
                    actual_cumulative=None if is_future else round(running, 2),
                    is_future=is_future,
                )
            )

        current_week = week_number_in_quarter(today, window.start_date)
        actual_to_date = round(sum(_amount(d) for d in won), 2)
        forecast_to_date = forecast[current_week - 1].cumulative_target

        return ForecastComparison(
            weeks=weeks,
            current_week=current_week,
            actual_to_date=actual_to_date,
            forecast_to_date=forecast_to_date,
            variance=self.variance(actual_to_date, forecast_to_date),
        )

    def quarter_projection(
        self,
        deals: Sequence[DealSnapshot],
        quota: float,
        window: QuarterWindow,
        as_of: date | datetime,
    ) -> QuarterProjection:
        """Closed-won plus weighted open pipeline against one quota."""
        won = self._closed_won_in(deals, window)
        open_deals = [
            d
            for d in deals
            if self._registry.is_open_pipeline(d.stage_id, d.close_date, window)
        ]

        closed_won = round(sum(_amount(d) for d in won), 2)
        open_pipeline = round(sum(_amount(d) for d in open_deals), 2)
        weighted = self.weighted_pipeline_value(open_deals, window)
        remaining = max(0.0, quota - closed_won)
        coverage = self.coverage_ratio(open_pipeline, remaining)
        if remaining <= 0:
            coverage_status = CoverageStatus.HEALTHY
        else:
            coverage_status = self.coverage_status(coverage)

        progress = quarter_progress(window, as_of)
        expected_by_now = round(quota * progress.percent_complete / 100, 2)
        pace = round(closed_won - expected_by_now, 2)

        return QuarterProjection(
            quota=quota,
            closed_won=closed_won,
            open_pipeline=open_pipeline,
            weighted_pipeline=weighted,
            projected_total=round(closed_won + weighted, 2),
            remaining_quota=round(remaining, 2),
            coverage_ratio=round(coverage, 2),
            coverage_status=coverage_status,
            percent_to_quota=round(closed_won / quota * 100, 2) if quota > 0 else 0.0,
            expected_by_now=expected_by_now,
            pace=pace,
            on_track=pace >= 0,
            open_deal_count=len(open_deals),
            closed_won_count=len(won),
        )

    def win_rate(self, deals: Sequence[DealSnapshot], window: QuarterWindow | None = None) -> float:
        """Closed-won share of closed deals, as a percentage (0 with none closed)."""
        won = lost = 0
        for deal in deals:
            if window is not None and (deal.close_date is None or not window.contains(deal.close_date)):
                continue
            if self._registry.is_closed_won(deal.stage_id):
                won += 1
            elif self._registry.is_closed_lost(deal.stage_id):
                lost += 1
        if won + lost == 0:
            return 0.0
        return round(won / (won + lost) * 100, 2)
