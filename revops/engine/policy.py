"""Tunable thresholds for the pipeline engine.

All fallback constants that used to be scattered across dashboard handlers
(default quota, high-value cutoff, drought windows, stage weights, ramps)
live on a single frozen ``Policy`` model. Every engine component takes a
Policy in its constructor; ``revops.core.config.get_policy`` builds one from
environment overrides.
"""

import math
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

RAMP_LENGTH = 13


class StageCategory(str, Enum):
    """Coarse stage grouping used for dwell-time thresholds."""

    EARLY = "early"
    MID = "mid"
    LATE = "late"
    CLOSED = "closed"


class StageDwellPolicy(BaseModel):
    """Expected time in a stage category, in business days.

    A deal whose time in stage reaches ``at_risk`` gets a stage_age factor;
    reaching ``stale`` makes that factor severe on its own.
    """

    model_config = ConfigDict(frozen=True)

    expected: int = Field(..., ge=1)
    at_risk: int = Field(..., ge=1)
    stale: int = Field(..., ge=1)

    @model_validator(mode="after")
    def _check_order(self) -> "StageDwellPolicy":
        if not self.expected <= self.at_risk <= self.stale:
            raise ValueError("Dwell thresholds must satisfy expected <= at_risk <= stale")
        return self


class ConversionRates(BaseModel):
    """Funnel conversion rates used to back-calculate stage targets."""

    model_config = ConfigDict(frozen=True)

    sql_to_demo: float = Field(0.33, gt=0, le=1)
    demo_to_proposal: float = Field(0.60, gt=0, le=1)
    proposal_to_close: float = Field(0.50, gt=0, le=1)


# Roughly 1.5x / 2x the typical B2B dwell time, converted to business days.
DEFAULT_STAGE_DWELL: dict[StageCategory, StageDwellPolicy] = {
    StageCategory.EARLY: StageDwellPolicy(expected=15, at_risk=23, stale=30),
    StageCategory.MID: StageDwellPolicy(expected=10, at_risk=15, stale=20),
    StageCategory.LATE: StageDwellPolicy(expected=21, at_risk=32, stale=43),
}

# Share of quarterly quota expected to close in each week: pipeline building
# in weeks 1-4, closing in 5-9, quarter push in 10-13.
DEFAULT_WEEKLY_RAMP: tuple[float, ...] = (
    0.03, 0.04, 0.05, 0.06,
    0.08, 0.09, 0.10, 0.10, 0.10,
    0.09, 0.09, 0.09, 0.08,
)

DEFAULT_STAGE_RAMPS: dict[str, tuple[float, ...]] = {
    # SQLs are front-loaded to fill pipeline early
    "sql": (0.09, 0.09, 0.09, 0.09, 0.08, 0.08, 0.08, 0.07, 0.07, 0.06, 0.05, 0.04, 0.03),
    # Demos lag SQLs by about two weeks
    "demo": (0.05, 0.06, 0.07, 0.08, 0.09, 0.09, 0.09, 0.09, 0.09, 0.08, 0.07, 0.06, 0.05),
    # Proposals lag demos by about two weeks
    "proposal": (0.04, 0.05, 0.06, 0.07, 0.08, 0.09, 0.09, 0.10, 0.10, 0.09, 0.08, 0.07, 0.06),
}

DEFAULT_STAGE_WEIGHTS: dict[str, float] = {
    "sql": 0.1,
    "mql": 0.05,
    "qualified": 0.1,
    "discovery": 0.15,
    "demo scheduled": 0.2,
    "demo - scheduled": 0.2,
    "demo completed": 0.4,
    "demo - completed": 0.4,
    "proposal": 0.6,
    "proposal sent": 0.6,
    "negotiation": 0.8,
    "contract sent": 0.85,
    "legal review": 0.85,
    "procurement": 0.85,
}

# Ordered substring rules: every term must appear in the lowercased label.
DEFAULT_STAGE_WEIGHT_RULES: tuple[tuple[tuple[str, ...], float], ...] = (
    (("demo", "completed"), 0.4),
    (("demo", "scheduled"), 0.2),
    (("demo",), 0.3),
    (("proposal",), 0.6),
    (("negotiat",), 0.8),
    (("contract",), 0.85),
    (("legal",), 0.85),
    (("procurement",), 0.85),
    (("sql",), 0.1),
)

DEFAULT_HYGIENE_FIELDS: tuple[tuple[str, str], ...] = (
    ("deal_substage", "Substage"),
    ("close_date", "Close Date"),
    ("amount", "Amount"),
    ("lead_source", "Lead Source"),
    ("products", "Products"),
)


def _check_ramp(weights: tuple[float, ...], exhaustive: bool = True) -> tuple[float, ...]:
    if len(weights) != RAMP_LENGTH:
        raise ValueError(f"Ramp must have exactly {RAMP_LENGTH} weekly weights")
    if any(w < 0 for w in weights):
        raise ValueError("Ramp weights must be non-negative")
    if exhaustive and not math.isclose(sum(weights), 1.0, abs_tol=1e-6):
        raise ValueError("Ramp weights must sum to 1.0")
    if sum(weights) <= 0:
        raise ValueError("Ramp weights must not all be zero")
    return weights


class Policy(BaseModel):
    """Engine policy with documented defaults.

    Day thresholds are business days unless the field name says otherwise.
    """

    model_config = ConfigDict(frozen=True)

    # Risk classification
    activity_drought_days: int = Field(7, ge=0, description="Drought factor fires above this")
    exception_drought_days: int = Field(
        10, ge=0, description="Drought surfaces as an exception (and is severe) at this"
    )
    severe_next_step_overdue_days: int = Field(
        14, ge=1, description="Calendar days overdue that make a next step severe"
    )
    stage_dwell: dict[StageCategory, StageDwellPolicy] = Field(
        default_factory=lambda: dict(DEFAULT_STAGE_DWELL)
    )
    committed_next_step_statuses: frozenset[str] = frozenset({"date_found", "date_inferred"})

    # Exceptions and rollups
    high_value_threshold: float = Field(50_000, ge=0)
    red_overdue_count: int = 3
    red_stale_count: int = 5
    amber_overdue_count: int = 1
    amber_stale_count: int = 2

    # Hygiene and tasks
    hygiene_grace_days: int = Field(7, ge=0, description="Calendar days after creation")
    hygiene_required_fields: tuple[tuple[str, str], ...] = DEFAULT_HYGIENE_FIELDS
    completed_task_statuses: frozenset[str] = frozenset({"completed", "complete"})
    overdue_task_critical_days: int = 7

    # Stalled-deal queue
    stalled_watch_days: int = 7
    stalled_warning_days: int = 10
    stalled_critical_days: int = 14
    stalled_min_age_days: int = 7
    stalled_close_soon_days: int = 14

    # Stage registry
    closed_won_patterns: tuple[str, ...] = ("closedwon", "closed won", "closed-won")
    closed_lost_patterns: tuple[str, ...] = ("closedlost", "closed lost", "closed-lost")
    excluded_patterns: tuple[str, ...] = ("mql", "disqualified", "qualified")
    terminal_patterns: tuple[str, ...] = ("closed", "disqualified", "lost")
    stage_weights: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_STAGE_WEIGHTS))
    stage_weight_rules: tuple[tuple[tuple[str, ...], float], ...] = DEFAULT_STAGE_WEIGHT_RULES
    default_stage_weight: float = Field(0.15, ge=0, le=1)

    # Forecasting
    default_quota: float = Field(100_000, gt=0)
    default_avg_deal_size: float = Field(15_000, gt=0)
    weekly_ramp: tuple[float, ...] = DEFAULT_WEEKLY_RAMP
    stage_ramps: dict[str, tuple[float, ...]] = Field(
        default_factory=lambda: dict(DEFAULT_STAGE_RAMPS)
    )
    conversion_rates: ConversionRates = Field(default_factory=ConversionRates)
    behind_cutoff_percent: float = Field(80.0, ge=0, le=100)
    coverage_sentinel: float = 999.0
    coverage_healthy_ratio: float = 3.0
    coverage_watch_ratio: float = 2.0

    @field_validator("weekly_ramp")
    @classmethod
    def validate_weekly_ramp(cls, v: tuple[float, ...]) -> tuple[float, ...]:
        """Ensure the quota ramp is a full 13-week distribution."""
        return _check_ramp(v)

    @field_validator("stage_ramps")
    @classmethod
    def validate_stage_ramps(cls, v: dict[str, tuple[float, ...]]) -> dict[str, tuple[float, ...]]:
        """Ensure every funnel stage has 13 weekly weights.

        Stage ramps are relative shapes and are normalized when applied, so
        they need not sum to 1.
        """
        missing = {"sql", "demo", "proposal"} - set(v)
        if missing:
            raise ValueError(f"Stage ramps missing: {', '.join(sorted(missing))}")
        return {stage: _check_ramp(tuple(weights), exhaustive=False) for stage, weights in v.items()}

    @field_validator("stage_weights")
    @classmethod
    def validate_stage_weights(cls, v: dict[str, float]) -> dict[str, float]:
        """Lowercase keys and keep weights within [0, 1]."""
        for label, weight in v.items():
            if not 0 <= weight <= 1:
                raise ValueError(f"Stage weight for '{label}' must be within [0, 1]")
        return {label.lower(): weight for label, weight in v.items()}

    @model_validator(mode="after")
    def _check_thresholds(self) -> "Policy":
        if self.exception_drought_days < self.activity_drought_days:
            raise ValueError("exception_drought_days must be >= activity_drought_days")
        missing = set(StageCategory) - {StageCategory.CLOSED} - set(self.stage_dwell)
        if missing:
            raise ValueError("stage_dwell must cover early, mid and late stages")
        return self

    def dwell_for(self, category: StageCategory) -> StageDwellPolicy | None:
        """Return the dwell policy for a category (None for closed stages)."""
        return self.stage_dwell.get(category)


DEFAULT_POLICY = Policy()
