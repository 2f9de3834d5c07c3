"""Pydantic models for pipeline engine inputs and results."""

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from revops.engine.policy import StageCategory


class NextStepStatus(str, Enum):
    DATE_FOUND = "date_found"
    DATE_INFERRED = "date_inferred"
    NO_DATE = "no_date"
    DATE_UNCLEAR = "date_unclear"
    AWAITING_EXTERNAL = "awaiting_external"
    EMPTY = "empty"
    UNPARSEABLE = "unparseable"


class RiskFactorType(str, Enum):
    NO_NEXT_STEP = "no_next_step"
    OVERDUE_NEXT_STEP = "overdue_next_step"
    PAST_CLOSE_DATE = "past_close_date"
    ACTIVITY_DROUGHT = "activity_drought"
    STAGE_AGE = "stage_age"


class RiskLevel(str, Enum):
    HEALTHY = "healthy"
    AT_RISK = "at_risk"
    STALE = "stale"


class CommitmentStatus(str, Enum):
    PENDING = "pending"
    FULFILLED = "fulfilled"
    EXPIRED = "expired"


class HygieneStatus(str, Enum):
    COMPLIANT = "compliant"
    PENDING = "pending"
    ESCALATED = "escalated"


class NextStepComplianceStatus(str, Enum):
    COMPLIANT = "compliant"
    MISSING = "missing"
    OVERDUE = "overdue"


class StalledSeverity(str, Enum):
    WATCH = "watch"
    WARNING = "warning"
    CRITICAL = "critical"


class ExceptionType(str, Enum):
    OVERDUE_NEXT_STEP = "overdue_next_step"
    PAST_CLOSE_DATE = "past_close_date"
    ACTIVITY_DROUGHT = "activity_drought"
    HIGH_VALUE_AT_RISK = "high_value_at_risk"
    NO_NEXT_STEP = "no_next_step"
    STALE_STAGE = "stale_stage"


class VarianceStatus(str, Enum):
    AHEAD = "ahead"
    ON_PACE = "on_pace"
    BEHIND = "behind"


class CoverageStatus(str, Enum):
    HEALTHY = "healthy"
    WATCH = "watch"
    AT_RISK = "at_risk"


class RollupStatus(str, Enum):
    GREEN = "green"
    AMBER = "amber"
    RED = "red"


# Inputs
class DealSnapshot(BaseModel):
    """One deal as seen at a point in time. Every field except ``id`` is optional."""

    model_config = ConfigDict(frozen=True)

    id: str
    deal_name: str | None = None
    amount: float | None = None
    stage_id: str | None = None
    pipeline_id: str | None = None
    close_date: date | None = None
    created_at: datetime | None = None
    last_activity_at: datetime | None = None
    next_activity_at: datetime | None = None
    next_step: str | None = None
    next_step_due_date: date | None = None
    next_step_status: NextStepStatus | None = None
    next_step_confidence: float | None = Field(None, ge=0, le=1)
    next_step_display_message: str | None = None
    stage_entered_at: dict[str, datetime] = Field(default_factory=dict)
    owner_id: str | None = None
    deal_substage: str | None = None
    lead_source: str | None = None
    products: str | None = None
    deal_collaborator: str | None = None


class PipelineStage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    display_order: int = 0
    is_closed: bool | None = None
    probability: float | None = None


class Pipeline(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    stages: list[PipelineStage] = Field(default_factory=list)


class HygieneCommitment(BaseModel):
    model_config = ConfigDict(frozen=True)

    deal_id: str
    commitment_date: date
    status: CommitmentStatus = CommitmentStatus.PENDING


class TaskSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    subject: str | None = None
    status: str | None = None
    due_at: datetime | None = None
    deal_id: str | None = None
    owner_id: str | None = None


# Stage registry
class StageInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    stage_id: str
    display_name: str
    is_closed_won: bool = False
    is_closed_lost: bool = False
    is_excluded: bool = False
    forecast_weight: float = Field(..., ge=0, le=1)
    category: StageCategory = StageCategory.EARLY


# Risk
class RiskFactor(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: RiskFactorType
    message: str
    magnitude: int | None = None
    severe: bool = False


class RiskAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: RiskLevel
    days_since_activity: int = Field(..., ge=0)
    days_in_stage: int = Field(..., ge=0)
    factors: list[RiskFactor] = Field(default_factory=list)

    def has_factor(self, factor_type: RiskFactorType) -> bool:
        return any(f.type == factor_type for f in self.factors)

    def factor(self, factor_type: RiskFactorType) -> RiskFactor | None:
        return next((f for f in self.factors if f.type == factor_type), None)


# Compliance
class HygieneCheckResult(BaseModel):
    has_gap: bool
    missing_fields: list[str] = Field(default_factory=list)


class HygieneStatusResult(BaseModel):
    status: HygieneStatus
    missing_fields: list[str] = Field(default_factory=list)
    reason: str
    days_old: int | None = None
    is_new_deal: bool = False
    commitment_date: date | None = None


class NextStepCheckResult(BaseModel):
    status: NextStepComplianceStatus
    days_overdue: int | None = None
    reason: str


class OverdueTask(BaseModel):
    task_id: str
    subject: str | None = None
    due_at: datetime
    days_overdue: int


class OverdueTasksResult(BaseModel):
    overdue_tasks: list[OverdueTask] = Field(default_factory=list)
    overdue_count: int = 0
    oldest_overdue_days: int = 0
    is_critical: bool = False


class StalledDealResult(BaseModel):
    is_stalled: bool
    severity: StalledSeverity | None = None
    days_since_activity: int = 0
    deal_age_days: int = 0
    close_date_in_past: bool = False
    close_date_within_window: bool = False
    no_next_step: bool = False
    next_step_overdue: bool = False


# Forecast
class ForecastWeek(BaseModel):
    week_number: int = Field(..., ge=1, le=13)
    weekly_target: float
    cumulative_target: float
    percent_of_quota: float
    week_start: date | None = None
    week_end: date | None = None


class StageTargets(BaseModel):
    deals_needed: int
    proposals_needed: int
    demos_needed: int
    sqls_needed: int
    avg_deal_size: float


class StageWeek(BaseModel):
    week_number: int = Field(..., ge=1, le=13)
    weekly_target: int
    cumulative_target: int


class StageForecast(BaseModel):
    targets: StageTargets
    sql: list[StageWeek]
    demo: list[StageWeek]
    proposal: list[StageWeek]


class VarianceResult(BaseModel):
    variance: float
    percent_of_forecast: float
    status: VarianceStatus


class ForecastActualWeek(BaseModel):
    week_number: int
    week_start: date
    week_end: date
    forecast_cumulative: float
    actual_weekly: float
    actual_cumulative: float | None = None
    is_future: bool = False


class ForecastComparison(BaseModel):
    weeks: list[ForecastActualWeek]
    current_week: int
    actual_to_date: float
    forecast_to_date: float
    variance: VarianceResult


class QuarterProjection(BaseModel):
    quota: float
    closed_won: float
    open_pipeline: float
    weighted_pipeline: float
    projected_total: float
    remaining_quota: float
    coverage_ratio: float
    coverage_status: CoverageStatus
    percent_to_quota: float
    expected_by_now: float
    pace: float
    on_track: bool
    open_deal_count: int
    closed_won_count: int


# Aggregation
class ExceptionRecord(BaseModel):
    record_id: str
    deal_id: str
    owner_id: str | None = None
    deal_name: str | None = None
    amount: float | None = None
    stage_name: str
    exception_type: ExceptionType
    detail: str
    priority: int = 0
    days_since_activity: int = 0
    days_in_stage: int = 0
    close_date: date | None = None
    next_step_due_date: date | None = None


class ExceptionCounts(BaseModel):
    overdue_next_step: int = 0
    past_close_date: int = 0
    activity_drought: int = 0
    high_value_at_risk: int = 0
    no_next_step: int = 0
    stale_stage: int = 0


class AEStatusRollup(BaseModel):
    owner_id: str
    overdue_count: int = 0
    stale_count: int = 0
    at_risk_count: int = 0
    healthy_count: int = 0
    total_deals: int = 0
    status: RollupStatus = RollupStatus.GREEN


class AggregationResult(BaseModel):
    exceptions: list[ExceptionRecord] = Field(default_factory=list)
    per_owner: dict[str, AEStatusRollup] = Field(default_factory=dict)
    counts: ExceptionCounts = Field(default_factory=ExceptionCounts)
    total_active_deals: int = 0
    has_critical_alert: bool = False
    critical_alert_message: str | None = None


def parse_next_step_status(value: NextStepStatus | str | None) -> NextStepStatus | None:
    """Coerce a stored status string; unknown values are treated as absent."""
    if value is None or isinstance(value, NextStepStatus):
        return value
    try:
        return NextStepStatus(value.strip().lower().replace("-", "_"))
    except ValueError:
        return None
