"""Pure pipeline engine: stage classification, risk, compliance and forecasting.

Nothing in this package performs I/O. Callers pass snapshots and an explicit
reference date and get pydantic result models back.
"""

from revops.engine.aggregator import ExceptionAggregator, rollup_status, sort_exceptions
from revops.engine.compliance import ComplianceTracker
from revops.engine.forecast import ForecastEngine
from revops.engine.models import (
    AggregationResult,
    DealSnapshot,
    HygieneCommitment,
    Pipeline,
    PipelineStage,
    RiskAssessment,
    RiskLevel,
    TaskSnapshot,
)
from revops.engine.policy import DEFAULT_POLICY, Policy
from revops.engine.risk import RiskClassifier
from revops.engine.stage_registry import StageRegistry

__all__ = [
    "AggregationResult",
    "ComplianceTracker",
    "DEFAULT_POLICY",
    "DealSnapshot",
    "ExceptionAggregator",
    "ForecastEngine",
    "HygieneCommitment",
    "Pipeline",
    "PipelineStage",
    "Policy",
    "RiskAssessment",
    "RiskClassifier",
    "RiskLevel",
    "StageRegistry",
    "TaskSnapshot",
    "rollup_status",
    "sort_exceptions",
]
