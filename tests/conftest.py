"""Shared fixtures for engine, service and route tests."""

from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import Any

import pytest

from revops.core.circuit_breaker import hubspot_circuit_breaker, supabase_circuit_breaker
from revops.engine.aggregator import ExceptionAggregator
from revops.engine.compliance import ComplianceTracker
from revops.engine.forecast import ForecastEngine
from revops.engine.models import DealSnapshot, Pipeline, PipelineStage
from revops.engine.policy import Policy
from revops.engine.risk import RiskClassifier
from revops.engine.stage_registry import StageRegistry

# A Monday, so week arithmetic from it maps cleanly onto business days.
AS_OF = date(2025, 3, 17)

SALES_PIPELINE = Pipeline(
    id="default",
    label="Sales Pipeline",
    stages=[
        PipelineStage(id="mql", label="MQL", display_order=0, is_closed=False),
        PipelineStage(id="sql", label="SQL", display_order=1, is_closed=False),
        PipelineStage(id="demo_scheduled", label="Demo Scheduled", display_order=2, is_closed=False),
        PipelineStage(id="demo_completed", label="Demo Completed", display_order=3, is_closed=False),
        PipelineStage(id="proposal", label="Proposal", display_order=4, is_closed=False),
        PipelineStage(id="negotiation", label="Negotiation", display_order=5, is_closed=False),
        PipelineStage(id="closedwon", label="Closed Won", display_order=6, is_closed=True),
        PipelineStage(id="closedlost", label="Closed Lost", display_order=7, is_closed=True),
    ],
)


def at(day: date, hour: int = 10) -> datetime:
    return datetime(day.year, day.month, day.day, hour, 0)


@pytest.fixture
def as_of() -> date:
    return AS_OF


@pytest.fixture
def policy() -> Policy:
    return Policy()


@pytest.fixture
def registry(policy: Policy) -> StageRegistry:
    return StageRegistry([SALES_PIPELINE], policy)


@pytest.fixture
def classifier(registry: StageRegistry, policy: Policy) -> RiskClassifier:
    return RiskClassifier(registry, policy)


@pytest.fixture
def tracker(policy: Policy) -> ComplianceTracker:
    return ComplianceTracker(policy)


@pytest.fixture
def forecast_engine(registry: StageRegistry, policy: Policy) -> ForecastEngine:
    return ForecastEngine(registry, policy)


@pytest.fixture
def aggregator(
    classifier: RiskClassifier, tracker: ComplianceTracker, policy: Policy
) -> ExceptionAggregator:
    return ExceptionAggregator(classifier, tracker, policy)


@pytest.fixture
def make_deal() -> Callable[..., DealSnapshot]:
    """Factory for a healthy, fully-populated proposal-stage deal."""

    def _make(**overrides: Any) -> DealSnapshot:
        fields: dict[str, Any] = {
            "id": "deal-1",
            "deal_name": "Acme Expansion",
            "amount": 10_000.0,
            "stage_id": "proposal",
            "pipeline_id": "default",
            "close_date": AS_OF + timedelta(days=30),
            "created_at": at(AS_OF - timedelta(days=20)),
            "last_activity_at": at(AS_OF - timedelta(days=1)),
            "next_step": "Send revised pricing",
            "owner_id": "owner-1",
            "deal_substage": "Pricing",
            "lead_source": "Inbound",
            "products": "Platform",
        }
        fields.update(overrides)
        return DealSnapshot(**fields)

    return _make


@pytest.fixture(autouse=True)
def reset_circuit_breakers() -> None:
    supabase_circuit_breaker.reset()
    hubspot_circuit_breaker.reset()
