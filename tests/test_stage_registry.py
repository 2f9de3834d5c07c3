"""Tests for stage classification and forecast weights."""

from datetime import date

import pytest

from revops.engine.calendar_math import quarter_window
from revops.engine.models import Pipeline, PipelineStage
from revops.engine.policy import Policy, StageCategory
from revops.engine.stage_registry import (
    StageRegistry,
    classify_stage_by_pattern,
    stage_category,
    stage_weight_for_label,
)


class TestStageWeights:
    """Exact table, then ordered substring rules, then the default."""

    @pytest.mark.parametrize(
        ("label", "expected"),
        [
            ("SQL", 0.1),
            ("Demo Scheduled", 0.2),
            ("demo - completed", 0.4),
            ("Proposal Sent", 0.6),
            ("Negotiation", 0.8),
            ("Procurement", 0.85),
        ],
    )
    def test_exact_labels(self, label: str, expected: float) -> None:
        assert stage_weight_for_label(label) == expected

    def test_substring_rules_apply_in_order(self) -> None:
        assert stage_weight_for_label("Demo (completed, awaiting notes)") == 0.4
        assert stage_weight_for_label("Product demo") == 0.3
        assert stage_weight_for_label("Negotiating terms") == 0.8
        assert stage_weight_for_label("Contract out for signature") == 0.85

    def test_unknown_or_empty_label_uses_default(self) -> None:
        assert stage_weight_for_label("Mystery stage") == 0.15
        assert stage_weight_for_label(None) == 0.15
        assert stage_weight_for_label("") == 0.15

    def test_policy_tables_are_used(self) -> None:
        policy = Policy(stage_weights={"Discovery": 0.25}, default_stage_weight=0.05)
        assert stage_weight_for_label("discovery", policy) == 0.25
        assert stage_weight_for_label("Unmapped", policy) == 0.05


class TestStageCategory:
    @pytest.mark.parametrize(
        ("label", "category"),
        [
            ("SQL", StageCategory.EARLY),
            ("Demo Scheduled", StageCategory.MID),
            ("Proposal", StageCategory.LATE),
            ("Legal Review", StageCategory.LATE),
            ("Closed Won", StageCategory.CLOSED),
            ("Disqualified", StageCategory.CLOSED),
            (None, StageCategory.EARLY),
        ],
    )
    def test_categories(self, label: str | None, category: StageCategory) -> None:
        assert stage_category(label) == category


class TestRegistryWithMetadata:
    """Metadata is authoritative for closed stages."""

    def test_display_name_from_metadata(self, registry: StageRegistry) -> None:
        assert registry.has_metadata
        assert registry.display_name("demo_scheduled") == "Demo Scheduled"

    def test_closed_won_and_lost(self, registry: StageRegistry) -> None:
        assert registry.is_closed_won("closedwon")
        assert registry.is_closed_lost("closedlost")
        assert registry.is_closed("closedwon")
        assert registry.is_terminal("closedlost")
        assert not registry.is_open("closedwon")

    def test_won_label_requires_closed_flag(self) -> None:
        pipeline = Pipeline(
            id="p",
            label="P",
            stages=[PipelineStage(id="s1", label="Closed Won (pending paperwork)", is_closed=False)],
        )
        registry = StageRegistry([pipeline])
        assert not registry.is_closed_won("s1")

    def test_closed_flag_requires_won_pattern(self) -> None:
        pipeline = Pipeline(
            id="p",
            label="P",
            stages=[PipelineStage(id="s2", label="Archived", is_closed=True)],
        )
        registry = StageRegistry([pipeline])
        assert not registry.is_closed_won("s2")
        assert not registry.is_closed_lost("s2")
        assert registry.category("s2") == StageCategory.CLOSED
        assert registry.is_terminal("s2")

    def test_mql_is_excluded_from_open_pipeline(self, registry: StageRegistry) -> None:
        assert registry.is_excluded("mql")
        assert not registry.is_terminal("mql")
        assert not registry.is_open("mql")

    def test_open_stage(self, registry: StageRegistry) -> None:
        assert registry.is_open("proposal")
        assert registry.weight("proposal") == 0.6
        assert registry.category("proposal") == StageCategory.LATE

    def test_unknown_stage_falls_back_to_patterns(self, registry: StageRegistry) -> None:
        info = registry.stage_info("closedwon-legacy")
        assert info.display_name == "closedwon-legacy"
        assert info.is_closed_won

    def test_missing_stage_id(self, registry: StageRegistry) -> None:
        assert registry.display_name(None) == "Unknown"
        assert registry.is_open(None)

    def test_open_pipeline_requires_close_date_in_window(self, registry: StageRegistry) -> None:
        window = quarter_window(2025, 1)
        assert registry.is_open_pipeline("proposal", date(2025, 3, 31), window)
        assert not registry.is_open_pipeline("proposal", date(2025, 4, 1), window)
        assert not registry.is_open_pipeline("proposal", None, window)
        assert not registry.is_open_pipeline("closedwon", date(2025, 2, 1), window)


class TestRegistryWithoutMetadata:
    """Pattern matching alone when pipeline metadata is unavailable."""

    def test_no_metadata(self) -> None:
        registry = StageRegistry(None)
        assert not registry.has_metadata
        assert registry.is_closed_won("closedwon")
        assert registry.is_closed_lost("closedlost")
        assert registry.is_terminal("disqualified")
        assert registry.is_excluded("qualifiedtobuy")
        assert registry.is_open("appointmentscheduled")

    def test_numeric_stage_id_is_open_with_default_weight(self) -> None:
        registry = StageRegistry(None)
        assert registry.is_open("17915773")
        assert registry.weight("17915773") == 0.15
        assert registry.category("17915773") == StageCategory.EARLY

    def test_classify_stage_by_pattern_uses_label(self) -> None:
        info = classify_stage_by_pattern("stage-9", "Closed Lost")
        assert info.display_name == "Closed Lost"
        assert info.is_closed_lost
        assert not info.is_closed_won

    def test_lookups_do_not_change_results(self) -> None:
        registry = StageRegistry(None)
        first = registry.stage_info("negotiation")
        second = registry.stage_info("negotiation")
        assert first == second
        assert first.forecast_weight == 0.8
