"""Tests for row mapping and the pipeline data service."""

from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from revops.core.circuit_breaker import CircuitState, hubspot_circuit_breaker
from revops.core.config import Settings
from revops.engine.calendar_math import quarter_window
from revops.engine.models import CommitmentStatus, NextStepStatus
from revops.engine.policy import Policy
from revops.services.pipeline_data import (
    PipelineDataService,
    commitment_from_row,
    deal_from_row,
    owner_display_name,
    parse_datetime,
    pipelines_from_payload,
    task_from_row,
)

PIPELINES_PAYLOAD = {
    "results": [
        {
            "id": "default",
            "label": "Sales Pipeline",
            "stages": [
                {
                    "id": "17915773",
                    "label": "SQL",
                    "displayOrder": 1,
                    "metadata": {"isClosed": "false", "probability": "0.1"},
                },
                {
                    "id": "closedwon",
                    "label": "Closed Won",
                    "displayOrder": 6,
                    "metadata": {"isClosed": "true", "probability": "1.0"},
                },
            ],
        }
    ]
}


class TestDealMapping:
    def test_full_row(self) -> None:
        row = {
            "id": 42,
            "deal_name": "Globex Renewal",
            "amount": "25000.50",
            "deal_stage": "17915773",
            "pipeline": "default",
            "close_date": "2025-03-31",
            "hubspot_created_at": "2025-01-15T14:30:00Z",
            "last_activity_date": "2025-03-10T09:00:00+00:00",
            "next_step": "Security review",
            "next_step_due_date": "2025-03-20",
            "next_step_status": "date_found",
            "next_step_confidence": 0.9,
            "sql_entered_at": "2025-01-20T10:00:00Z",
            "demo_completed_entered_at": None,
            "owner_id": "owner-1",
            "lead_source": "Partner",
        }

        deal = deal_from_row(row)

        assert deal.id == "42"
        assert deal.amount == 25000.5
        assert deal.stage_id == "17915773"
        assert deal.close_date == date(2025, 3, 31)
        assert deal.created_at == datetime(2025, 1, 15, 14, 30, tzinfo=timezone.utc)
        assert deal.next_step_due_date == date(2025, 3, 20)
        assert deal.next_step_status == NextStepStatus.DATE_FOUND
        assert deal.next_step_confidence == 0.9
        assert set(deal.stage_entered_at) == {"17915773"}
        assert deal.lead_source == "Partner"
        assert deal.products is None

    def test_malformed_values_become_missing(self) -> None:
        deal = deal_from_row(
            {
                "id": "d1",
                "amount": "n/a",
                "close_date": "someday",
                "last_activity_date": "",
                "next_step_status": "unheard_of",
                "next_step_confidence": 4.2,
            }
        )
        assert deal.amount is None
        assert deal.close_date is None
        assert deal.last_activity_at is None
        assert deal.next_step_status is None
        assert deal.next_step_confidence is None

    def test_parse_datetime_accepts_dates(self) -> None:
        assert parse_datetime(date(2025, 3, 1)) == datetime(2025, 3, 1)
        assert parse_datetime(None) is None


class TestOtherRows:
    @pytest.mark.parametrize(
        ("stored", "expected"),
        [
            ("pending", CommitmentStatus.PENDING),
            ("completed", CommitmentStatus.FULFILLED),
            ("ESCALATED", CommitmentStatus.EXPIRED),
            (None, CommitmentStatus.PENDING),
            ("archived", CommitmentStatus.PENDING),
        ],
    )
    def test_commitment_status_mapping(self, stored: str | None, expected: CommitmentStatus) -> None:
        commitment = commitment_from_row(
            {"deal_id": "d1", "commitment_date": "2025-03-20", "status": stored}
        )
        assert commitment is not None
        assert commitment.status == expected
        assert commitment.commitment_date == date(2025, 3, 20)

    def test_commitment_without_date_is_dropped(self) -> None:
        assert commitment_from_row({"deal_id": "d1", "commitment_date": None}) is None

    def test_task_row(self) -> None:
        task = task_from_row(
            {"id": 7, "subject": "Call back", "status": "NOT_STARTED", "due_date": "2025-03-10T15:00:00Z"}
        )
        assert task.id == "7"
        assert task.due_at == datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc)
        assert task.deal_id is None

    def test_pipelines_from_payload(self) -> None:
        (pipeline,) = pipelines_from_payload(PIPELINES_PAYLOAD)
        assert pipeline.label == "Sales Pipeline"
        sql, won = pipeline.stages
        assert sql.is_closed is False
        assert sql.probability == 0.1
        assert won.is_closed is True
        assert won.display_order == 6

    @pytest.mark.parametrize(
        ("owner", "expected"),
        [
            ({"id": "1", "first_name": "Dana", "last_name": "Reyes"}, "Dana Reyes"),
            ({"id": "2", "first_name": "Dana", "last_name": None}, "Dana"),
            ({"id": "3", "email": "sam.ortiz@example.com"}, "sam.ortiz"),
            ({"id": "4"}, "4"),
        ],
    )
    def test_owner_display_name(self, owner: dict, expected: str) -> None:
        assert owner_display_name(owner) == expected


def _settings(token: str = "pat-test") -> Settings:
    return Settings(_env_file=None, HUBSPOT_ACCESS_TOKEN=token)


class TestFetchPipelines:
    """HubSpot metadata fetch degrades to None instead of failing."""

    @pytest.mark.asyncio
    async def test_unconfigured_returns_none(self) -> None:
        with (
            patch("revops.services.pipeline_data.get_settings", return_value=_settings("")),
            patch("revops.services.pipeline_data.httpx.AsyncClient") as client_cls,
        ):
            assert await PipelineDataService().fetch_pipelines() is None
            client_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_success(self) -> None:
        response = MagicMock()
        response.json.return_value = PIPELINES_PAYLOAD
        client = AsyncMock()
        client.get.return_value = response

        with (
            patch("revops.services.pipeline_data.get_settings", return_value=_settings()),
            patch("revops.services.pipeline_data.httpx.AsyncClient") as client_cls,
        ):
            client_cls.return_value.__aenter__.return_value = client
            pipelines = await PipelineDataService().fetch_pipelines()

        assert pipelines is not None
        assert [s.id for s in pipelines[0].stages] == ["17915773", "closedwon"]
        url = client.get.call_args.args[0]
        assert url == "https://api.hubapi.com/crm/v3/pipelines/deals"
        assert client.get.call_args.kwargs["headers"]["Authorization"] == "Bearer pat-test"

    @pytest.mark.asyncio
    async def test_http_error_returns_none_and_counts_failure(self) -> None:
        client = AsyncMock()
        client.get.side_effect = httpx.ConnectError("connection refused")

        with (
            patch("revops.services.pipeline_data.get_settings", return_value=_settings()),
            patch("revops.services.pipeline_data.httpx.AsyncClient") as client_cls,
        ):
            client_cls.return_value.__aenter__.return_value = client
            service = PipelineDataService()
            for _ in range(3):
                assert await service.fetch_pipelines() is None

        assert hubspot_circuit_breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_open_circuit_skips_request(self) -> None:
        for _ in range(3):
            hubspot_circuit_breaker.record_failure()

        with (
            patch("revops.services.pipeline_data.get_settings", return_value=_settings()),
            patch("revops.services.pipeline_data.httpx.AsyncClient") as client_cls,
        ):
            assert await PipelineDataService().fetch_pipelines() is None
            client_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_build_registry_without_metadata(self) -> None:
        with patch("revops.services.pipeline_data.get_settings", return_value=_settings("")):
            registry = await PipelineDataService().build_registry(Policy())
        assert not registry.has_metadata
        assert registry.is_closed_won("closedwon")


class TestLoaders:
    @pytest.mark.asyncio
    async def test_load_commitments_keeps_newest_per_deal(self) -> None:
        rows = [
            {"deal_id": "d1", "commitment_date": "2025-03-25", "status": "pending"},
            {"deal_id": "d1", "commitment_date": "2025-03-01", "status": "escalated"},
            {"deal_id": "d2", "commitment_date": None, "status": "pending"},
            {"deal_id": "d2", "commitment_date": "2025-03-05", "status": "completed"},
        ]
        with patch(
            "revops.services.pipeline_data.SupabaseClient.get_commitments",
            new_callable=AsyncMock,
            return_value=rows,
        ):
            commitments = await PipelineDataService().load_commitments(["d1", "d2"])

        assert commitments["d1"].commitment_date == date(2025, 3, 25)
        assert commitments["d2"].status == CommitmentStatus.FULFILLED

    @pytest.mark.asyncio
    async def test_load_quota_falls_back_to_policy(self) -> None:
        window = quarter_window(2025, 1)
        with patch(
            "revops.services.pipeline_data.SupabaseClient.get_quota",
            new_callable=AsyncMock,
            return_value=None,
        ) as get_quota:
            quota = await PipelineDataService().load_quota("owner-1", window, Policy(default_quota=80_000))

        assert quota == 80_000
        get_quota.assert_awaited_once_with("owner-1", 2025, 1)

    @pytest.mark.asyncio
    async def test_load_deals_maps_rows(self) -> None:
        with patch(
            "revops.services.pipeline_data.SupabaseClient.get_deals",
            new_callable=AsyncMock,
            return_value=[{"id": "a", "amount": 100}, {"id": "b"}],
        ):
            deals = await PipelineDataService().load_deals(["owner-1"])
        assert [d.id for d in deals] == ["a", "b"]
        assert deals[0].amount == 100.0
