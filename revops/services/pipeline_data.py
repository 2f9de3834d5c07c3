"""Loads deals, commitments, quotas and pipeline metadata for the engine.

This is the only place that knows the storage row shapes. Rows are mapped to
engine models here; a malformed value in a row is treated as missing rather
than failing the whole load.
"""

import logging
from datetime import date, datetime
from typing import Any

import httpx

from revops.core.circuit_breaker import CircuitBreakerOpen, hubspot_circuit_breaker
from revops.core.config import get_settings
from revops.db.supabase import SupabaseClient
from revops.engine.calendar_math import QuarterWindow
from revops.engine.models import (
    CommitmentStatus,
    DealSnapshot,
    HygieneCommitment,
    Pipeline,
    PipelineStage,
    TaskSnapshot,
    parse_next_step_status,
)
from revops.engine.policy import Policy
from revops.engine.stage_registry import StageRegistry

logger = logging.getLogger(__name__)

# Stage-entry timestamp columns and the stage ids they record.
TRACKED_STAGE_COLUMNS: dict[str, str] = {
    "sql_entered_at": "17915773",
    "demo_scheduled_entered_at": "baedc188-ba76-4a41-8723-5bb99fe7c5bf",
    "demo_completed_entered_at": "963167283",
    "closed_won_entered_at": "97b2bcc6-fb34-4b56-8e6e-c349c88ef3d5",
}

# Stored commitment statuses → engine lifecycle states.
_COMMITMENT_STATUS_MAP: dict[str, CommitmentStatus] = {
    "pending": CommitmentStatus.PENDING,
    "completed": CommitmentStatus.FULFILLED,
    "fulfilled": CommitmentStatus.FULFILLED,
    "escalated": CommitmentStatus.EXPIRED,
    "expired": CommitmentStatus.EXPIRED,
}


def parse_datetime(value: Any) -> datetime | None:
    """Parse an ISO timestamp or date; None for blank or malformed input."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Ignoring malformed timestamp %r", value)
        return None


def parse_date(value: Any) -> date | None:
    parsed = parse_datetime(value)
    return parsed.date() if parsed else None


def _parse_amount(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.debug("Ignoring malformed amount %r", value)
        return None


def _parse_confidence(value: Any) -> float | None:
    confidence = _parse_amount(value)
    if confidence is None or not 0 <= confidence <= 1:
        return None
    return confidence


def _text(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def deal_from_row(row: dict[str, Any]) -> DealSnapshot:
    """Map a ``deals`` row to a DealSnapshot.

    Args:
        row: Row as returned by Supabase.

    Returns:
        DealSnapshot; unparseable fields are left empty.
    """
    stage_entered_at: dict[str, datetime] = {}
    for column, stage_id in TRACKED_STAGE_COLUMNS.items():
        entered = parse_datetime(row.get(column))
        if entered is not None:
            stage_entered_at[stage_id] = entered

    return DealSnapshot(
        id=str(row["id"]),
        deal_name=_text(row.get("deal_name")),
        amount=_parse_amount(row.get("amount")),
        stage_id=_text(row.get("deal_stage")),
        pipeline_id=_text(row.get("pipeline")),
        close_date=parse_date(row.get("close_date")),
        created_at=parse_datetime(row.get("hubspot_created_at")),
        last_activity_at=parse_datetime(row.get("last_activity_date")),
        next_activity_at=parse_datetime(row.get("next_activity_date")),
        next_step=_text(row.get("next_step")),
        next_step_due_date=parse_date(row.get("next_step_due_date")),
        next_step_status=parse_next_step_status(row.get("next_step_status")),
        next_step_confidence=_parse_confidence(row.get("next_step_confidence")),
        next_step_display_message=_text(row.get("next_step_display_message")),
        stage_entered_at=stage_entered_at,
        owner_id=_text(row.get("owner_id")),
        deal_substage=_text(row.get("deal_substage")),
        lead_source=_text(row.get("lead_source")),
        products=_text(row.get("products")),
        deal_collaborator=_text(row.get("deal_collaborator")),
    )


def commitment_from_row(row: dict[str, Any]) -> HygieneCommitment | None:
    """Map a ``hygiene_commitments`` row; None if it has no usable date."""
    commitment_date = parse_date(row.get("commitment_date"))
    if commitment_date is None:
        return None
    status = _COMMITMENT_STATUS_MAP.get(
        str(row.get("status") or "pending").lower(), CommitmentStatus.PENDING
    )
    return HygieneCommitment(
        deal_id=str(row["deal_id"]),
        commitment_date=commitment_date,
        status=status,
    )


def task_from_row(row: dict[str, Any]) -> TaskSnapshot:
    """Map a ``tasks`` row to a TaskSnapshot."""
    return TaskSnapshot(
        id=str(row["id"]),
        subject=_text(row.get("subject")),
        status=_text(row.get("status")),
        due_at=parse_datetime(row.get("due_date")),
        deal_id=_text(row.get("deal_id")),
        owner_id=_text(row.get("owner_id")),
    )


def pipelines_from_payload(payload: dict[str, Any]) -> list[Pipeline]:
    """Map a HubSpot ``/crm/v3/pipelines/deals`` response to Pipeline models."""
    pipelines: list[Pipeline] = []
    for item in payload.get("results", []):
        stages = []
        for stage in item.get("stages", []):
            metadata = stage.get("metadata") or {}
            probability = _parse_amount(metadata.get("probability"))
            stages.append(
                PipelineStage(
                    id=str(stage["id"]),
                    label=stage.get("label") or str(stage["id"]),
                    display_order=stage.get("displayOrder") or 0,
                    is_closed=str(metadata.get("isClosed", "")).lower() == "true",
                    probability=probability,
                )
            )
        pipelines.append(Pipeline(id=str(item["id"]), label=item.get("label", ""), stages=stages))
    return pipelines


def owner_display_name(owner: dict[str, Any]) -> str:
    """Full name if known, else the local part of the email."""
    first, last = owner.get("first_name"), owner.get("last_name")
    if first or last:
        return " ".join(part for part in (first, last) if part)
    email = owner.get("email") or ""
    return email.split("@")[0] or str(owner.get("id", "Unknown"))


class PipelineDataService:
    """Fetches everything one engine run needs."""

    async def fetch_pipelines(self) -> list[Pipeline] | None:
        """Fetch deal pipelines from HubSpot.

        Returns:
            Pipelines, or None when HubSpot is not configured or unavailable.
            The stage registry falls back to pattern matching in that case.
        """
        settings = get_settings()
        if not settings.hubspot_configured:
            return None

        async def _get() -> dict[str, Any]:
            async with httpx.AsyncClient(timeout=settings.HUBSPOT_TIMEOUT_SECONDS) as client:
                response = await client.get(
                    f"{settings.HUBSPOT_API_URL.rstrip('/')}/crm/v3/pipelines/deals",
                    headers={
                        "Authorization": f"Bearer {settings.HUBSPOT_ACCESS_TOKEN.get_secret_value()}",
                    },
                )
                response.raise_for_status()
                return response.json()

        try:
            payload = await hubspot_circuit_breaker.call_async(_get)
            return pipelines_from_payload(payload)
        except CircuitBreakerOpen:
            logger.warning("HubSpot circuit open; using stage pattern matching")
            return None
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.warning(
                "Failed to fetch pipeline metadata; using stage pattern matching",
                extra={"error": str(e)},
            )
            return None

    async def build_registry(self, policy: Policy) -> StageRegistry:
        return StageRegistry(await self.fetch_pipelines(), policy)

    async def get_target_owners(self) -> list[dict[str, Any]]:
        """Owners listed in TARGET_AE_EMAILS."""
        return await SupabaseClient.get_owners_by_emails(get_settings().target_ae_emails_list)

    async def get_owner(self, owner_id: str) -> dict[str, Any]:
        return await SupabaseClient.get_owner(owner_id)

    async def load_deals(self, owner_ids: list[str] | None = None) -> list[DealSnapshot]:
        rows = await SupabaseClient.get_deals(owner_ids)
        deals = [deal_from_row(row) for row in rows]
        logger.info("Loaded %d deals", len(deals), extra={"owner_count": len(owner_ids or [])})
        return deals

    async def load_commitments(self, deal_ids: list[str]) -> dict[str, HygieneCommitment]:
        """Latest commitment per deal."""
        commitments: dict[str, HygieneCommitment] = {}
        for row in await SupabaseClient.get_commitments(deal_ids):
            commitment = commitment_from_row(row)
            # Rows arrive newest first; keep the first one seen per deal.
            if commitment is not None and commitment.deal_id not in commitments:
                commitments[commitment.deal_id] = commitment
        return commitments

    async def load_tasks(self, owner_ids: list[str]) -> list[TaskSnapshot]:
        return [task_from_row(row) for row in await SupabaseClient.get_tasks(owner_ids)]

    async def load_quota(self, owner_id: str, window: QuarterWindow, policy: Policy) -> float:
        """Owner quota for the quarter, or the policy default."""
        quota = await SupabaseClient.get_quota(owner_id, window.year, window.quarter)
        return quota if quota is not None else policy.default_quota


_service: PipelineDataService | None = None


def get_pipeline_data_service() -> PipelineDataService:
    """Get the shared PipelineDataService (FastAPI dependency)."""
    global _service
    if _service is None:
        _service = PipelineDataService()
    return _service
