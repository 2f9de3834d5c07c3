"""Work queue routes.

Each queue lists open deals needing one kind of attention, most urgent first.
Without ``owner_id`` the queues cover every tracked AE.
"""

import logging
from datetime import date

from fastapi import APIRouter, Query

from revops.api.deps import DataService, Engine, resolve_as_of
from revops.engine.models import DealSnapshot
from revops.services.pipeline_views import (
    AtRiskItem,
    HygieneItem,
    NextStepItem,
    StalledItem,
    build_at_risk_queue,
    build_hygiene_queue,
    build_next_step_queue,
    build_stalled_queue,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/queues", tags=["queues"])


async def _load_queue_deals(service: DataService, owner_id: str | None) -> list[DealSnapshot]:
    if owner_id is not None:
        return await service.load_deals([owner_id])
    owners = await service.get_target_owners()
    return await service.load_deals([str(o["id"]) for o in owners])


@router.get("/at-risk")
async def get_at_risk_queue(
    service: DataService,
    engine: Engine,
    owner_id: str | None = Query(None, description="Restrict to one AE"),
    as_of: date | None = Query(None, description="Reference date (defaults to today)"),
) -> list[AtRiskItem]:
    """Open deals classified at_risk or stale."""
    day = resolve_as_of(as_of)
    deals = await _load_queue_deals(service, owner_id)
    items = build_at_risk_queue(engine, deals, day)
    logger.info("At-risk queue built", extra={"owner_id": owner_id, "count": len(items)})
    return items


@router.get("/hygiene")
async def get_hygiene_queue(
    service: DataService,
    engine: Engine,
    owner_id: str | None = Query(None, description="Restrict to one AE"),
    as_of: date | None = Query(None, description="Reference date (defaults to today)"),
) -> list[HygieneItem]:
    """Open deals missing required fields, with their commitment state."""
    day = resolve_as_of(as_of)
    deals = await _load_queue_deals(service, owner_id)
    commitments = await service.load_commitments([d.id for d in deals])
    items = build_hygiene_queue(engine, deals, commitments, day)
    logger.info("Hygiene queue built", extra={"owner_id": owner_id, "count": len(items)})
    return items


@router.get("/next-step")
async def get_next_step_queue(
    service: DataService,
    engine: Engine,
    owner_id: str | None = Query(None, description="Restrict to one AE"),
    as_of: date | None = Query(None, description="Reference date (defaults to today)"),
) -> list[NextStepItem]:
    """Open deals whose next step is missing or overdue."""
    day = resolve_as_of(as_of)
    deals = await _load_queue_deals(service, owner_id)
    items = build_next_step_queue(engine, deals, day)
    logger.info("Next-step queue built", extra={"owner_id": owner_id, "count": len(items)})
    return items


@router.get("/stalled")
async def get_stalled_queue(
    service: DataService,
    engine: Engine,
    owner_id: str | None = Query(None, description="Restrict to one AE"),
    as_of: date | None = Query(None, description="Reference date (defaults to today)"),
) -> list[StalledItem]:
    """Open deals with no recent or scheduled activity."""
    day = resolve_as_of(as_of)
    deals = await _load_queue_deals(service, owner_id)
    items = build_stalled_queue(engine, deals, day)
    logger.info("Stalled queue built", extra={"owner_id": owner_id, "count": len(items)})
    return items
