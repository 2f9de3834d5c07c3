"""Per-AE forecast routes."""

import logging
from datetime import date

from fastapi import APIRouter, Query

from revops.api.deps import DataService, Engine, resolve_as_of, resolve_window
from revops.engine.models import OverdueTasksResult
from revops.services.pipeline_views import AEForecast, build_ae_forecast

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ae", tags=["ae"])


@router.get("/{owner_id}/forecast")
async def get_ae_forecast(
    owner_id: str,
    service: DataService,
    engine: Engine,
    as_of: date | None = Query(None, description="Reference date (defaults to today)"),
    year: int | None = Query(None, ge=2000, le=2100, description="Fiscal year"),
    quarter: int | None = Query(None, description="Fiscal quarter, 1-4"),
) -> AEForecast:
    """Weekly forecast vs. closed-won actuals and funnel targets for one AE.

    Raises:
        NotFoundError: If the owner does not exist (404).
        ValidationError: If the quarter selection is invalid (400).
    """
    day = resolve_as_of(as_of)
    window = resolve_window(year, quarter, day)

    owner = await service.get_owner(owner_id)
    deals = await service.load_deals([owner_id])
    quota = await service.load_quota(owner_id, window, engine.policy)

    forecast = build_ae_forecast(engine, deals, owner, quota, window, day)

    logger.info(
        "AE forecast built",
        extra={"owner_id": owner_id, "quarter": window.label, "quota": quota},
    )
    return forecast


@router.get("/{owner_id}/overdue-tasks")
async def get_ae_overdue_tasks(
    owner_id: str,
    service: DataService,
    engine: Engine,
    as_of: date | None = Query(None, description="Reference date (defaults to today)"),
) -> OverdueTasksResult:
    """Open tasks past their due date for one AE, most overdue first."""
    day = resolve_as_of(as_of)
    await service.get_owner(owner_id)
    tasks = await service.load_tasks([owner_id])
    result = engine.tracker.check_overdue_tasks(tasks, day)

    logger.info(
        "Overdue tasks checked",
        extra={"owner_id": owner_id, "overdue_count": result.overdue_count},
    )
    return result
