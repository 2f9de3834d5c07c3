"""Pipeline dashboard routes.

Provides:
- GET /dashboard/daily-summary: ranked exceptions and per-AE status
- GET /dashboard/quarterly-summary: team and per-AE quarter projections
"""

import logging
from datetime import date

from fastapi import APIRouter, Query

from revops.api.deps import DataService, Engine, resolve_as_of, resolve_window
from revops.services.pipeline_views import (
    MAX_DASHBOARD_EXCEPTIONS,
    DailySummary,
    QuarterlySummary,
    build_daily_summary,
    build_quarterly_summary,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/daily-summary")
async def get_daily_summary(
    service: DataService,
    engine: Engine,
    as_of: date | None = Query(None, description="Reference date (defaults to today)"),
    limit: int = Query(
        MAX_DASHBOARD_EXCEPTIONS, ge=1, le=500, description="Maximum exceptions returned"
    ),
) -> DailySummary:
    """Daily exception dashboard for the tracked AEs."""
    day = resolve_as_of(as_of)
    owners = await service.get_target_owners()
    deals = await service.load_deals([str(o["id"]) for o in owners])

    summary = build_daily_summary(engine, deals, owners, day, limit=limit)

    logger.info(
        "Daily summary built",
        extra={
            "as_of": day.isoformat(),
            "owner_count": len(owners),
            "exception_count": summary.total_exceptions,
        },
    )
    return summary


@router.get("/quarterly-summary")
async def get_quarterly_summary(
    service: DataService,
    engine: Engine,
    as_of: date | None = Query(None, description="Reference date (defaults to today)"),
    year: int | None = Query(None, ge=2000, le=2100, description="Fiscal year"),
    quarter: int | None = Query(None, description="Fiscal quarter, 1-4"),
) -> QuarterlySummary:
    """Quarter-to-date projection for the team and each tracked AE."""
    day = resolve_as_of(as_of)
    window = resolve_window(year, quarter, day)

    owners = await service.get_target_owners()
    deals = await service.load_deals([str(o["id"]) for o in owners])
    quotas = {
        str(o["id"]): await service.load_quota(str(o["id"]), window, engine.policy)
        for o in owners
    }

    summary = build_quarterly_summary(engine, deals, owners, quotas, window, day)

    logger.info(
        "Quarterly summary built",
        extra={"quarter": window.label, "owner_count": len(owners)},
    )
    return summary
