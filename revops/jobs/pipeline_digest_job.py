"""Background job that stores daily pipeline digests.

Runs once per business morning (see ``revops.services.scheduler``). For each
tracked AE it stores an owner digest, then a team digest covering everyone.
Rows land in ``pipeline_digests``; rendering and delivery happen elsewhere.
"""

import logging
from datetime import date
from typing import Any

from revops.core.config import get_policy
from revops.db.supabase import SupabaseClient
from revops.engine.calendar_math import QuarterWindow, quarter_for_date
from revops.engine.models import DealSnapshot, HygieneCommitment, TaskSnapshot
from revops.services.pipeline_data import get_pipeline_data_service
from revops.services.pipeline_views import (
    PipelineEngine,
    build_ae_forecast,
    build_daily_summary,
    build_hygiene_queue,
    build_next_step_queue,
    build_quarterly_summary,
    build_stalled_queue,
)

logger = logging.getLogger(__name__)


def build_owner_digest(
    engine: PipelineEngine,
    owner: dict[str, Any],
    deals: list[DealSnapshot],
    commitments: dict[str, HygieneCommitment],
    tasks: list[TaskSnapshot],
    quota: float,
    window: QuarterWindow,
    as_of: date,
) -> dict[str, Any]:
    """Assemble the digest payload for one AE."""
    summary = build_daily_summary(engine, deals, [owner], as_of)
    forecast = build_ae_forecast(engine, deals, owner, quota, window, as_of)
    hygiene = build_hygiene_queue(engine, deals, commitments, as_of)
    next_steps = build_next_step_queue(engine, deals, as_of)
    stalled = build_stalled_queue(engine, deals, as_of)
    overdue_tasks = engine.tracker.check_overdue_tasks(tasks, as_of)

    return {
        "summary": summary.model_dump(mode="json"),
        "forecast": forecast.model_dump(mode="json"),
        "hygiene": [item.model_dump(mode="json") for item in hygiene],
        "next_steps": [item.model_dump(mode="json") for item in next_steps],
        "stalled": [item.model_dump(mode="json") for item in stalled],
        "overdue_tasks": overdue_tasks.model_dump(mode="json"),
    }


async def run_pipeline_digest_job(as_of: date | None = None) -> dict[str, Any]:
    """Build and store pipeline digests for all tracked AEs.

    Continues with the remaining owners if one owner's digest fails.

    Args:
        as_of: Reference date; defaults to today.

    Returns:
        Summary dict with owners_processed, digests_stored, exceptions and errors.
    """
    day = as_of or date.today()
    service = get_pipeline_data_service()
    policy = get_policy()
    engine = PipelineEngine(await service.build_registry(policy), policy)
    window = quarter_for_date(day)

    owners = await service.get_target_owners()
    if not owners:
        logger.warning("Pipeline digest skipped: no target AEs configured or found")
        return {"owners_processed": 0, "digests_stored": 0, "exceptions": 0, "errors": 0}

    owner_ids = [str(o["id"]) for o in owners]
    deals = await service.load_deals(owner_ids)
    commitments = await service.load_commitments([d.id for d in deals])
    tasks = await service.load_tasks(owner_ids)

    digests_stored = 0
    errors = 0
    quotas: dict[str, float] = {}

    for owner in owners:
        owner_id = str(owner["id"])
        try:
            quotas[owner_id] = await service.load_quota(owner_id, window, policy)
            payload = build_owner_digest(
                engine,
                owner,
                [d for d in deals if d.owner_id == owner_id],
                commitments,
                [t for t in tasks if t.owner_id == owner_id],
                quotas[owner_id],
                window,
                day,
            )
            await SupabaseClient.insert_digest(
                {
                    "scope": "owner",
                    "owner_id": owner_id,
                    "digest_date": day.isoformat(),
                    "quarter_label": window.label,
                    "payload": payload,
                }
            )
            digests_stored += 1
        except Exception as e:
            errors += 1
            logger.error(
                "Failed to build pipeline digest for owner %s",
                owner_id,
                extra={"owner_id": owner_id, "error": str(e)},
                exc_info=True,
            )

    team_summary = build_daily_summary(engine, deals, owners, day)
    try:
        await SupabaseClient.insert_digest(
            {
                "scope": "team",
                "owner_id": None,
                "digest_date": day.isoformat(),
                "quarter_label": window.label,
                "payload": {
                    "summary": team_summary.model_dump(mode="json"),
                    "quarter": build_quarterly_summary(
                        engine, deals, owners, quotas, window, day
                    ).model_dump(mode="json"),
                },
            }
        )
        digests_stored += 1
    except Exception as e:
        errors += 1
        logger.error(
            "Failed to store team pipeline digest",
            extra={"error": str(e)},
            exc_info=True,
        )

    result = {
        "owners_processed": len(owners),
        "digests_stored": digests_stored,
        "exceptions": team_summary.total_exceptions,
        "has_critical_alert": team_summary.has_critical_alert,
        "errors": errors,
    }

    logger.info("Pipeline digest job completed", extra=result)
    return result
