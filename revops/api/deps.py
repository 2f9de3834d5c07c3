"""FastAPI dependencies shared by the dashboard, AE and queue routes."""

import logging
from datetime import date
from typing import Annotated

from fastapi import Depends

from revops.core.config import get_policy
from revops.core.exceptions import ValidationError
from revops.engine.calendar_math import QuarterWindow, quarter_for_date, quarter_window
from revops.engine.policy import Policy
from revops.services.pipeline_data import PipelineDataService, get_pipeline_data_service
from revops.services.pipeline_views import PipelineEngine

logger = logging.getLogger(__name__)

DataService = Annotated[PipelineDataService, Depends(get_pipeline_data_service)]
EnginePolicy = Annotated[Policy, Depends(get_policy)]


async def get_engine(service: DataService, policy: EnginePolicy) -> PipelineEngine:
    """Build the engine for one request.

    The stage registry is rebuilt per request from current pipeline metadata
    and is read-only for the lifetime of the request.
    """
    registry = await service.build_registry(policy)
    if not registry.has_metadata:
        logger.info("Serving request without pipeline metadata")
    return PipelineEngine(registry, policy)


Engine = Annotated[PipelineEngine, Depends(get_engine)]


def resolve_as_of(as_of: date | None) -> date:
    """Reference date for a request; today when not given."""
    return as_of or date.today()


def resolve_window(year: int | None, quarter: int | None, as_of: date) -> QuarterWindow:
    """Quarter selected by query parameters, or the one containing ``as_of``.

    Raises:
        ValidationError: If only one of year/quarter is given or quarter is not 1-4.
    """
    if year is None and quarter is None:
        return quarter_for_date(as_of)
    if year is None or quarter is None:
        raise ValidationError("year and quarter must be given together", field="quarter")
    try:
        return quarter_window(year, quarter)
    except ValueError as e:
        raise ValidationError(str(e), field="quarter") from e
