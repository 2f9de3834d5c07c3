"""Health check routes."""

import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, status

from revops.core.circuit_breaker import hubspot_circuit_breaker, supabase_circuit_breaker
from revops.core.config import get_settings

router = APIRouter(prefix="/health", tags=["health"])

_start_time = time.monotonic()
_VERSION = "1.0.0"


@router.get("", status_code=status.HTTP_200_OK)
async def health_check() -> dict[str, Any]:
    """Liveness plus dependency circuit states.

    No dependency calls are made; a circuit in the ``open`` state means the
    dependency recently failed repeatedly.
    """
    settings = get_settings()
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        "version": _VERSION,
        "environment": settings.APP_ENV,
        "hubspot_configured": settings.hubspot_configured,
        "circuit_breakers": {
            cb.service_name: cb.state.value
            for cb in (supabase_circuit_breaker, hubspot_circuit_breaker)
        },
    }
