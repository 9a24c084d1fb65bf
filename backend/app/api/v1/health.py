r"""backend\app\api\v1\health.py

Health check endpoints.

These endpoints can be used by orchestrators and load balancers to verify
that the service is running. ``GET /api/v1/health`` also reports whether
the store answers and whether the daily sweep trigger is active.
"""

import logging

from fastapi import APIRouter, Depends

from ...core.errors import PersistenceError
from ...services.container import ServiceContainer, get_services

LOGGER = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
def health_check(services: ServiceContainer = Depends(get_services)) -> dict[str, str]:
    """Return a basic health indicator."""
    try:
        services.store.counts()
        database = "ok"
    except PersistenceError as exc:
        LOGGER.warning("Health check could not reach the store: %s", exc)
        database = "unavailable"
    return {
        "status": "ok" if database == "ok" else "degraded",
        "database": database,
        "scheduler": "running" if services.trigger.running else "stopped",
    }
