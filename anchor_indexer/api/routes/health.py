"""Liveness and database health."""

import time

import structlog
from fastapi import APIRouter, Depends

from anchor_indexer import __version__
from anchor_indexer.api.dependencies import get_database
from anchor_indexer.api.models import ComponentHealth, HealthResponse
from anchor_indexer.storage.database import Database

router = APIRouter()
logger = structlog.get_logger(__name__)


async def _probe_database(db: Database) -> ComponentHealth:
    start = time.perf_counter()
    details: dict[str, str] = {}
    try:
        healthy = await db.health_check()
    except Exception as e:
        healthy = False
        details["error"] = str(e)

    return ComponentHealth(
        status="healthy" if healthy else "unhealthy",
        latency_ms=round((time.perf_counter() - start) * 1000, 2),
        details=details,
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description="Reports whether the indexer can reach its database. No API key required.",
)
async def health_check(db: Database = Depends(get_database)) -> HealthResponse:
    database = await _probe_database(db)
    if database.status != "healthy":
        logger.warning("Database unhealthy", details=database.details)

    return HealthResponse(
        status=database.status,
        components={"database": database},
        version=__version__,
    )
