"""Canonical check-in read endpoints for the presentation layer."""

import time
from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from anchor_indexer.api.auth import verify_api_key
from anchor_indexer.api.dependencies import get_checkin_repository
from anchor_indexer.api.models import CheckinListResponse, ErrorResponse
from anchor_indexer.checkins.repository import CheckinRepository
from anchor_indexer.ingestion.schemas import CanonicalCheckin

logger = structlog.get_logger(__name__)
router = APIRouter()


def _page(checkins: list[CanonicalCheckin], limit: int, start_time: float) -> CheckinListResponse:
    next_before = None
    if len(checkins) == limit and checkins:
        next_before = checkins[-1].created_at.isoformat()
    return CheckinListResponse(
        checkins=checkins,
        next_before=next_before,
        latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
    )


@router.get(
    "/checkins",
    response_model=CheckinListResponse,
    responses={401: {"model": ErrorResponse, "description": "Invalid API key"}},
    summary="Recent check-ins",
    description="Most recent check-ins across all tracked repos, newest first.",
)
async def list_recent_checkins(
    limit: int = Query(default=50, ge=1, le=200),
    before: datetime | None = Query(default=None, description="Only check-ins created before this time"),
    api_key: str = Depends(verify_api_key),
    checkins: CheckinRepository = Depends(get_checkin_repository),
) -> CheckinListResponse:
    start_time = time.perf_counter()
    rows = await checkins.list_recent(limit=limit, before=before)
    return _page(rows, limit, start_time)


@router.get(
    "/checkins/by-author/{did}",
    response_model=CheckinListResponse,
    responses={401: {"model": ErrorResponse, "description": "Invalid API key"}},
    summary="Check-ins by author",
)
async def list_author_checkins(
    did: str,
    limit: int = Query(default=50, ge=1, le=200),
    before: datetime | None = Query(default=None),
    api_key: str = Depends(verify_api_key),
    checkins: CheckinRepository = Depends(get_checkin_repository),
) -> CheckinListResponse:
    start_time = time.perf_counter()
    rows = await checkins.list_by_author(did, limit=limit, before=before)
    return _page(rows, limit, start_time)


@router.get(
    "/checkins/record",
    response_model=CanonicalCheckin,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid API key"},
        404: {"model": ErrorResponse, "description": "Check-in not found"},
    },
    summary="Get one check-in",
)
async def get_checkin(
    uri: str = Query(..., min_length=5, description="at:// URI of the source record"),
    api_key: str = Depends(verify_api_key),
    checkins: CheckinRepository = Depends(get_checkin_repository),
) -> CanonicalCheckin:
    checkin = await checkins.get_by_uri(uri)
    if checkin is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Check-in {uri} not found",
        )
    return checkin
