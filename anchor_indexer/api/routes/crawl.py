"""Manually triggered crawl sessions."""

import structlog
from fastapi import APIRouter, Depends

from anchor_indexer.api.auth import verify_api_key
from anchor_indexer.api.dependencies import get_checkin_crawler, get_follow_crawler
from anchor_indexer.api.models import CrawlSessionResponse, ErrorResponse, FollowSessionResponse
from anchor_indexer.services.checkin_crawler import CheckinCrawler
from anchor_indexer.services.follow_crawler import FollowCrawler

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post(
    "/crawl/checkins",
    response_model=CrawlSessionResponse,
    responses={401: {"model": ErrorResponse, "description": "Invalid API key"}},
    summary="Run one check-in crawl session",
    description=(
        "Crawls every tracked repo once and returns the session summary. "
        "Per-repo failures are reported in `errors`, not as an HTTP error."
    ),
)
async def crawl_checkins(
    api_key: str = Depends(verify_api_key),
    crawler: CheckinCrawler = Depends(get_checkin_crawler),
) -> CrawlSessionResponse:
    result = await crawler.run_session()
    return CrawlSessionResponse(**result.to_dict())


@router.post(
    "/crawl/follows",
    response_model=FollowSessionResponse,
    responses={401: {"model": ErrorResponse, "description": "Invalid API key"}},
    summary="Run one follow crawl session",
)
async def crawl_follows(
    api_key: str = Depends(verify_api_key),
    crawler: FollowCrawler = Depends(get_follow_crawler),
) -> FollowSessionResponse:
    result = await crawler.run_session()
    return FollowSessionResponse(**result.to_dict())
