"""Tracked-repo registration endpoints used by the authentication flow."""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response, status

from anchor_indexer.api.auth import verify_api_key
from anchor_indexer.api.dependencies import (
    get_checkin_repository,
    get_follow_repository,
    get_registry_repository,
)
from anchor_indexer.api.models import (
    ErrorResponse,
    RegisterRepoRequest,
    RegisterRepoResponse,
    RegistryStatsResponse,
)
from anchor_indexer.checkins.repository import CheckinRepository
from anchor_indexer.registry.repository import RegistryRepository
from anchor_indexer.social.repository import FollowRepository

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post(
    "/repos",
    response_model=RegisterRepoResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid API key"},
        422: {"model": ErrorResponse, "description": "Invalid request parameters"},
        500: {"model": ErrorResponse, "description": "Registry write rolled back"},
    },
    summary="Register a repo",
    description=(
        "Start tracking a repo. Idempotent: registering an already-tracked DID "
        "refreshes its handle and hosting server without touching server counts."
    ),
)
async def register_repo(
    request: RegisterRepoRequest,
    api_key: str = Depends(verify_api_key),
    registry: RegistryRepository = Depends(get_registry_repository),
) -> RegisterRepoResponse:
    try:
        created = await registry.register(request.did, request.handle, request.hosting_server_url)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    logger.info("Repo registered via API", did=request.did, created=created)
    return RegisterRepoResponse(did=request.did, created=created)


@router.delete(
    "/repos/{did}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid API key"},
        404: {"model": ErrorResponse, "description": "Repo not tracked"},
        500: {"model": ErrorResponse, "description": "Registry write rolled back"},
    },
    summary="Unregister a repo",
)
async def unregister_repo(
    did: str,
    api_key: str = Depends(verify_api_key),
    registry: RegistryRepository = Depends(get_registry_repository),
) -> Response:
    removed = await registry.remove(did)
    if not removed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Repo {did} is not tracked",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/repos/stats",
    response_model=RegistryStatsResponse,
    responses={401: {"model": ErrorResponse, "description": "Invalid API key"}},
    summary="Registry statistics",
)
async def registry_stats(
    api_key: str = Depends(verify_api_key),
    registry: RegistryRepository = Depends(get_registry_repository),
    checkins: CheckinRepository = Depends(get_checkin_repository),
    follows: FollowRepository = Depends(get_follow_repository),
) -> RegistryStatsResponse:
    stats = await registry.stats()
    follow_stats = await follows.stats()
    return RegistryStatsResponse(
        total_repos=stats.total_repos,
        total_servers=stats.total_servers,
        recently_crawled=stats.recently_crawled,
        total_checkins=await checkins.count(),
        total_follow_edges=follow_stats.total_edges,
    )
