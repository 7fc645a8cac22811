"""
Request and response models for the indexer API.
"""

from pydantic import BaseModel, Field

from anchor_indexer.ingestion.schemas import CanonicalCheckin


class ErrorResponse(BaseModel):
    """Response model for errors."""

    detail: str = Field(..., description="Error message")
    error_type: str = Field(default="error", description="Error type")


# Health models


class ComponentHealth(BaseModel):
    """Health of one infrastructure component."""

    status: str = Field(..., description="healthy or unhealthy")
    latency_ms: float | None = Field(default=None, description="Check latency in milliseconds")
    details: dict[str, str] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str = Field(..., description="Overall service status: healthy or unhealthy")
    components: dict[str, ComponentHealth] = Field(default_factory=dict)
    version: str = Field(default="0.1.0")


# Check-in models


class CheckinListResponse(BaseModel):
    """A page of canonical check-ins, newest first."""

    checkins: list[CanonicalCheckin] = Field(default_factory=list)
    next_before: str | None = Field(
        default=None,
        description="Pass as `before` to fetch the next page; null on the last page",
    )
    latency_ms: float = Field(..., description="Processing latency in milliseconds")


# Registry models


class RegisterRepoRequest(BaseModel):
    """Register a repo for crawling (called by the authentication flow)."""

    did: str = Field(..., min_length=8, pattern=r"^did:[a-z]+:\S+$", description="Repo DID")
    handle: str = Field(..., min_length=1, max_length=253)
    hosting_server_url: str = Field(
        ...,
        pattern=r"^https?://\S+$",
        description="Hosting server currently holding the repo",
    )


class RegisterRepoResponse(BaseModel):
    did: str
    created: bool = Field(..., description="False if the DID was already tracked")


class RegistryStatsResponse(BaseModel):
    total_repos: int
    total_servers: int
    recently_crawled: int = Field(..., description="Repos crawled for check-ins in the last hour")
    total_checkins: int
    total_follow_edges: int


# Crawl models


class CrawlSessionResponse(BaseModel):
    """Summary of one check-in crawl session."""

    success: bool
    records_processed: int
    users_processed: int
    errors: int
    rejected: int
    duration_ms: int


class FollowSessionResponse(BaseModel):
    """Summary of one follow crawl session."""

    success: bool
    follows_added: int
    follows_removed: int
    users_processed: int
    errors: int
    duration_ms: int
