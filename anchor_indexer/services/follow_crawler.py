"""
Follow crawl session.

For each tracked repo, least recently follow-crawled first, read the full
follow collection from its hosting server and hand it to the follow-graph
reconciler. The reconciler only ever sees a complete listing: any fetch
failure, or a listing cut off by the page cap, skips reconciliation for
that repo so a partial list can never delete stored edges.
"""

import asyncio
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

import structlog

from anchor_indexer.config.settings import get_settings
from anchor_indexer.errors import IndexerError, RecordRejected
from anchor_indexer.identity.resolver import EndpointResolver
from anchor_indexer.ingestion.http_client import XrpcClient
from anchor_indexer.ingestion.normalizer import parse_created_at
from anchor_indexer.observability.metrics import get_metrics
from anchor_indexer.observability.tracing import get_tracer, traced
from anchor_indexer.registry.repository import RegistryRepository
from anchor_indexer.registry.schemas import TrackedRepo
from anchor_indexer.social.reconciler import FollowGraphReconciler

logger = structlog.get_logger(__name__)

SESSION = "follows"


class IncompleteFollowListing(IndexerError):
    """The follow collection had more pages than the crawl is allowed to read."""


@dataclass
class FollowSessionResult:
    """Summary of one follow crawl session."""

    success: bool
    follows_added: int = 0
    follows_removed: int = 0
    users_processed: int = 0
    errors: int = 0
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _keep_earliest(
    follows: dict[str, datetime | None],
    subject: str,
    created_at: datetime | None,
) -> None:
    """Duplicate follow records for one subject keep the earliest known creation time."""
    if subject not in follows:
        follows[subject] = created_at
    elif created_at is not None and (follows[subject] is None or created_at < follows[subject]):
        follows[subject] = created_at


def parse_follow_records(records: list[dict[str, Any]]) -> dict[str, datetime | None]:
    """Map followed DID -> follow creation time for one page of follow records."""
    follows: dict[str, datetime | None] = {}
    for record in records:
        value = record.get("value")
        if not isinstance(value, dict):
            continue
        subject = value.get("subject")
        if not isinstance(subject, str) or not subject.startswith("did:"):
            continue
        try:
            created_at = parse_created_at(value.get("createdAt"))
        except RecordRejected:
            created_at = None
        _keep_earliest(follows, subject, created_at)
    return follows


class FollowCrawler:
    """
    Run follow crawl sessions over the tracked-repo registry.

    Usage:
        async with XrpcClient() as client:
            crawler = FollowCrawler(registry, reconciler, client)
            result = await crawler.run_session()
    """

    def __init__(
        self,
        registry: RegistryRepository,
        reconciler: FollowGraphReconciler,
        client: XrpcClient,
        endpoints: EndpointResolver | None = None,
        collection: str | None = None,
        max_pages: int | None = None,
        page_delay: float | None = None,
        page_size: int | None = None,
    ):
        settings = get_settings()
        self._registry = registry
        self._reconciler = reconciler
        self._client = client
        self._endpoints = endpoints or EndpointResolver(client)
        self._collection = collection or settings.follow_collection
        self._max_pages = max_pages or settings.follow_max_pages
        self._page_delay = (
            settings.follow_page_delay_seconds if page_delay is None else page_delay
        )
        self._page_size = page_size or settings.crawl_page_size
        self._metrics = get_metrics()

    async def run_session(self) -> FollowSessionResult:
        """Reconcile the follow graph of every tracked repo once."""
        start = time.monotonic()

        with traced(get_tracer(__name__), "crawl.follows") as span:
            try:
                repos = await self._registry.list_for_follow_crawl()
            except Exception as e:
                logger.error("Failed to load tracked repos", error=str(e))
                self._metrics.record_error("list_repos", type(e).__name__)
                return FollowSessionResult(
                    success=False,
                    errors=1,
                    duration_ms=int((time.monotonic() - start) * 1000),
                )

            result = FollowSessionResult(success=True)
            for repo in repos:
                await self._sync_repo(repo, result)

            elapsed = time.monotonic() - start
            result.duration_ms = int(elapsed * 1000)
            self._metrics.record_session(SESSION, elapsed)
            span.set_attribute("crawl.repos", result.users_processed)
            span.set_attribute("crawl.errors", result.errors)

        logger.info(
            "Follow crawl complete",
            users_processed=result.users_processed,
            follows_added=result.follows_added,
            follows_removed=result.follows_removed,
            errors=result.errors,
            duration_ms=result.duration_ms,
        )
        return result

    async def _sync_repo(self, repo: TrackedRepo, result: FollowSessionResult) -> None:
        result.users_processed += 1
        stage = "resolve"
        try:
            server_url = await self._endpoints.resolve_hosting_server(repo.did)
            stage = "fetch"
            follows = await self.fetch_follows(server_url, repo.did)
            stage = "reconcile"
            sync = await self._reconciler.sync_follows(repo.did, follows)
            result.follows_added += sync.added
            result.follows_removed += sync.removed
            self._metrics.record_repo_crawl(SESSION, True)
        except Exception as e:
            result.errors += 1
            self._metrics.record_error(stage, type(e).__name__)
            self._metrics.record_repo_crawl(SESSION, False)
            logger.warning(
                "Follow sync skipped",
                did=repo.did,
                stage=stage,
                error_type=type(e).__name__,
                error=str(e),
            )
        finally:
            try:
                await self._registry.mark_follow_crawled(repo.did, datetime.now(timezone.utc))
            except Exception as e:
                logger.error("Failed to advance follow crawl timestamp", did=repo.did, error=str(e))

    async def fetch_follows(self, server_url: str, did: str) -> dict[str, datetime | None]:
        """
        Read the complete follow collection of a repo.

        Raises:
            HTTPClientError: Any page failed to load
            IncompleteFollowListing: More pages remain after the page cap
        """
        follows: dict[str, datetime | None] = {}
        cursor: str | None = None

        for page_number in range(self._max_pages):
            if page_number > 0 and self._page_delay > 0:
                await asyncio.sleep(self._page_delay)

            page = await self._client.list_records(
                server_url, did, self._collection, limit=self._page_size, cursor=cursor
            )
            for subject, created_at in parse_follow_records(page.records).items():
                _keep_earliest(follows, subject, created_at)

            cursor = page.cursor
            if not cursor or not page.records:
                return follows

        raise IncompleteFollowListing(
            f"Follow listing for {did} exceeded {self._max_pages} pages"
        )
