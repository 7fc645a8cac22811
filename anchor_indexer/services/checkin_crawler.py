"""
Check-in crawl session.

Walks the tracked-repo registry least-recently-crawled first and pulls the
newest page of every supported check-in collection from each repo's hosting
server. Repos are processed in fixed-size batches: the repos in one batch
are fetched concurrently, and a fixed delay separates consecutive batches to
bound the aggregate request rate.

Failure handling:
- A per-repo failure (resolution, network, malformed payload, unexpected
  status) is caught at the repo boundary and counted. It never aborts the
  batch or the session.
- Every repo's ``last_checkin_crawl_at`` advances whatever happened, so a
  persistently unreachable server cannot starve the rest of the registry.
- A record that fails to transform or store is skipped and counted; the
  rest of the page is still processed.
- Only a failure to load the tracked-repo list fails the session.

Legacy check-ins that carry only an address pointer are stored as-is. The
address backfill job resolves them later, so a slow address server never
holds up a crawl batch.
"""

import asyncio
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

import structlog

from anchor_indexer.checkins.repository import CheckinRepository
from anchor_indexer.config.settings import get_settings
from anchor_indexer.errors import (
    ConsistencyError,
    HTTPClientError,
    RemoteClientError,
    RemoteNotFoundError,
    ResolutionFailure,
)
from anchor_indexer.identity.resolver import EndpointResolver
from anchor_indexer.ingestion.adapters import AdapterRegistry
from anchor_indexer.ingestion.http_client import XrpcClient
from anchor_indexer.observability.metrics import get_metrics
from anchor_indexer.observability.tracing import get_tracer, traced
from anchor_indexer.registry.repository import RegistryRepository
from anchor_indexer.registry.schemas import TrackedRepo

logger = structlog.get_logger(__name__)

SESSION = "checkins"


@dataclass
class CrawlSessionResult:
    """Summary of one check-in crawl session."""

    success: bool
    records_processed: int = 0
    users_processed: int = 0
    errors: int = 0
    rejected: int = 0
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RepoCrawlOutcome:
    """What happened to one repo in a session."""

    did: str
    server_url: str | None = None
    records: int = 0
    rejected: int = 0
    failed: int = 0
    error: str | None = None


def _is_absent_collection(error: HTTPClientError) -> bool:
    """Hosting servers report a collection the repo never wrote to as 404 or 400."""
    if isinstance(error, RemoteNotFoundError):
        return True
    return isinstance(error, RemoteClientError) and error.status_code == 400


class CheckinCrawler:
    """
    Run check-in crawl sessions over the tracked-repo registry.

    Usage:
        async with XrpcClient() as client:
            crawler = CheckinCrawler(registry, checkins, client)
            result = await crawler.run_session()
    """

    def __init__(
        self,
        registry: RegistryRepository,
        checkins: CheckinRepository,
        client: XrpcClient,
        endpoints: EndpointResolver | None = None,
        adapters: AdapterRegistry | None = None,
        batch_size: int | None = None,
        batch_delay: float | None = None,
        page_size: int | None = None,
    ):
        settings = get_settings()
        self._registry = registry
        self._checkins = checkins
        self._client = client
        self._endpoints = endpoints or EndpointResolver(client)
        self._adapters = adapters or AdapterRegistry()
        self._batch_size = batch_size or settings.crawl_batch_size
        self._batch_delay = (
            settings.crawl_batch_delay_seconds if batch_delay is None else batch_delay
        )
        self._page_size = page_size or settings.crawl_page_size
        self._metrics = get_metrics()

    async def run_session(self) -> CrawlSessionResult:
        """
        Crawl every tracked repo once.

        Never raises for per-repo failures; they are folded into ``errors``.
        """
        start = time.monotonic()

        with traced(get_tracer(__name__), "crawl.checkins") as span:
            try:
                repos = await self._registry.list_for_crawl()
            except Exception as e:
                logger.error("Failed to load tracked repos", error=str(e))
                self._metrics.record_error("list_repos", type(e).__name__)
                return CrawlSessionResult(
                    success=False,
                    errors=1,
                    duration_ms=int((time.monotonic() - start) * 1000),
                )

            self._metrics.set_tracked_repos(len(repos))
            logger.info("Check-in crawl started", repos=len(repos), batch_size=self._batch_size)

            result = CrawlSessionResult(success=True)
            crawled_servers: set[str] = set()

            batches = [
                repos[i:i + self._batch_size]
                for i in range(0, len(repos), self._batch_size)
            ]
            for index, batch in enumerate(batches):
                outcomes = await asyncio.gather(
                    *(self._crawl_repo(repo) for repo in batch),
                    return_exceptions=True,
                )
                for repo, outcome in zip(batch, outcomes):
                    result.users_processed += 1
                    if isinstance(outcome, BaseException):
                        # _crawl_repo already contains its own failures
                        logger.error("Unexpected repo crawl failure", did=repo.did, error=str(outcome))
                        result.errors += 1
                        continue
                    result.records_processed += outcome.records
                    result.rejected += outcome.rejected
                    result.errors += outcome.failed
                    if outcome.error:
                        result.errors += 1
                    elif outcome.server_url:
                        crawled_servers.add(outcome.server_url)

                if index < len(batches) - 1 and self._batch_delay > 0:
                    await asyncio.sleep(self._batch_delay)

            now = datetime.now(timezone.utc)
            for server_url in sorted(crawled_servers):
                try:
                    await self._registry.mark_server_crawled(server_url, now)
                except Exception as e:
                    logger.warning("Failed to mark server crawled", server=server_url, error=str(e))

            elapsed = time.monotonic() - start
            result.duration_ms = int(elapsed * 1000)
            self._metrics.record_session(SESSION, elapsed)

            span.set_attribute("crawl.repos", result.users_processed)
            span.set_attribute("crawl.records", result.records_processed)
            span.set_attribute("crawl.errors", result.errors)

        logger.info(
            "Check-in crawl complete",
            users_processed=result.users_processed,
            records_processed=result.records_processed,
            rejected=result.rejected,
            errors=result.errors,
            duration_ms=result.duration_ms,
        )
        return result

    async def _crawl_repo(self, repo: TrackedRepo) -> RepoCrawlOutcome:
        """Crawl one repo. Failures are returned in the outcome, never raised."""
        outcome = RepoCrawlOutcome(did=repo.did)
        stage = "resolve"

        try:
            server_url = await self._endpoints.resolve_hosting_server(repo.did)
            outcome.server_url = server_url

            if server_url != repo.hosting_server_url:
                stage = "register"
                await self._follow_migration(repo, server_url)

            stage = "fetch"
            for collection in self._adapters.schema_ids:
                await self._crawl_collection(repo, server_url, collection, outcome)

        except ResolutionFailure as e:
            outcome.error = str(e)
            self._metrics.record_error(stage, type(e).__name__)
            logger.warning("Skipping repo: hosting server unresolved", did=repo.did, error=str(e))
        except Exception as e:
            outcome.error = str(e)
            self._metrics.record_error(stage, type(e).__name__)
            logger.warning(
                "Repo crawl failed",
                did=repo.did,
                stage=stage,
                error_type=type(e).__name__,
                error=str(e),
            )
        finally:
            try:
                await self._registry.mark_checkin_crawled(repo.did, datetime.now(timezone.utc))
            except Exception as e:
                logger.error("Failed to advance crawl timestamp", did=repo.did, error=str(e))

        self._metrics.record_repo_crawl(SESSION, outcome.error is None)
        return outcome

    async def _follow_migration(self, repo: TrackedRepo, server_url: str) -> None:
        """Move the registry entry to the repo's new hosting server."""
        logger.info(
            "Hosting server changed",
            did=repo.did,
            previous=repo.hosting_server_url,
            current=server_url,
        )
        try:
            await self._registry.register(repo.did, repo.handle, server_url)
        except ConsistencyError as e:
            # The old entry is intact; crawl the new server anyway and retry next pass
            self._metrics.record_error("register", type(e).__name__)
            logger.error("Failed to move repo to new server", did=repo.did, error=str(e))

    async def _crawl_collection(
        self,
        repo: TrackedRepo,
        server_url: str,
        collection: str,
        outcome: RepoCrawlOutcome,
    ) -> None:
        try:
            page = await self._client.list_records(
                server_url, repo.did, collection, limit=self._page_size
            )
        except (RemoteNotFoundError, RemoteClientError) as e:
            if _is_absent_collection(e):
                logger.debug("Collection absent", did=repo.did, collection=collection)
                return
            raise

        for record in page.records:
            try:
                checkin = self._adapters.transform(
                    record, repo.did, server_url, collection=collection
                )
                if checkin is None:
                    outcome.rejected += 1
                    continue
                await self._checkins.upsert(checkin)
            except Exception as e:
                outcome.failed += 1
                self._metrics.record_error("record", type(e).__name__)
                logger.warning(
                    "Record skipped",
                    did=repo.did,
                    collection=collection,
                    uri=record.get("uri") if isinstance(record, dict) else None,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                continue

            self._metrics.record_indexed(checkin.source_lexicon.value)
            outcome.records += 1
