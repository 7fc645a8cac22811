"""
Address backfill job.

Resolves address pointers for stored check-ins whose address has never been
filled in. Runs separately from crawling and reads, so a slow or failing
address server never adds latency to either. Re-running is safe: resolved
check-ins drop out of the backlog, unresolved ones are retried.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog

from anchor_indexer.address.resolver import AddressResolver
from anchor_indexer.checkins.repository import CheckinRepository
from anchor_indexer.config.settings import get_settings
from anchor_indexer.observability.metrics import get_metrics

logger = structlog.get_logger(__name__)


@dataclass
class BackfillResult:
    """Outcome of one backfill run."""

    candidates: int = 0
    resolved: int = 0
    failed: int = 0
    dry_run: bool = False
    duration_ms: int = 0
    resolved_uris: list[str] = field(default_factory=list)


class AddressBackfillJob:
    """
    Fill in address fields for pointer-only check-ins.

    Usage:
        job = AddressBackfillJob(CheckinRepository(db), address_resolver)
        result = await job.run(limit=100)
    """

    def __init__(self, checkins: CheckinRepository, resolver: AddressResolver):
        self._checkins = checkins
        self._resolver = resolver

    async def run(self, limit: int | None = None, dry_run: bool = False) -> BackfillResult:
        """
        Resolve up to ``limit`` outstanding pointers.

        Args:
            limit: Maximum check-ins to process (default from settings)
            dry_run: Resolve but do not write anything
        """
        limit = limit or get_settings().address_backfill_limit
        start = time.monotonic()
        result = BackfillResult(dry_run=dry_run)

        backlog = await self._checkins.list_unresolved_pointers(limit)
        result.candidates = len(backlog)

        for checkin in backlog:
            pointer = checkin.address_pointer
            if pointer is None:
                continue

            address = await self._resolver.resolve_address(pointer, checkin.author_did)
            if address is None:
                result.failed += 1
                if not dry_run:
                    await self._checkins.mark_address_attempted(
                        checkin.uri, datetime.now(timezone.utc)
                    )
                continue

            if not dry_run:
                await self._checkins.apply_address(
                    checkin.uri, address, datetime.now(timezone.utc)
                )
            result.resolved += 1
            result.resolved_uris.append(checkin.uri)

        elapsed = time.monotonic() - start
        result.duration_ms = int(elapsed * 1000)
        get_metrics().record_session("address_backfill", elapsed)

        logger.info(
            "Address backfill complete",
            candidates=result.candidates,
            resolved=result.resolved,
            failed=result.failed,
            dry_run=dry_run,
            duration_ms=result.duration_ms,
        )
        return result
