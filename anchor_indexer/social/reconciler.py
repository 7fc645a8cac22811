"""
Follow-graph reconciliation.

The stored graph for a repo is brought in line with its current follow list
by applying only the delta: ``current - stored`` is inserted and
``stored - current`` is deleted, each in bounded batches. Edges present in
both sets are never touched, so their ``created_at`` provenance is kept.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TypeVar

import structlog

from anchor_indexer.config.settings import get_settings
from anchor_indexer.observability.metrics import get_metrics
from anchor_indexer.social.repository import FollowRepository

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class FollowSyncResult:
    """Delta applied for one repo."""

    added: int = 0
    removed: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


def chunked(items: Sequence[T], size: int) -> list[Sequence[T]]:
    """Split ``items`` into consecutive slices of at most ``size``."""
    if size < 1:
        raise ValueError("Batch size must be at least 1")
    return [items[i:i + size] for i in range(0, len(items), size)]


class FollowGraphReconciler:
    """
    Diff a repo's current follows against storage and apply the minimal delta.

    Usage:
        reconciler = FollowGraphReconciler(FollowRepository(db))
        result = await reconciler.sync_follows(did, {"did:plc:x": created_at})
    """

    def __init__(self, repository: FollowRepository, batch_size: int | None = None):
        self._repo = repository
        self._batch_size = batch_size or get_settings().follow_batch_size

    async def sync_follows(
        self,
        did: str,
        current: Mapping[str, datetime | None],
    ) -> FollowSyncResult:
        """
        Reconcile the stored follow set of ``did`` with ``current``.

        Args:
            did: Follower repo
            current: Complete current follow set, mapping followed DID to the
                follow record's creation time (None if unknown)

        Returns:
            FollowSyncResult with |current - stored| and |stored - current|
        """
        stored = await self._repo.get_following(did)
        wanted = set(current)

        # Sorted for deterministic batch contents
        to_add = sorted(wanted - stored)
        to_remove = sorted(stored - wanted)

        synced_at = datetime.now(timezone.utc)

        for batch in chunked(to_add, self._batch_size):
            await self._repo.add_follows(
                did, [(target, current[target]) for target in batch], synced_at
            )

        for batch in chunked(to_remove, self._batch_size):
            await self._repo.remove_follows(did, list(batch))

        result = FollowSyncResult(added=len(to_add), removed=len(to_remove))

        if result.changed:
            get_metrics().record_follow_changes(result.added, result.removed)
            logger.info(
                "Follows reconciled",
                did=did,
                added=result.added,
                removed=result.removed,
                unchanged=len(wanted & stored),
            )
        return result
