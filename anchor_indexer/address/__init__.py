"""Address cross-reference resolution and backfill."""

from anchor_indexer.address.backfill import AddressBackfillJob, BackfillResult
from anchor_indexer.address.resolver import AddressResolver

__all__ = ["AddressBackfillJob", "AddressResolver", "BackfillResult"]
