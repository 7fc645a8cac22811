"""Storage layer for the indexer's durable state."""

from anchor_indexer.storage.database import Database

__all__ = ["Database"]
