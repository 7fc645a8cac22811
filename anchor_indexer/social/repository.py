"""
Follow-edge storage.

Edges are keyed by ``(follower_did, following_did)``. Inserts ignore
existing edges, so an edge's ``created_at`` survives every re-sync.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from anchor_indexer.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS follow_edges (
    follower_did   TEXT NOT NULL,
    following_did  TEXT NOT NULL,
    created_at     TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    synced_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (follower_did, following_did)
);

CREATE INDEX IF NOT EXISTS idx_follow_edges_following
    ON follow_edges(following_did);
"""

_SELECT_FOLLOWING_SQL = """
SELECT following_did FROM follow_edges WHERE follower_did = $1
"""

INSERT_EDGES_SQL = """
INSERT INTO follow_edges (follower_did, following_did, created_at, synced_at)
SELECT $1, following_did, COALESCE(created_at, $4), $4
FROM unnest($2::text[], $3::timestamptz[]) AS t(following_did, created_at)
ON CONFLICT (follower_did, following_did) DO NOTHING
"""

DELETE_EDGES_SQL = """
DELETE FROM follow_edges
WHERE follower_did = $1 AND following_did = ANY($2::text[])
"""

_STATS_SQL = """
SELECT
    COUNT(*) AS total_edges,
    COUNT(DISTINCT follower_did) AS followers
FROM follow_edges
"""


@dataclass
class FollowStats:
    total_edges: int = 0
    followers: int = 0


def _rowcount(status: Any) -> int:
    try:
        return int(str(status).split()[-1])
    except (IndexError, ValueError):
        return 0


class FollowRepository:
    """Repository for follow edges."""

    def __init__(self, database: Database):
        self._db = database

    async def create_table(self) -> None:
        await self._db.execute(_CREATE_TABLE_SQL)
        logger.info("Follow edges table ensured")

    async def get_following(self, follower_did: str) -> set[str]:
        """The stored set of DIDs ``follower_did`` follows."""
        rows = await self._db.fetch(_SELECT_FOLLOWING_SQL, follower_did)
        return {row["following_did"] for row in rows}

    async def add_follows(
        self,
        follower_did: str,
        edges: list[tuple[str, datetime | None]],
        synced_at: datetime,
    ) -> int:
        """
        Insert edges, ignoring ones that already exist.

        Args:
            follower_did: Repo owning the follow records
            edges: (following_did, created_at) pairs; a missing created_at
                defaults to ``synced_at``
            synced_at: Time of this sync

        Returns:
            Number of edges actually inserted
        """
        if not edges:
            return 0
        targets = [did for did, _ in edges]
        created = [created_at for _, created_at in edges]
        status = await self._db.execute(
            INSERT_EDGES_SQL, follower_did, targets, created, synced_at
        )
        return _rowcount(status)

    async def remove_follows(self, follower_did: str, following_dids: list[str]) -> int:
        """Delete the given edges. Returns the number deleted."""
        if not following_dids:
            return 0
        status = await self._db.execute(DELETE_EDGES_SQL, follower_did, following_dids)
        return _rowcount(status)

    async def stats(self) -> FollowStats:
        row = await self._db.fetchrow(_STATS_SQL)
        if not row:
            return FollowStats()
        return FollowStats(total_edges=row["total_edges"] or 0, followers=row["followers"] or 0)
