"""
Database repository for tracked repos and hosting-server reference counts.

``tracked_repos`` and ``hosting_servers`` form a derived-count relationship:
every hosting server's ``tracked_repo_count`` must equal the number of
tracked repos pointing at it. Every operation that writes both tables runs
as a single transaction, so a crash between the two writes rolls back both.

The increment happens only when the repo row was actually inserted. First
registration is detected with ``INSERT ... ON CONFLICT DO NOTHING
RETURNING``, which only one of any number of concurrent callers can win, so
repeated or racing registrations of the same DID never re-increment.
``repair_server_counts`` recomputes the counts from scratch for operators.
"""

import logging
from datetime import datetime

from anchor_indexer.errors import ConsistencyError
from anchor_indexer.registry.schemas import HostingServerRef, RegistryStats, TrackedRepo
from anchor_indexer.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS tracked_repos (
    did                    TEXT PRIMARY KEY,
    handle                 TEXT NOT NULL,
    hosting_server_url     TEXT NOT NULL,
    registered_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    last_checkin_crawl_at  TIMESTAMPTZ,
    last_follow_crawl_at   TIMESTAMPTZ
);

CREATE INDEX IF NOT EXISTS idx_tracked_repos_server
    ON tracked_repos(hosting_server_url);
CREATE INDEX IF NOT EXISTS idx_tracked_repos_checkin_crawl
    ON tracked_repos(last_checkin_crawl_at ASC NULLS FIRST);

CREATE TABLE IF NOT EXISTS hosting_servers (
    server_url          TEXT PRIMARY KEY,
    tracked_repo_count  INTEGER NOT NULL DEFAULT 1 CHECK (tracked_repo_count >= 0),
    last_crawled_at     TIMESTAMPTZ,
    created_at          TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

_INSERT_REPO_SQL = """
INSERT INTO tracked_repos (did, handle, hosting_server_url)
VALUES ($1, $2, $3)
ON CONFLICT (did) DO NOTHING
RETURNING did
"""

_LOCK_REPO_SQL = """
SELECT hosting_server_url FROM tracked_repos WHERE did = $1 FOR UPDATE
"""

_UPDATE_REPO_SQL = """
UPDATE tracked_repos SET handle = $2, hosting_server_url = $3 WHERE did = $1
"""

_DELETE_REPO_SQL = """
DELETE FROM tracked_repos WHERE did = $1 RETURNING hosting_server_url
"""

_INCREMENT_SERVER_SQL = """
INSERT INTO hosting_servers (server_url, tracked_repo_count)
VALUES ($1, 1)
ON CONFLICT (server_url) DO UPDATE SET
    tracked_repo_count = hosting_servers.tracked_repo_count + 1
"""

_DECREMENT_SERVER_SQL = """
UPDATE hosting_servers
SET tracked_repo_count = GREATEST(tracked_repo_count - 1, 0)
WHERE server_url = $1
"""

_DELETE_EMPTY_SERVER_SQL = """
DELETE FROM hosting_servers WHERE server_url = $1 AND tracked_repo_count <= 0
"""

_SELECT_REPO_SQL = "SELECT * FROM tracked_repos WHERE did = $1"

_LIST_FOR_CRAWL_SQL = """
SELECT * FROM tracked_repos
ORDER BY last_checkin_crawl_at ASC NULLS FIRST, registered_at ASC
"""

_LIST_FOR_FOLLOW_CRAWL_SQL = """
SELECT * FROM tracked_repos
ORDER BY last_follow_crawl_at ASC NULLS FIRST, registered_at ASC
"""

_LIST_SERVERS_FOR_CRAWL_SQL = """
SELECT * FROM hosting_servers
WHERE tracked_repo_count > 0
ORDER BY last_crawled_at ASC NULLS FIRST
"""

_SELECT_SERVER_SQL = "SELECT * FROM hosting_servers WHERE server_url = $1"

_MARK_CHECKIN_CRAWLED_SQL = """
UPDATE tracked_repos SET last_checkin_crawl_at = $2 WHERE did = $1
"""

_MARK_FOLLOW_CRAWLED_SQL = """
UPDATE tracked_repos SET last_follow_crawl_at = $2 WHERE did = $1
"""

_MARK_SERVER_CRAWLED_SQL = """
UPDATE hosting_servers SET last_crawled_at = $2 WHERE server_url = $1
"""

_REPAIR_COUNTS_SQL = """
INSERT INTO hosting_servers (server_url, tracked_repo_count)
SELECT hosting_server_url, COUNT(*) FROM tracked_repos GROUP BY hosting_server_url
ON CONFLICT (server_url) DO UPDATE SET
    tracked_repo_count = EXCLUDED.tracked_repo_count
WHERE hosting_servers.tracked_repo_count <> EXCLUDED.tracked_repo_count
"""

_DELETE_ORPHAN_SERVERS_SQL = """
DELETE FROM hosting_servers h
WHERE NOT EXISTS (
    SELECT 1 FROM tracked_repos t WHERE t.hosting_server_url = h.server_url
)
"""

_STATS_SQL = """
SELECT
    (SELECT COUNT(*) FROM tracked_repos) AS total_repos,
    (SELECT COUNT(*) FROM hosting_servers WHERE tracked_repo_count > 0) AS total_servers,
    (SELECT COUNT(*) FROM tracked_repos
        WHERE last_checkin_crawl_at > NOW() - INTERVAL '1 hour') AS recently_crawled
"""


def normalize_server_url(server_url: str) -> str:
    """Canonical form for hosting-server URLs (scheme required, no trailing slash)."""
    url = (server_url or "").strip().rstrip("/")
    if not url.startswith(("https://", "http://")):
        raise ValueError(f"Invalid hosting server URL: {server_url!r}")
    return url


def _rowcount(status: str) -> int:
    """Parse the affected-row count from an asyncpg status string."""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


def _record_to_repo(record) -> TrackedRepo:
    """Convert an asyncpg Record to a TrackedRepo dataclass."""
    return TrackedRepo(
        did=record["did"],
        handle=record["handle"],
        hosting_server_url=record["hosting_server_url"],
        registered_at=record["registered_at"],
        last_checkin_crawl_at=record["last_checkin_crawl_at"],
        last_follow_crawl_at=record["last_follow_crawl_at"],
    )


def _record_to_server(record) -> HostingServerRef:
    """Convert an asyncpg Record to a HostingServerRef dataclass."""
    return HostingServerRef(
        server_url=record["server_url"],
        tracked_repo_count=record["tracked_repo_count"],
        last_crawled_at=record["last_crawled_at"],
        created_at=record["created_at"],
    )


class RegistryRepository:
    """Tracked-repo and hosting-server persistence."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_tables(self) -> None:
        """Create the registry tables and indexes (idempotent)."""
        await self._db.execute(_CREATE_TABLES_SQL)
        logger.info("Registry tables ensured")

    async def register(self, did: str, handle: str, server_url: str) -> bool:
        """
        Track a repo, counting its hosting server on first registration only.

        Re-registering an already-tracked DID refreshes its handle. If the
        DID moved to a different server, its reference moves too.

        Returns:
            True if the DID was newly registered

        Raises:
            ValueError: Invalid server URL
            ConsistencyError: The paired write failed and was rolled back
        """
        server_url = normalize_server_url(server_url)

        try:
            async with self._db.transaction() as conn:
                inserted = await conn.fetchval(_INSERT_REPO_SQL, did, handle, server_url)

                if inserted is not None:
                    await conn.execute(_INCREMENT_SERVER_SQL, server_url)
                    created = True
                else:
                    previous = await conn.fetchval(_LOCK_REPO_SQL, did)
                    await conn.execute(_UPDATE_REPO_SQL, did, handle, server_url)
                    if previous is not None and previous != server_url:
                        await conn.execute(_DECREMENT_SERVER_SQL, previous)
                        await conn.execute(_DELETE_EMPTY_SERVER_SQL, previous)
                        await conn.execute(_INCREMENT_SERVER_SQL, server_url)
                        logger.info("Repo %s moved from %s to %s", did, previous, server_url)
                    created = False
        except Exception as e:
            logger.error("Failed to register %s on %s: %s", did, server_url, e)
            raise ConsistencyError(f"Registration of {did} rolled back: {e}") from e

        logger.info(
            "%s repo %s (%s) on %s",
            "Registered" if created else "Refreshed", handle, did, server_url,
        )
        return created

    async def remove(self, did: str) -> bool:
        """
        Stop tracking a repo and release its hosting-server reference.

        Returns:
            True if the DID was tracked

        Raises:
            ConsistencyError: The paired write failed and was rolled back
        """
        try:
            async with self._db.transaction() as conn:
                server_url = await conn.fetchval(_DELETE_REPO_SQL, did)
                if server_url is None:
                    return False
                await conn.execute(_DECREMENT_SERVER_SQL, server_url)
                await conn.execute(_DELETE_EMPTY_SERVER_SQL, server_url)
        except Exception as e:
            logger.error("Failed to remove %s: %s", did, e)
            raise ConsistencyError(f"Removal of {did} rolled back: {e}") from e

        logger.info("Removed repo %s from %s", did, server_url)
        return True

    async def repair_server_counts(self) -> int:
        """
        Recompute every hosting-server count from the tracked repos.

        Returns:
            Number of hosting-server rows corrected or deleted
        """
        try:
            async with self._db.transaction() as conn:
                corrected = _rowcount(await conn.execute(_REPAIR_COUNTS_SQL))
                deleted = _rowcount(await conn.execute(_DELETE_ORPHAN_SERVERS_SQL))
        except Exception as e:
            raise ConsistencyError(f"Reference-count repair rolled back: {e}") from e

        if corrected or deleted:
            logger.warning(
                "Repaired hosting-server counts: %d corrected, %d orphans deleted",
                corrected, deleted,
            )
        return corrected + deleted

    async def get(self, did: str) -> TrackedRepo | None:
        """Fetch a tracked repo by DID."""
        row = await self._db.fetchrow(_SELECT_REPO_SQL, did)
        return _record_to_repo(row) if row else None

    async def get_server(self, server_url: str) -> HostingServerRef | None:
        """Fetch a hosting-server reference by URL."""
        row = await self._db.fetchrow(_SELECT_SERVER_SQL, server_url)
        return _record_to_server(row) if row else None

    async def list_for_crawl(self) -> list[TrackedRepo]:
        """Tracked repos, least recently crawled for check-ins first (never-crawled first of all)."""
        rows = await self._db.fetch(_LIST_FOR_CRAWL_SQL)
        return [_record_to_repo(r) for r in rows]

    async def list_for_follow_crawl(self) -> list[TrackedRepo]:
        """Tracked repos, least recently crawled for follows first."""
        rows = await self._db.fetch(_LIST_FOR_FOLLOW_CRAWL_SQL)
        return [_record_to_repo(r) for r in rows]

    async def list_servers_for_crawl(self) -> list[HostingServerRef]:
        """Hosting servers still referenced, least recently crawled first."""
        rows = await self._db.fetch(_LIST_SERVERS_FOR_CRAWL_SQL)
        return [_record_to_server(r) for r in rows]

    async def mark_checkin_crawled(self, did: str, at: datetime) -> None:
        await self._db.execute(_MARK_CHECKIN_CRAWLED_SQL, did, at)

    async def mark_follow_crawled(self, did: str, at: datetime) -> None:
        await self._db.execute(_MARK_FOLLOW_CRAWLED_SQL, did, at)

    async def mark_server_crawled(self, server_url: str, at: datetime) -> None:
        await self._db.execute(_MARK_SERVER_CRAWLED_SQL, server_url, at)

    async def stats(self) -> RegistryStats:
        """Repo and server totals for operators."""
        row = await self._db.fetchrow(_STATS_SQL)
        if not row:
            return RegistryStats()
        return RegistryStats(
            total_repos=row["total_repos"] or 0,
            total_servers=row["total_servers"] or 0,
            recently_crawled=row["recently_crawled"] or 0,
        )
