"""
Check-in repository for the canonical store.

Upserts are keyed by the record URI, so re-crawling the same record any
number of times leaves exactly one row. On conflict the content columns
take the incoming values, while venue and address columns keep the stored
value whenever the incoming one is NULL (``COALESCE``). A re-crawl of a
pointer-only record therefore never wipes an address the backfill job has
already filled in.
"""

import logging
from datetime import datetime
from typing import Any

from anchor_indexer.ingestion.schemas import AddressFields, CanonicalCheckin, SourceLexicon
from anchor_indexer.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS checkins (
    uri                  TEXT PRIMARY KEY,
    id                   TEXT NOT NULL,
    author_did           TEXT NOT NULL,
    text                 TEXT NOT NULL DEFAULT '',
    created_at           TIMESTAMPTZ NOT NULL,
    latitude             DOUBLE PRECISION NOT NULL,
    longitude            DOUBLE PRECISION NOT NULL,
    venue_name           TEXT,
    category             TEXT,
    category_group       TEXT,
    category_icon        TEXT,
    address_street       TEXT,
    address_locality     TEXT,
    address_region       TEXT,
    address_country      TEXT,
    address_postal_code  TEXT,
    address_ref_uri      TEXT,
    address_ref_cid      TEXT,
    address_resolved_at  TIMESTAMPTZ,
    address_attempted_at TIMESTAMPTZ,
    source_lexicon       TEXT NOT NULL,
    indexed_at           TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CHECK (latitude BETWEEN -90 AND 90),
    CHECK (longitude BETWEEN -180 AND 180)
);

CREATE INDEX IF NOT EXISTS idx_checkins_created_at
    ON checkins(created_at DESC);
CREATE INDEX IF NOT EXISTS idx_checkins_author
    ON checkins(author_did, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_checkins_unresolved_address
    ON checkins(address_attempted_at ASC NULLS FIRST)
    WHERE address_ref_uri IS NOT NULL AND address_resolved_at IS NULL;
"""

UPSERT_SQL = """
INSERT INTO checkins (
    uri, id, author_did, text, created_at, latitude, longitude,
    venue_name, category, category_group, category_icon,
    address_street, address_locality, address_region, address_country,
    address_postal_code, address_ref_uri, address_ref_cid, address_resolved_at,
    source_lexicon, indexed_at
) VALUES (
    $1, $2, $3, $4, $5, $6, $7,
    $8, $9, $10, $11,
    $12, $13, $14, $15,
    $16, $17, $18, $19,
    $20, $21
)
ON CONFLICT (uri) DO UPDATE SET
    text = EXCLUDED.text,
    created_at = EXCLUDED.created_at,
    latitude = EXCLUDED.latitude,
    longitude = EXCLUDED.longitude,
    venue_name = COALESCE(EXCLUDED.venue_name, checkins.venue_name),
    category = COALESCE(EXCLUDED.category, checkins.category),
    category_group = COALESCE(EXCLUDED.category_group, checkins.category_group),
    category_icon = COALESCE(EXCLUDED.category_icon, checkins.category_icon),
    address_street = COALESCE(EXCLUDED.address_street, checkins.address_street),
    address_locality = COALESCE(EXCLUDED.address_locality, checkins.address_locality),
    address_region = COALESCE(EXCLUDED.address_region, checkins.address_region),
    address_country = COALESCE(EXCLUDED.address_country, checkins.address_country),
    address_postal_code = COALESCE(EXCLUDED.address_postal_code, checkins.address_postal_code),
    address_ref_uri = COALESCE(EXCLUDED.address_ref_uri, checkins.address_ref_uri),
    address_ref_cid = COALESCE(EXCLUDED.address_ref_cid, checkins.address_ref_cid),
    address_resolved_at = COALESCE(EXCLUDED.address_resolved_at, checkins.address_resolved_at),
    source_lexicon = EXCLUDED.source_lexicon,
    indexed_at = EXCLUDED.indexed_at
RETURNING (xmax = 0) AS inserted
"""

APPLY_ADDRESS_SQL = """
UPDATE checkins SET
    venue_name = COALESCE($2, venue_name),
    address_street = COALESCE($3, address_street),
    address_locality = COALESCE($4, address_locality),
    address_region = COALESCE($5, address_region),
    address_country = COALESCE($6, address_country),
    address_postal_code = COALESCE($7, address_postal_code),
    address_resolved_at = $8,
    address_attempted_at = $8
WHERE uri = $1
"""

_SELECT_BY_URI_SQL = "SELECT * FROM checkins WHERE uri = $1"

_LIST_RECENT_SQL = """
SELECT * FROM checkins
WHERE ($2::timestamptz IS NULL OR created_at < $2)
ORDER BY created_at DESC
LIMIT $1
"""

_LIST_BY_AUTHOR_SQL = """
SELECT * FROM checkins
WHERE author_did = $1 AND ($3::timestamptz IS NULL OR created_at < $3)
ORDER BY created_at DESC
LIMIT $2
"""

_LIST_UNRESOLVED_SQL = """
SELECT * FROM checkins
WHERE address_ref_uri IS NOT NULL AND address_resolved_at IS NULL
ORDER BY address_attempted_at ASC NULLS FIRST, indexed_at ASC
LIMIT $1
"""

MARK_ADDRESS_ATTEMPTED_SQL = """
UPDATE checkins SET address_attempted_at = $2 WHERE uri = $1
"""

_COUNT_SQL = "SELECT COUNT(*) FROM checkins"
_COUNT_BY_AUTHOR_SQL = "SELECT COUNT(*) FROM checkins WHERE author_did = $1"


def _checkin_params(checkin: CanonicalCheckin) -> tuple:
    return (
        checkin.uri,
        checkin.id,
        checkin.author_did,
        checkin.text,
        checkin.created_at,
        checkin.latitude,
        checkin.longitude,
        checkin.venue_name,
        checkin.category,
        checkin.category_group,
        checkin.category_icon,
        checkin.address_street,
        checkin.address_locality,
        checkin.address_region,
        checkin.address_country,
        checkin.address_postal_code,
        checkin.address_ref_uri,
        checkin.address_ref_cid,
        checkin.address_resolved_at,
        checkin.source_lexicon.value,
        checkin.indexed_at,
    )


def _row_to_checkin(row: Any) -> CanonicalCheckin:
    """Convert an asyncpg Record to a CanonicalCheckin."""
    return CanonicalCheckin(
        id=row["id"],
        uri=row["uri"],
        author_did=row["author_did"],
        text=row["text"],
        created_at=row["created_at"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        venue_name=row["venue_name"],
        category=row["category"],
        category_group=row["category_group"],
        category_icon=row["category_icon"],
        address_street=row["address_street"],
        address_locality=row["address_locality"],
        address_region=row["address_region"],
        address_country=row["address_country"],
        address_postal_code=row["address_postal_code"],
        address_ref_uri=row["address_ref_uri"],
        address_ref_cid=row["address_ref_cid"],
        address_resolved_at=row["address_resolved_at"],
        source_lexicon=SourceLexicon(row["source_lexicon"]),
        indexed_at=row["indexed_at"],
    )


class CheckinRepository:
    """
    Repository for canonical check-in storage and retrieval.

    Provides:
    - Idempotent upsert keyed by URI
    - Recent and per-author feeds with a ``created_at`` cursor
    - Pointer-backlog queries for the address backfill job
    """

    def __init__(self, database: Database):
        self._db = database

    async def create_table(self) -> None:
        """Create the checkins table and indexes (idempotent)."""
        await self._db.execute(_CREATE_TABLE_SQL)
        logger.info("Checkins table ensured")

    async def upsert(self, checkin: CanonicalCheckin) -> bool:
        """
        Insert or update a check-in.

        Returns:
            True if a new row was inserted, False if an existing row was updated
        """
        inserted = await self._db.fetchval(UPSERT_SQL, *_checkin_params(checkin))
        return bool(inserted)

    async def get_by_uri(self, uri: str) -> CanonicalCheckin | None:
        row = await self._db.fetchrow(_SELECT_BY_URI_SQL, uri)
        return _row_to_checkin(row) if row else None

    async def list_recent(
        self,
        limit: int = 50,
        before: datetime | None = None,
    ) -> list[CanonicalCheckin]:
        """
        Most recent check-ins across all authors.

        Args:
            limit: Maximum rows to return
            before: Only return check-ins created strictly before this time
        """
        rows = await self._db.fetch(_LIST_RECENT_SQL, limit, before)
        return [_row_to_checkin(r) for r in rows]

    async def list_by_author(
        self,
        author_did: str,
        limit: int = 50,
        before: datetime | None = None,
    ) -> list[CanonicalCheckin]:
        """Most recent check-ins for one author."""
        rows = await self._db.fetch(_LIST_BY_AUTHOR_SQL, author_did, limit, before)
        return [_row_to_checkin(r) for r in rows]

    async def count(self, author_did: str | None = None) -> int:
        if author_did:
            return await self._db.fetchval(_COUNT_BY_AUTHOR_SQL, author_did) or 0
        return await self._db.fetchval(_COUNT_SQL) or 0

    async def list_unresolved_pointers(self, limit: int = 50) -> list[CanonicalCheckin]:
        """Check-ins carrying an address pointer that has never been resolved, oldest first."""
        rows = await self._db.fetch(_LIST_UNRESOLVED_SQL, limit)
        return [_row_to_checkin(r) for r in rows]

    async def apply_address(
        self,
        uri: str,
        address: AddressFields,
        resolved_at: datetime,
    ) -> bool:
        """
        Write resolved address fields onto a stored check-in.

        Null fields in ``address`` keep the stored value.

        Returns:
            True if the check-in exists and was updated
        """
        result = await self._db.execute(
            APPLY_ADDRESS_SQL,
            uri,
            address.name,
            address.street,
            address.locality,
            address.region,
            address.country,
            address.postal_code,
            resolved_at,
        )
        return result.endswith(" 1")

    async def mark_address_attempted(self, uri: str, attempted_at: datetime) -> None:
        """Move a check-in whose pointer failed to resolve to the back of the backlog."""
        await self._db.execute(MARK_ADDRESS_ATTEMPTED_SQL, uri, attempted_at)
