"""Shared fixtures for check-in repository tests.

``FakeCheckinDatabase`` is an in-memory stand-in for ``Database`` that
understands the check-in store's SQL statements, including the upsert's
conflict handling: content columns take the incoming value and the
``COALESCE`` columns keep the stored value when the incoming one is NULL.
"""

import copy
from datetime import datetime, timezone

import pytest

from anchor_indexer.checkins import repository as sql
from tests.conftest import AUTHOR_DID

# Positional order of UPSERT_SQL's parameters
UPSERT_COLUMNS = (
    "uri", "id", "author_did", "text", "created_at", "latitude", "longitude",
    "venue_name", "category", "category_group", "category_icon",
    "address_street", "address_locality", "address_region", "address_country",
    "address_postal_code", "address_ref_uri", "address_ref_cid", "address_resolved_at",
    "source_lexicon", "indexed_at",
)

REPLACED_ON_CONFLICT = {"text", "created_at", "latitude", "longitude", "source_lexicon", "indexed_at"}
KEPT_ON_CONFLICT = {"uri", "id", "author_did"}

APPLIED_ADDRESS_COLUMNS = (
    "venue_name", "address_street", "address_locality", "address_region",
    "address_country", "address_postal_code",
)


def _backlog_order(row):
    # address_attempted_at ASC NULLS FIRST, indexed_at ASC
    attempted = row["address_attempted_at"]
    return (attempted is not None, attempted or row["indexed_at"], row["indexed_at"])


class FakeCheckinDatabase:
    def __init__(self):
        self.rows: dict[str, dict] = {}

    async def execute(self, query, *args):
        return self.run(query, args)

    async def fetch(self, query, *args):
        return self.run(query, args)

    async def fetchrow(self, query, *args):
        return self.run(query, args)

    async def fetchval(self, query, *args):
        return self.run(query, args)

    def run(self, query, args):
        if query is sql.UPSERT_SQL:
            incoming = dict(zip(UPSERT_COLUMNS, args))
            existing = self.rows.get(incoming["uri"])
            if existing is None:
                self.rows[incoming["uri"]] = {**incoming, "address_attempted_at": None}
                return True
            for column, value in incoming.items():
                if column in KEPT_ON_CONFLICT:
                    continue
                if column in REPLACED_ON_CONFLICT or value is not None:
                    existing[column] = value
            return False

        if query is sql.APPLY_ADDRESS_SQL:
            uri, *fields, resolved_at = args
            row = self.rows.get(uri)
            if row is None:
                return "UPDATE 0"
            for column, value in zip(APPLIED_ADDRESS_COLUMNS, fields):
                if value is not None:
                    row[column] = value
            row["address_resolved_at"] = resolved_at
            row["address_attempted_at"] = resolved_at
            return "UPDATE 1"

        if query is sql.MARK_ADDRESS_ATTEMPTED_SQL:
            row = self.rows.get(args[0])
            if row is None:
                return "UPDATE 0"
            row["address_attempted_at"] = args[1]
            return "UPDATE 1"

        if query is sql._SELECT_BY_URI_SQL:
            return copy.deepcopy(self.rows.get(args[0]))

        if query is sql._COUNT_SQL:
            return len(self.rows)

        if query is sql._LIST_UNRESOLVED_SQL:
            backlog = [
                r for r in self.rows.values()
                if r["address_ref_uri"] is not None and r["address_resolved_at"] is None
            ]
            backlog.sort(key=_backlog_order)
            return copy.deepcopy(backlog[: args[0]])

        raise AssertionError(f"unexpected statement: {query.strip().splitlines()[0]}")


@pytest.fixture
def fake_db() -> FakeCheckinDatabase:
    return FakeCheckinDatabase()


@pytest.fixture
def sample_db_row() -> dict:
    """A dict mimicking an asyncpg Record for a check-in."""
    return {
        "uri": f"at://{AUTHOR_DID}/app.dropanchor.checkin/3klegacy",
        "id": "3klegacy",
        "author_did": AUTHOR_DID,
        "text": "Lunch",
        "created_at": datetime(2024, 11, 3, 9, 30, tzinfo=timezone.utc),
        "latitude": 51.5,
        "longitude": -0.12,
        "venue_name": None,
        "category": None,
        "category_group": None,
        "category_icon": None,
        "address_street": None,
        "address_locality": None,
        "address_region": None,
        "address_country": None,
        "address_postal_code": None,
        "address_ref_uri": "at://did:plc:venues/community.lexicon.location.address/pub1",
        "address_ref_cid": "bafyreiaddress",
        "address_resolved_at": None,
        "address_attempted_at": None,
        "source_lexicon": "anchor",
        "indexed_at": datetime(2025, 1, 2, tzinfo=timezone.utc),
    }
