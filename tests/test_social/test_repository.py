"""Tests for FollowRepository."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from anchor_indexer.social.repository import DELETE_EDGES_SQL, INSERT_EDGES_SQL, FollowRepository

SYNCED_AT = datetime(2025, 3, 1, tzinfo=timezone.utc)


class TestAddFollows:
    @pytest.mark.asyncio
    async def test_passes_parallel_arrays(self, mock_database: AsyncMock) -> None:
        mock_database.execute.return_value = "INSERT 0 2"
        repo = FollowRepository(mock_database)
        created = datetime(2024, 1, 1, tzinfo=timezone.utc)

        inserted = await repo.add_follows(
            "did:plc:me", [("did:plc:a", created), ("did:plc:b", None)], SYNCED_AT
        )

        assert inserted == 2
        args = mock_database.execute.call_args[0]
        assert args[0] is INSERT_EDGES_SQL
        assert args[1] == "did:plc:me"
        assert args[2] == ["did:plc:a", "did:plc:b"]
        assert args[3] == [created, None]
        assert args[4] == SYNCED_AT

    def test_existing_edges_ignored(self) -> None:
        assert "ON CONFLICT (follower_did, following_did) DO NOTHING" in INSERT_EDGES_SQL
        assert "COALESCE(created_at, $4)" in INSERT_EDGES_SQL

    @pytest.mark.asyncio
    async def test_empty_is_noop(self, mock_database: AsyncMock) -> None:
        repo = FollowRepository(mock_database)
        assert await repo.add_follows("did:plc:me", [], SYNCED_AT) == 0
        mock_database.execute.assert_not_called()


class TestRemoveFollows:
    @pytest.mark.asyncio
    async def test_delete_by_array(self, mock_database: AsyncMock) -> None:
        mock_database.execute.return_value = "DELETE 1"
        repo = FollowRepository(mock_database)

        removed = await repo.remove_follows("did:plc:me", ["did:plc:a"])

        assert removed == 1
        mock_database.execute.assert_awaited_once_with(
            DELETE_EDGES_SQL, "did:plc:me", ["did:plc:a"]
        )

    @pytest.mark.asyncio
    async def test_empty_is_noop(self, mock_database: AsyncMock) -> None:
        repo = FollowRepository(mock_database)
        assert await repo.remove_follows("did:plc:me", []) == 0
        mock_database.execute.assert_not_called()


@pytest.mark.asyncio
async def test_get_following(mock_database: AsyncMock) -> None:
    mock_database.fetch.return_value = [
        {"following_did": "did:plc:a"},
        {"following_did": "did:plc:b"},
    ]
    repo = FollowRepository(mock_database)

    assert await repo.get_following("did:plc:me") == {"did:plc:a", "did:plc:b"}


@pytest.mark.asyncio
async def test_stats(mock_database: AsyncMock) -> None:
    mock_database.fetchrow.return_value = {"total_edges": 12, "followers": 3}
    repo = FollowRepository(mock_database)

    stats = await repo.stats()

    assert (stats.total_edges, stats.followers) == (12, 3)
