"""Shared fixtures for follow-graph tests."""

from datetime import datetime

import pytest


class InMemoryFollowRepository:
    """FollowRepository stand-in that records every write batch."""

    def __init__(self, edges: dict[str, dict[str, datetime | None]] | None = None):
        self.edges: dict[str, dict[str, datetime | None]] = edges or {}
        self.add_batches: list[list[str]] = []
        self.remove_batches: list[list[str]] = []

    async def get_following(self, follower_did: str) -> set[str]:
        return set(self.edges.get(follower_did, {}))

    async def add_follows(self, follower_did, edges, synced_at) -> int:
        self.add_batches.append([did for did, _ in edges])
        stored = self.edges.setdefault(follower_did, {})
        inserted = 0
        for did, created_at in edges:
            if did not in stored:
                stored[did] = created_at or synced_at
                inserted += 1
        return inserted

    async def remove_follows(self, follower_did, following_dids) -> int:
        self.remove_batches.append(list(following_dids))
        stored = self.edges.get(follower_did, {})
        removed = 0
        for did in following_dids:
            if stored.pop(did, None) is not None:
                removed += 1
        return removed


@pytest.fixture
def follow_repo() -> InMemoryFollowRepository:
    return InMemoryFollowRepository()
