"""Shared fixtures for registry tests.

``FakeRegistryDatabase`` is an in-memory stand-in for ``Database`` that
understands the registry's SQL statements. ``transaction()`` snapshots both
tables on entry and restores them if the block raises, like a real
PostgreSQL transaction. ``fail_on`` makes a chosen statement raise, which
simulates a crash between the two halves of a paired write.
"""

import copy
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import pytest

from anchor_indexer.registry import repository as sql
from anchor_indexer.registry.repository import RegistryRepository

BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)


class SimulatedCrash(Exception):
    """Raised in place of a statement listed in ``fail_on``."""


def _nulls_first(value):
    return (value is not None, value or BASE_TIME)


class FakeConnection:
    def __init__(self, db: "FakeRegistryDatabase"):
        self._db = db

    async def execute(self, query, *args):
        return self._db.run(query, args)

    async def fetch(self, query, *args):
        return self._db.run(query, args)

    async def fetchrow(self, query, *args):
        return self._db.run(query, args)

    async def fetchval(self, query, *args):
        return self._db.run(query, args)


class FakeRegistryDatabase:
    def __init__(self):
        self.repos: dict[str, dict] = {}
        self.servers: dict[str, dict] = {}
        self.fail_on: set[str] = set()
        self.statements: list[str] = []
        self._clock = 0

    def _now(self) -> datetime:
        self._clock += 1
        return BASE_TIME + timedelta(seconds=self._clock)

    @asynccontextmanager
    async def transaction(self):
        snapshot = (copy.deepcopy(self.repos), copy.deepcopy(self.servers))
        try:
            yield FakeConnection(self)
        except BaseException:
            self.repos, self.servers = snapshot
            raise

    async def execute(self, query, *args):
        return self.run(query, args)

    async def fetch(self, query, *args):
        return self.run(query, args)

    async def fetchrow(self, query, *args):
        return self.run(query, args)

    async def fetchval(self, query, *args):
        return self.run(query, args)

    def run(self, query, args):
        self.statements.append(query)
        if query in self.fail_on:
            raise SimulatedCrash(query.strip().split("\n")[0])

        if query is sql._INSERT_REPO_SQL:
            did, handle, server_url = args
            if did in self.repos:
                return None
            self.repos[did] = {
                "did": did,
                "handle": handle,
                "hosting_server_url": server_url,
                "registered_at": self._now(),
                "last_checkin_crawl_at": None,
                "last_follow_crawl_at": None,
            }
            return did

        if query is sql._LOCK_REPO_SQL:
            repo = self.repos.get(args[0])
            return repo["hosting_server_url"] if repo else None

        if query is sql._UPDATE_REPO_SQL:
            did, handle, server_url = args
            if did not in self.repos:
                return "UPDATE 0"
            self.repos[did].update(handle=handle, hosting_server_url=server_url)
            return "UPDATE 1"

        if query is sql._DELETE_REPO_SQL:
            repo = self.repos.pop(args[0], None)
            return repo["hosting_server_url"] if repo else None

        if query is sql._INCREMENT_SERVER_SQL:
            server = self.servers.get(args[0])
            if server is None:
                self.servers[args[0]] = {
                    "server_url": args[0],
                    "tracked_repo_count": 1,
                    "last_crawled_at": None,
                    "created_at": self._now(),
                }
            else:
                server["tracked_repo_count"] += 1
            return "INSERT 0 1"

        if query is sql._DECREMENT_SERVER_SQL:
            server = self.servers.get(args[0])
            if server is None:
                return "UPDATE 0"
            server["tracked_repo_count"] = max(server["tracked_repo_count"] - 1, 0)
            return "UPDATE 1"

        if query is sql._DELETE_EMPTY_SERVER_SQL:
            server = self.servers.get(args[0])
            if server is not None and server["tracked_repo_count"] <= 0:
                del self.servers[args[0]]
                return "DELETE 1"
            return "DELETE 0"

        if query is sql._SELECT_REPO_SQL:
            return copy.deepcopy(self.repos.get(args[0]))

        if query is sql._SELECT_SERVER_SQL:
            return copy.deepcopy(self.servers.get(args[0]))

        if query is sql._LIST_FOR_CRAWL_SQL:
            return sorted(
                self.repos.values(),
                key=lambda r: (_nulls_first(r["last_checkin_crawl_at"]), r["registered_at"]),
            )

        if query is sql._LIST_FOR_FOLLOW_CRAWL_SQL:
            return sorted(
                self.repos.values(),
                key=lambda r: (_nulls_first(r["last_follow_crawl_at"]), r["registered_at"]),
            )

        if query is sql._LIST_SERVERS_FOR_CRAWL_SQL:
            live = [s for s in self.servers.values() if s["tracked_repo_count"] > 0]
            return sorted(live, key=lambda s: _nulls_first(s["last_crawled_at"]))

        if query is sql._MARK_CHECKIN_CRAWLED_SQL:
            if args[0] in self.repos:
                self.repos[args[0]]["last_checkin_crawl_at"] = args[1]
            return "UPDATE 1"

        if query is sql._MARK_FOLLOW_CRAWLED_SQL:
            if args[0] in self.repos:
                self.repos[args[0]]["last_follow_crawl_at"] = args[1]
            return "UPDATE 1"

        if query is sql._MARK_SERVER_CRAWLED_SQL:
            if args[0] in self.servers:
                self.servers[args[0]]["last_crawled_at"] = args[1]
            return "UPDATE 1"

        if query is sql._REPAIR_COUNTS_SQL:
            corrected = 0
            for server_url, count in self.actual_counts().items():
                server = self.servers.get(server_url)
                if server is None:
                    self.servers[server_url] = {
                        "server_url": server_url,
                        "tracked_repo_count": count,
                        "last_crawled_at": None,
                        "created_at": self._now(),
                    }
                    corrected += 1
                elif server["tracked_repo_count"] != count:
                    server["tracked_repo_count"] = count
                    corrected += 1
            return f"INSERT 0 {corrected}"

        if query is sql._DELETE_ORPHAN_SERVERS_SQL:
            referenced = set(self.actual_counts())
            orphans = [url for url in self.servers if url not in referenced]
            for url in orphans:
                del self.servers[url]
            return f"DELETE {len(orphans)}"

        if query is sql._STATS_SQL:
            return {
                "total_repos": len(self.repos),
                "total_servers": sum(1 for s in self.servers.values() if s["tracked_repo_count"] > 0),
                "recently_crawled": sum(
                    1 for r in self.repos.values() if r["last_checkin_crawl_at"] is not None
                ),
            }

        raise AssertionError(f"Unexpected statement: {query}")

    def actual_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for repo in self.repos.values():
            counts[repo["hosting_server_url"]] = counts.get(repo["hosting_server_url"], 0) + 1
        return counts

    def assert_consistent(self) -> None:
        """Every server count equals its number of tracked repos; no empty servers."""
        stored = {url: s["tracked_repo_count"] for url, s in self.servers.items()}
        assert stored == self.actual_counts()


@pytest.fixture
def fake_db():
    return FakeRegistryDatabase()


@pytest.fixture
def registry(fake_db):
    return RegistryRepository(fake_db)
