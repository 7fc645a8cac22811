"""Shared fixtures for crawl session tests."""

from unittest.mock import AsyncMock

import pytest

from anchor_indexer.registry.schemas import TrackedRepo
from tests.conftest import SERVER_URL


def make_repo(name: str, server_url: str = SERVER_URL) -> TrackedRepo:
    return TrackedRepo(did=f"did:plc:{name}", handle=f"{name}.test", hosting_server_url=server_url)


@pytest.fixture
def registry() -> AsyncMock:
    registry = AsyncMock()
    registry.list_for_crawl.return_value = []
    registry.list_for_follow_crawl.return_value = []
    registry.register.return_value = False
    return registry


@pytest.fixture
def endpoints() -> AsyncMock:
    endpoints = AsyncMock()
    endpoints.resolve_hosting_server.return_value = SERVER_URL
    return endpoints


@pytest.fixture
def client() -> AsyncMock:
    return AsyncMock()
