"""Shared fixtures for API tests."""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from anchor_indexer.api.app import create_app
from anchor_indexer.api.auth import verify_api_key
from anchor_indexer.api.dependencies import (
    get_checkin_crawler,
    get_checkin_repository,
    get_database,
    get_follow_crawler,
    get_follow_repository,
    get_registry_repository,
)
from anchor_indexer.registry.schemas import RegistryStats
from anchor_indexer.services.checkin_crawler import CrawlSessionResult
from anchor_indexer.services.follow_crawler import FollowSessionResult
from anchor_indexer.social.repository import FollowStats


@pytest.fixture
def mock_db():
    db = AsyncMock()
    db.health_check = AsyncMock(return_value=True)
    return db


@pytest.fixture
def mock_registry():
    registry = AsyncMock()
    registry.register = AsyncMock(return_value=True)
    registry.remove = AsyncMock(return_value=True)
    registry.stats = AsyncMock(
        return_value=RegistryStats(total_repos=3, total_servers=2, recently_crawled=1)
    )
    return registry


@pytest.fixture
def mock_checkin_repo():
    repo = AsyncMock()
    repo.list_recent = AsyncMock(return_value=[])
    repo.list_by_author = AsyncMock(return_value=[])
    repo.get_by_uri = AsyncMock(return_value=None)
    repo.count = AsyncMock(return_value=17)
    return repo


@pytest.fixture
def mock_follow_repo():
    repo = AsyncMock()
    repo.stats = AsyncMock(return_value=FollowStats(total_edges=40, followers=3))
    return repo


@pytest.fixture
def mock_checkin_crawler():
    crawler = AsyncMock()
    crawler.run_session = AsyncMock(
        return_value=CrawlSessionResult(
            success=True, records_processed=5, users_processed=2, errors=1, duration_ms=12
        )
    )
    return crawler


@pytest.fixture
def mock_follow_crawler():
    crawler = AsyncMock()
    crawler.run_session = AsyncMock(
        return_value=FollowSessionResult(
            success=True, follows_added=4, follows_removed=1, users_processed=2
        )
    )
    return crawler


@pytest.fixture
def client(
    mock_db,
    mock_registry,
    mock_checkin_repo,
    mock_follow_repo,
    mock_checkin_crawler,
    mock_follow_crawler,
):
    """FastAPI TestClient with dependency overrides."""
    app = create_app()

    app.dependency_overrides[verify_api_key] = lambda: "test-key"
    app.dependency_overrides[get_database] = lambda: mock_db
    app.dependency_overrides[get_registry_repository] = lambda: mock_registry
    app.dependency_overrides[get_checkin_repository] = lambda: mock_checkin_repo
    app.dependency_overrides[get_follow_repository] = lambda: mock_follow_repo
    app.dependency_overrides[get_checkin_crawler] = lambda: mock_checkin_crawler
    app.dependency_overrides[get_follow_crawler] = lambda: mock_follow_crawler

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
