"""
Dependency injection for FastAPI endpoints.
"""

from typing import AsyncGenerator

from fastapi import Depends

from anchor_indexer.checkins.repository import CheckinRepository
from anchor_indexer.ingestion.http_client import XrpcClient
from anchor_indexer.registry.repository import RegistryRepository
from anchor_indexer.services.checkin_crawler import CheckinCrawler
from anchor_indexer.services.follow_crawler import FollowCrawler
from anchor_indexer.social.reconciler import FollowGraphReconciler
from anchor_indexer.social.repository import FollowRepository
from anchor_indexer.storage.database import Database

# Global database instance (initialized on first request)
_database: Database | None = None


async def get_database() -> Database:
    """Get the shared database, connecting on first use."""
    global _database

    if _database is None:
        _database = Database()
        await _database.connect()

    return _database


async def get_registry_repository(db: Database = Depends(get_database)) -> RegistryRepository:
    return RegistryRepository(db)


async def get_checkin_repository(db: Database = Depends(get_database)) -> CheckinRepository:
    return CheckinRepository(db)


async def get_follow_repository(db: Database = Depends(get_database)) -> FollowRepository:
    return FollowRepository(db)


async def get_checkin_crawler(
    registry: RegistryRepository = Depends(get_registry_repository),
    checkins: CheckinRepository = Depends(get_checkin_repository),
) -> AsyncGenerator[CheckinCrawler, None]:
    """Crawler bound to an upstream client that lives for one request."""
    async with XrpcClient() as client:
        yield CheckinCrawler(registry, checkins, client)


async def get_follow_crawler(
    registry: RegistryRepository = Depends(get_registry_repository),
    follows: FollowRepository = Depends(get_follow_repository),
) -> AsyncGenerator[FollowCrawler, None]:
    async with XrpcClient() as client:
        yield FollowCrawler(registry, FollowGraphReconciler(follows), client)


async def cleanup_dependencies() -> None:
    """Clean up global dependencies on shutdown."""
    global _database

    if _database is not None:
        await _database.close()
        _database = None
