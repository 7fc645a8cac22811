"""
Command-line interface for anchor-indexer.

Provides commands to run crawl sessions, manage the tracked-repo registry,
initialize the database, and serve the API.

Usage:
    anchor-indexer init-db              # Create tables
    anchor-indexer crawl-checkins       # Run one check-in crawl session
    anchor-indexer crawl-follows        # Run one follow crawl session
    anchor-indexer register DID HANDLE URL
    anchor-indexer repair-counts        # Recompute hosting-server counts
    anchor-indexer serve                # Start the API server
"""

import asyncio
import sys

import click

from anchor_indexer.config.settings import get_settings
from anchor_indexer.observability.logging import setup_logging
from anchor_indexer.observability.metrics import get_metrics


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Anchor Indexer - check-in crawler and follow-graph reconciler."""
    if debug:
        import os
        os.environ["LOG_LEVEL"] = "DEBUG"
        get_settings.cache_clear()

    setup_logging()

    settings = get_settings()
    if settings.tracing_enabled:
        from anchor_indexer.observability.tracing import setup_tracing

        setup_tracing(
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        )


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""
    from anchor_indexer.checkins.repository import CheckinRepository
    from anchor_indexer.registry.repository import RegistryRepository
    from anchor_indexer.social.repository import FollowRepository
    from anchor_indexer.storage.database import Database

    async def run():
        async with Database() as db:
            await RegistryRepository(db).create_tables()
            await CheckinRepository(db).create_table()
            await FollowRepository(db).create_table()

        click.echo("Database initialized successfully")

    asyncio.run(run())


@main.command("crawl-checkins")
@click.option("--batch-size", default=None, type=int, help="Repos fetched concurrently per batch")
@click.option("--metrics/--no-metrics", default=False, help="Expose metrics while running")
def crawl_checkins(batch_size: int | None, metrics: bool) -> None:
    """Run one check-in crawl session over every tracked repo."""
    from anchor_indexer.checkins.repository import CheckinRepository
    from anchor_indexer.ingestion.http_client import XrpcClient
    from anchor_indexer.registry.repository import RegistryRepository
    from anchor_indexer.services.checkin_crawler import CheckinCrawler
    from anchor_indexer.storage.database import Database

    if metrics:
        get_metrics().start_server()

    async def run():
        async with Database() as db, XrpcClient() as client:
            crawler = CheckinCrawler(
                RegistryRepository(db),
                CheckinRepository(db),
                client,
                batch_size=batch_size,
            )
            return await crawler.run_session()

    result = asyncio.run(run())

    click.echo("\nCheck-in crawl session:")
    click.echo("-" * 40)
    click.echo(f"  Repos processed:   {result.users_processed}")
    click.echo(f"  Records processed: {result.records_processed}")
    click.echo(f"  Records rejected:  {result.rejected}")
    click.echo(f"  Errors:            {result.errors}")
    click.echo(f"  Duration:          {result.duration_ms} ms")

    if not result.success:
        click.echo(click.style("Session failed: tracked repos could not be loaded", fg="red"))
        sys.exit(1)


@main.command("crawl-follows")
def crawl_follows() -> None:
    """Run one follow crawl session over every tracked repo."""
    from anchor_indexer.ingestion.http_client import XrpcClient
    from anchor_indexer.registry.repository import RegistryRepository
    from anchor_indexer.services.follow_crawler import FollowCrawler
    from anchor_indexer.social.reconciler import FollowGraphReconciler
    from anchor_indexer.social.repository import FollowRepository
    from anchor_indexer.storage.database import Database

    async def run():
        async with Database() as db, XrpcClient() as client:
            crawler = FollowCrawler(
                RegistryRepository(db),
                FollowGraphReconciler(FollowRepository(db)),
                client,
            )
            return await crawler.run_session()

    result = asyncio.run(run())

    click.echo("\nFollow crawl session:")
    click.echo("-" * 40)
    click.echo(f"  Repos processed: {result.users_processed}")
    click.echo(f"  Follows added:   {result.follows_added}")
    click.echo(f"  Follows removed: {result.follows_removed}")
    click.echo(f"  Errors:          {result.errors}")
    click.echo(f"  Duration:        {result.duration_ms} ms")

    if not result.success:
        sys.exit(1)


@main.command()
@click.argument("did")
@click.argument("handle")
@click.argument("server_url")
def register(did: str, handle: str, server_url: str) -> None:
    """Start tracking a repo hosted on SERVER_URL."""
    from anchor_indexer.errors import ConsistencyError
    from anchor_indexer.registry.repository import RegistryRepository
    from anchor_indexer.storage.database import Database

    async def run():
        async with Database() as db:
            return await RegistryRepository(db).register(did, handle, server_url)

    try:
        created = asyncio.run(run())
    except (ValueError, ConsistencyError) as e:
        click.echo(click.style(f"Registration failed: {e}", fg="red"))
        sys.exit(1)

    if created:
        click.echo(click.style(f"Registered {handle} ({did})", fg="green"))
    else:
        click.echo(f"{did} already tracked; handle and server refreshed")


@main.command()
@click.argument("did")
def unregister(did: str) -> None:
    """Stop tracking a repo."""
    from anchor_indexer.registry.repository import RegistryRepository
    from anchor_indexer.storage.database import Database

    async def run():
        async with Database() as db:
            return await RegistryRepository(db).remove(did)

    if asyncio.run(run()):
        click.echo(f"Unregistered {did}")
    else:
        click.echo(click.style(f"{did} is not tracked", fg="yellow"))
        sys.exit(1)


@main.command("repair-counts")
def repair_counts() -> None:
    """Recompute hosting-server repo counts from the tracked repos."""
    from anchor_indexer.registry.repository import RegistryRepository
    from anchor_indexer.storage.database import Database

    async def run():
        async with Database() as db:
            return await RegistryRepository(db).repair_server_counts()

    repaired = asyncio.run(run())
    if repaired:
        click.echo(click.style(f"Repaired {repaired} hosting-server rows", fg="yellow"))
    else:
        click.echo(click.style("Hosting-server counts consistent", fg="green"))


@main.command("backfill-addresses")
@click.option("--limit", default=None, type=int, help="Maximum check-ins to process")
@click.option("--dry-run", is_flag=True, help="Resolve pointers without writing")
def backfill_addresses(limit: int | None, dry_run: bool) -> None:
    """Resolve address pointers for check-ins stored without an address.

    Example:
        anchor-indexer backfill-addresses --limit 200
        anchor-indexer backfill-addresses --dry-run
    """
    from anchor_indexer.address.backfill import AddressBackfillJob
    from anchor_indexer.address.resolver import AddressResolver
    from anchor_indexer.checkins.repository import CheckinRepository
    from anchor_indexer.identity.resolver import EndpointResolver
    from anchor_indexer.ingestion.http_client import XrpcClient
    from anchor_indexer.storage.database import Database

    async def run():
        async with Database() as db, XrpcClient() as client:
            resolver = AddressResolver(client, EndpointResolver(client))
            job = AddressBackfillJob(CheckinRepository(db), resolver)
            return await job.run(limit=limit, dry_run=dry_run)

    result = asyncio.run(run())

    prefix = "Dry run - would resolve" if dry_run else "Resolved"
    click.echo(f"\n{prefix} {result.resolved} of {result.candidates} pointers")
    if result.failed:
        click.echo(click.style(f"{result.failed} pointers could not be resolved", fg="yellow"))


@main.command()
def stats() -> None:
    """Show registry, check-in and follow-graph totals."""
    from anchor_indexer.checkins.repository import CheckinRepository
    from anchor_indexer.registry.repository import RegistryRepository
    from anchor_indexer.social.repository import FollowRepository
    from anchor_indexer.storage.database import Database

    async def run():
        async with Database() as db:
            registry_stats = await RegistryRepository(db).stats()
            checkin_count = await CheckinRepository(db).count()
            follow_stats = await FollowRepository(db).stats()
            return registry_stats, checkin_count, follow_stats

    registry_stats, checkin_count, follow_stats = asyncio.run(run())

    click.echo("\nIndexer Statistics:")
    click.echo("-" * 40)
    click.echo(f"  Tracked repos:        {registry_stats.total_repos}")
    click.echo(f"  Hosting servers:      {registry_stats.total_servers}")
    click.echo(f"  Crawled in last hour: {registry_stats.recently_crawled}")
    click.echo(f"  Check-ins:            {checkin_count}")
    click.echo(f"  Follow edges:         {follow_stats.total_edges}")
    click.echo(f"  Following repos:      {follow_stats.followers}")


@main.command()
@click.option("--host", default=None, help="API server host")
@click.option("--port", default=None, type=int, help="API server port")
@click.option("--reload", is_flag=True, help="Enable auto-reload (dev only)")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
def serve(host: str | None, port: int | None, reload: bool, metrics_port: int | None) -> None:
    """Start the indexer API server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    metrics_port = metrics_port or settings.metrics_port

    get_metrics().start_server(port=metrics_port)

    click.echo(f"Starting API server on {host}:{port}")
    click.echo(f"Metrics available on http://localhost:{metrics_port}/metrics")
    click.echo(f"API docs available on http://localhost:{port}/docs")

    uvicorn.run(
        "anchor_indexer.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


if __name__ == "__main__":
    main()
