"""
Prometheus metrics for monitoring the crawl pipeline.

Defines and exposes metrics for:
- Canonical records indexed and rejected
- Per-repo crawl errors
- Follow-graph churn
- Session durations
- Registry size

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from anchor_indexer.config.settings import get_settings

logger = logging.getLogger(__name__)

# Crawl sessions span many remote calls, so buckets run much longer than request latencies
SESSION_BUCKETS = (0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0)
LATENCY_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the anchor indexer.

    Usage:
        metrics = get_metrics()
        metrics.start_server()

        metrics.record_indexed("anchor")
        metrics.record_rejected("beaconbits", "not_public")
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        self.records_indexed = Counter(
            "anchor_indexer_records_indexed_total",
            "Total canonical check-ins upserted",
            ["source"],
        )

        self.records_rejected = Counter(
            "anchor_indexer_records_rejected_total",
            "Total foreign records rejected by the adapter registry",
            ["source", "reason"],
        )

        self.repos_crawled = Counter(
            "anchor_indexer_repos_crawled_total",
            "Total per-repo crawl attempts",
            ["session", "status"],  # status: success, error
        )

        self.crawl_errors = Counter(
            "anchor_indexer_crawl_errors_total",
            "Total per-repo crawl errors",
            ["stage", "error_type"],
        )

        self.follows_changed = Counter(
            "anchor_indexer_follows_changed_total",
            "Follow edges added or removed by the reconciler",
            ["operation"],  # added, removed
        )

        self.addresses_resolved = Counter(
            "anchor_indexer_addresses_resolved_total",
            "Address pointer resolutions",
            ["status"],  # resolved, not_found
        )

        self.session_duration = Histogram(
            "anchor_indexer_session_duration_seconds",
            "Duration of crawl sessions",
            ["session"],  # checkins, follows, address_backfill
            buckets=SESSION_BUCKETS,
        )

        self.upstream_latency = Histogram(
            "anchor_indexer_upstream_latency_seconds",
            "Latency of upstream XRPC and directory requests",
            ["method"],
            buckets=LATENCY_BUCKETS,
        )

        self.tracked_repos = Gauge(
            "anchor_indexer_tracked_repos",
            "Number of tracked repos seen by the last crawl session",
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=REGISTRY)
        logger.info(f"Prometheus metrics server started on port {port}")

    # Convenience methods

    def record_indexed(self, source: str, count: int = 1) -> None:
        """Record canonical check-ins upserted for a source lexicon."""
        self.records_indexed.labels(source=source).inc(count)

    def record_rejected(self, source: str, reason: str) -> None:
        """Record a rejected foreign record."""
        self.records_rejected.labels(source=source, reason=reason).inc()

    def record_repo_crawl(self, session: str, success: bool) -> None:
        """Record the outcome of one repo within a session."""
        status = "success" if success else "error"
        self.repos_crawled.labels(session=session, status=status).inc()

    def record_error(self, stage: str, error_type: str) -> None:
        """
        Record a per-repo or per-record error.

        Args:
            stage: Where the error was caught (resolve, fetch, upsert, ...)
            error_type: Exception class name
        """
        self.crawl_errors.labels(stage=stage, error_type=error_type).inc()

    def record_follow_changes(self, added: int, removed: int) -> None:
        """Record follow-graph churn from one reconciliation."""
        if added:
            self.follows_changed.labels(operation="added").inc(added)
        if removed:
            self.follows_changed.labels(operation="removed").inc(removed)

    def record_address_resolution(self, resolved: bool) -> None:
        """Record the outcome of an address pointer resolution."""
        status = "resolved" if resolved else "not_found"
        self.addresses_resolved.labels(status=status).inc()

    def record_session(self, session: str, duration: float) -> None:
        """Record a completed session's duration in seconds."""
        self.session_duration.labels(session=session).observe(duration)

    def record_upstream_latency(self, method: str, latency: float) -> None:
        """Record latency of an upstream request in seconds."""
        self.upstream_latency.labels(method=method).observe(latency)

    def set_tracked_repos(self, count: int) -> None:
        """Set the tracked-repo gauge."""
        self.tracked_repos.set(count)


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
