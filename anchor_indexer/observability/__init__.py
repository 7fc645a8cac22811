"""Observability layer - logging, metrics, and tracing."""

from anchor_indexer.observability.logging import setup_logging
from anchor_indexer.observability.metrics import MetricsCollector, get_metrics
from anchor_indexer.observability.tracing import get_tracer, setup_tracing

__all__ = ["setup_logging", "MetricsCollector", "get_metrics", "setup_tracing", "get_tracer"]
