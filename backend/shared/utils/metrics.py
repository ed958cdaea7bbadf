"""
Lightweight metrics collection for the dub tracker.
Wraps prometheus_client with async-safe patterns.
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from prometheus_client import Counter, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
SOURCE_REQUESTS = Counter(
    "dt_source_requests_total",
    "Total outbound requests per source",
    ["source", "status"],
)
RATE_LIMIT_HITS = Counter(
    "dt_rate_limit_hits_total",
    "Upstream 429 responses per source",
    ["source"],
)
SYNC_RUNS = Counter(
    "dt_sync_runs_total",
    "Completed sync runs",
    ["job_type", "status"],
)
CATALOG_UPSERTS = Counter(
    "dt_catalog_upserts_total",
    "Catalog upsert outcomes",
    ["outcome"],
)
SOURCE_PROBES = Counter(
    "dt_source_probes_total",
    "Dub source probe outcomes",
    ["source", "outcome"],
)
CACHE_LOOKUPS = Counter(
    "dt_cache_lookups_total",
    "Reconciliation cache lookups",
    ["tier", "result"],
)
DUB_RESOLUTIONS = Counter(
    "dt_dub_resolutions_total",
    "Dub verdicts resolved",
    ["has_dub"],
)

# ── Histograms ──────────────────────────────────────────────────────────
SOURCE_LATENCY = Histogram(
    "dt_source_latency_seconds",
    "Outbound request latency in seconds",
    ["source"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0),
)
RESOLUTION_LATENCY = Histogram(
    "dt_dub_resolution_seconds",
    "Time to resolve one entity through the cascade",
    buckets=(0.01, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)


@asynccontextmanager
async def atrack_latency(histogram: Histogram, **labels: str) -> AsyncIterator[None]:
    """Async context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        if labels:
            histogram.labels(**labels).observe(elapsed)
        else:
            histogram.observe(elapsed)


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus metrics HTTP server."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)
