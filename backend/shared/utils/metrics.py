"""
Prometheus metrics for the Fixture Calendar.
All collectors live in the default registry; the API exposes them on /metrics.
"""
from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Sources ─────────────────────────────────────────────────────────────
SOURCE_FETCHES = Counter(
    "fc_source_fetches_total",
    "Fixture source fetch attempts by outcome",
    ["source", "outcome"],
)
SOURCE_LATENCY = Histogram(
    "fc_source_latency_seconds",
    "Fixture source fetch latency in seconds",
    ["source"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0),
)

# ── Reconciliation ──────────────────────────────────────────────────────
RECONCILE_WARNINGS = Counter(
    "fc_reconcile_warnings_total",
    "Non-fatal findings from reconciliation and round assignment",
    ["kind"],
)
FIXTURES_WRITTEN = Counter(
    "fc_fixtures_written_total",
    "Canonical fixtures upserted by the pipeline",
    ["resource"],
)

# ── Freshness cache ─────────────────────────────────────────────────────
CACHE_READS = Counter(
    "fc_cache_reads_total",
    "Reads served by the freshness controller, by freshness outcome",
    ["resource", "freshness"],
)
REFRESH_DURATION = Histogram(
    "fc_refresh_duration_seconds",
    "Duration of a full refresh cycle",
    ["resource", "outcome"],
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)
REFRESHES_IN_FLIGHT = Gauge(
    "fc_refreshes_in_flight",
    "Refresh tasks currently running",
)

# ── Scheduler / API ─────────────────────────────────────────────────────
SCHEDULED_REFRESHES_PENDING = Gauge(
    "fc_scheduled_refreshes_pending",
    "Post-match refresh entries waiting to fire",
)
FORCE_REFRESH_REJECTED = Counter(
    "fc_force_refresh_rejected_total",
    "Force-refresh requests rejected by the rate limiter",
)


def start_metrics_server(port: int | None = None) -> None:
    """Start a standalone Prometheus endpoint for worker processes."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)
