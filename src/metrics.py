"""
Operator Metrics - Prometheus instruments for reconciliation and events.

Served over HTTP by prometheus_client on the metrics port, separate from the
health probes.
"""

import logging

from prometheus_client import Counter, Histogram, start_http_server

logger = logging.getLogger(__name__)

reconcile_total = Counter(
    "secretsync_reconcile_total",
    "Reconciliation passes by outcome",
    ["result"],
)

reconcile_duration_seconds = Histogram(
    "secretsync_reconcile_duration_seconds",
    "Wall time of one reconciliation pass",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60),
)

events_total = Counter(
    "secretsync_events_total",
    "Pod events recorded by reason",
    ["reason", "type"],
)


def start_metrics_server(port: int, host: str = "0.0.0.0") -> None:
    """Serve /metrics from a background thread."""
    start_http_server(port, addr=host)
    logger.info(f"Serving metrics on {host}:{port}")
