"""Prometheus metrics for the render worker.

All metrics are module-level singletons registered on the default
``REGISTRY``.  They are exposed over HTTP by :func:`start_metrics_server`
when ``METRICS_PORT`` is configured.

Metrics defined here:

  render_jobs_total{outcome}
      Counter — wait-queue payloads handled, by outcome (completed, failed,
      requeued, lost, dropped_invalid).

  render_scrape_attempts_total
      Counter — every call to the fetch protocol, successful or not.

  render_jobs_lost_total
      Counter — jobs whose done-queue push and wait-queue re-push both
      failed.  Any non-zero value needs investigation.

  render_queue_errors_total{operation}
      Counter — Redis transport failures by operation (pop, push).

  render_engines
      Gauge — browser instances currently held by the pool.

  render_fetch_duration_seconds
      Histogram — navigation plus content capture wall-clock time.

Usage::

    from render_worker.core.metrics import render_jobs_total
    render_jobs_total.labels(outcome="completed").inc()
"""

from __future__ import annotations

import logging

from prometheus_client import Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Job metrics
# ---------------------------------------------------------------------------

render_jobs_total: Counter = Counter(
    "render_jobs_total",
    "Wait-queue payloads handled by outcome.",
    labelnames=["outcome"],
)

render_scrape_attempts_total: Counter = Counter(
    "render_scrape_attempts_total",
    "Total page render attempts.",
)

render_jobs_lost_total: Counter = Counter(
    "render_jobs_lost_total",
    "Jobs dropped after both the done-queue push and the wait-queue re-push failed.",
)

# ---------------------------------------------------------------------------
# Queue and browser metrics
# ---------------------------------------------------------------------------

render_queue_errors_total: Counter = Counter(
    "render_queue_errors_total",
    "Redis queue transport failures by operation.",
    labelnames=["operation"],
)

render_engines: Gauge = Gauge(
    "render_engines",
    "Browser instances currently held by the render engine pool.",
)

render_fetch_duration_seconds: Histogram = Histogram(
    "render_fetch_duration_seconds",
    "Page navigation and content capture duration in seconds.",
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)


def start_metrics_server(port: int | None) -> bool:
    """Serve the default registry on ``port``.

    Args:
        port: TCP port, or ``None`` to leave metrics unexposed.

    Returns:
        ``True`` if the HTTP server was started.
    """
    if port is None:
        return False
    start_http_server(port)
    logger.info("metrics: serving Prometheus metrics on port %d", port)
    return True
