"""Render worker process entry point.

Usage::

    render-worker
    # or
    python -m render_worker.workers.main

Environment variables (via .env or shell)::

    REDIS_URL     Redis endpoint holding both queues.
    WAIT_QUEUE    Input list (default ``scrape-jobs:wait``).
    DONE_QUEUE    Output list (default ``scrape-jobs:done``).

See :class:`~render_worker.config.settings.Settings` for the full list.

Exit codes:
    0             The loop stopped without a signal.
    1             Redis never became ready at startup.
    128 + signum  Stopped by SIGINT, SIGQUIT or SIGTERM.
"""

from __future__ import annotations

import asyncio
import sys

import structlog

from render_worker.config.settings import Settings, get_settings
from render_worker.core.exceptions import QueueConnectionError
from render_worker.core.logging_config import configure_logging
from render_worker.core.metrics import start_metrics_server
from render_worker.core.queue_client import QueueClient
from render_worker.render.engine import PlaywrightLauncher
from render_worker.render.pool import RenderEnginePool
from render_worker.workers.processor import JobProcessor
from render_worker.workers.shutdown import ShutdownCoordinator

logger = structlog.get_logger(__name__)


async def run_worker(settings: Settings) -> int:
    """Wire the worker together and run it until shutdown.

    Returns:
        The process exit status.
    """
    queue = QueueClient.from_settings(settings)
    try:
        await queue.wait_until_ready(
            attempts=settings.redis_ready_attempts,
            delay=settings.redis_ready_delay,
        )
    except QueueConnectionError as exc:
        logger.critical("worker.startup_failed", error=str(exc))
        await queue.close()
        return 1

    launcher = PlaywrightLauncher(headless=settings.render_headless)
    pool = RenderEnginePool(launcher)
    processor = JobProcessor.from_settings(queue, pool, settings)
    coordinator = ShutdownCoordinator(
        processor,
        pool,
        queue,
        cleanup_drain_timeout=settings.render_cleanup_drain_timeout,
        after_teardown=[launcher.stop],
    )

    coordinator.install()
    try:
        return await coordinator.run()
    finally:
        coordinator.uninstall()


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    start_metrics_server(settings.metrics_port)
    sys.exit(asyncio.run(run_worker(settings)))


if __name__ == "__main__":
    main()
