"""Signal-driven shutdown of the render worker.

On SIGINT, SIGQUIT or SIGTERM the coordinator asks the
:class:`~render_worker.workers.processor.JobProcessor` to stop.  Once the
job in flight (if any) has been written out, it closes the queue
connection, waits briefly for detached page cleanups, closes every pooled
browser and reports the exit status ``128 + signum``.  When the loop ends
without a signal the same teardown runs and the exit status is ``0``.

Repeated signals are logged and otherwise ignored.
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Awaitable, Callable, Iterable

import structlog

from render_worker.core.queue_client import QueueClient
from render_worker.render.pool import RenderEnginePool
from render_worker.workers.processor import JobProcessor

logger = structlog.get_logger(__name__)

SHUTDOWN_SIGNALS: tuple[signal.Signals, ...] = tuple(
    sig
    for sig in (
        getattr(signal, "SIGINT", None),
        getattr(signal, "SIGQUIT", None),
        getattr(signal, "SIGTERM", None),
    )
    if sig is not None
)


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)


class ShutdownCoordinator:
    """Tie the worker loop's lifetime to process signals.

    Args:
        processor: The job loop to stop.
        pool: Render engine pool closed after the loop has stopped.
        queue: Queue client closed after the loop has stopped.
        cleanup_drain_timeout: Seconds to wait for detached page cleanups.
        after_teardown: Extra async callables run last (e.g. stopping the
            Playwright driver).  Their errors are logged.
    """

    def __init__(
        self,
        processor: JobProcessor,
        pool: RenderEnginePool,
        queue: QueueClient,
        *,
        cleanup_drain_timeout: float = 5.0,
        after_teardown: Iterable[Callable[[], Awaitable[None]]] = (),
    ) -> None:
        self._processor = processor
        self._pool = pool
        self._queue = queue
        self._cleanup_drain_timeout = cleanup_drain_timeout
        self._after_teardown = list(after_teardown)
        self._signum: int | None = None
        self._installed: list[signal.Signals] = []
        self._torn_down = False

    @property
    def signal_received(self) -> int | None:
        return self._signum

    @property
    def exit_code(self) -> int:
        return 0 if self._signum is None else 128 + self._signum

    # ------------------------------------------------------------------
    # Signal handling
    # ------------------------------------------------------------------

    def install(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Register :meth:`handle_signal` for every shutdown signal on ``loop``."""
        loop = loop or asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.handle_signal, int(sig))
            except NotImplementedError:
                # Event loops without add_signal_handler (Windows).
                signal.signal(
                    sig,
                    lambda signum, _frame: loop.call_soon_threadsafe(
                        self.handle_signal, signum
                    ),
                )
            self._installed.append(sig)

    def uninstall(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        loop = loop or asyncio.get_running_loop()
        for sig in self._installed:
            try:
                loop.remove_signal_handler(sig)
            except NotImplementedError:
                signal.signal(sig, signal.SIG_DFL)
        self._installed.clear()

    def handle_signal(self, signum: int) -> None:
        """Request a stop.  Only the first signal has any effect."""
        if self._signum is not None:
            logger.info(
                "shutdown.already_in_progress",
                signal=_signal_name(signum),
                first_signal=_signal_name(self._signum),
            )
            return
        self._signum = signum
        logger.warning("shutdown.signal_received", signal=_signal_name(signum))
        self._processor.request_stop()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> int:
        """Run the job loop until it stops, then tear everything down.

        Returns:
            The process exit status.
        """
        try:
            await self._processor.run()
        finally:
            await self.teardown()
        return self.exit_code

    async def teardown(self) -> None:
        """Close the queue, drain cleanups and close all engines.  Runs once."""
        if self._torn_down:
            return
        self._torn_down = True

        await self._queue.close()
        await self._processor.drain_cleanup(self._cleanup_drain_timeout)
        await self._pool.close_all()
        for callback in self._after_teardown:
            try:
                await callback()
            except Exception as exc:  # noqa: BLE001
                logger.warning("shutdown.teardown_step_failed", error=str(exc))
        logger.info("shutdown.complete", exit_code=self.exit_code)
