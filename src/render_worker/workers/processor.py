"""Render job processing loop.

:class:`JobProcessor` pops raw payloads from the wait queue one at a time,
renders the requested page with the engine pooled for the job's language,
and pushes the outcome to the done queue.

Loop states::

    READY ──pop──▶ PROCESSING ──▶ READY
      │                              │
      └──────── stop requested ──────┴──▶ STOPPING ──▶ STOPPED

Delivery policy:
    Every valid job ends in exactly one terminal write: its outcome on the
    done queue or, when that push fails, its original raw payload back on
    the wait queue so it is rendered again from scratch.  A payload that is
    re-queued after its outcome actually reached the done queue is processed
    twice; jobs are not deduplicated.  If the re-queue push fails as well the
    job is lost; this is logged at error level and counted in
    ``render_jobs_lost_total``.

Scrape failures are outcomes, not faults:
    A page that cannot be rendered is reported with ``success=false`` and
    never retried here.

Page cleanup is detached:
    Closing the page and clearing the engine's cookies run in a background
    task so the rendered HTML is returned without waiting on teardown.
    Cleanup errors are logged and dropped.  Outstanding cleanups are joined
    with a bounded wait at shutdown by :meth:`JobProcessor.drain_cleanup`.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
from typing import Any

import structlog

from render_worker.config.settings import Settings
from render_worker.core.exceptions import (
    CleanupError,
    JobParseError,
    JobSchemaError,
    QueueConnectionError,
    ResultPersistError,
    ScrapeError,
)
from render_worker.core.logging_config import job_context
from render_worker.core.metrics import (
    render_fetch_duration_seconds,
    render_jobs_lost_total,
    render_jobs_total,
    render_scrape_attempts_total,
)
from render_worker.core.queue_client import QueueClient
from render_worker.core.schemas.job import Job, parse_job
from render_worker.render.engine import RenderEngine
from render_worker.render.pool import RenderEnginePool

logger = structlog.get_logger(__name__)

_PREVIEW_CHARS = 200


class LoopState(str, enum.Enum):
    READY = "ready"
    PROCESSING = "processing"
    STOPPING = "stopping"
    STOPPED = "stopped"


class JobOutcome(str, enum.Enum):
    """How a single wait-queue payload was disposed of."""

    DROPPED_INVALID = "dropped_invalid"
    COMPLETED = "completed"
    FAILED = "failed"
    REQUEUED = "requeued"
    LOST = "lost"


def _preview(raw: str | bytes) -> str:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    return raw if len(raw) <= _PREVIEW_CHARS else raw[:_PREVIEW_CHARS] + "…"


class JobProcessor:
    """Consume render jobs until asked to stop.

    Args:
        queue: Client for the wait and done queues.
        pool: Per-language render engine pool.
        wait_queue: Name of the input list.
        done_queue: Name of the output list.
        default_language: Locale used when a job has no ``lang``.
        navigation_timeout_ms: Passed to ``page.goto``; ``0`` means no timeout.
        error_backoff_seconds: Pause after a failed blocking pop.
    """

    def __init__(
        self,
        queue: QueueClient,
        pool: RenderEnginePool,
        *,
        wait_queue: str,
        done_queue: str,
        default_language: str = "en-US",
        navigation_timeout_ms: int = 0,
        error_backoff_seconds: float = 0.5,
    ) -> None:
        self._queue = queue
        self._pool = pool
        self.wait_queue = wait_queue
        self.done_queue = done_queue
        self.default_language = default_language
        self._navigation_timeout_ms = navigation_timeout_ms
        self._error_backoff_seconds = error_backoff_seconds
        self._stop_event = asyncio.Event()
        self._state = LoopState.READY
        self._cleanup_tasks: set[asyncio.Task[None]] = set()

    @classmethod
    def from_settings(
        cls, queue: QueueClient, pool: RenderEnginePool, settings: Settings
    ) -> "JobProcessor":
        return cls(
            queue,
            pool,
            wait_queue=settings.wait_queue,
            done_queue=settings.done_queue,
            default_language=settings.render_default_language,
            navigation_timeout_ms=settings.render_navigation_timeout_ms,
            error_backoff_seconds=settings.render_error_backoff_seconds,
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    @property
    def pending_cleanups(self) -> int:
        return len(self._cleanup_tasks)

    def request_stop(self) -> None:
        """Ask the loop to exit at the next iteration boundary.

        An idle blocking pop is abandoned immediately; a job being processed
        is finished first.
        """
        self._stop_event.set()

    # ------------------------------------------------------------------
    # Fetch protocol
    # ------------------------------------------------------------------

    async def fetch(self, url: str, language: str) -> str:
        """Render ``url`` with the engine for ``language`` and return its HTML.

        Raises:
            ScrapeError: If the engine cannot be launched, navigation fails,
                or the content cannot be captured.
        """
        render_scrape_attempts_total.inc()
        try:
            engine = await self._pool.acquire(language)
        except Exception as exc:
            raise ScrapeError(
                f"could not obtain render engine: {exc}", url=url, language=language
            ) from exc

        page = None
        try:
            page = await engine.new_page()
            logger.info("fetch.navigating", url=url, language=language)
            with render_fetch_duration_seconds.time():
                await page.goto(url, timeout=self._navigation_timeout_ms)
                return await page.content()
        except Exception as exc:
            raise ScrapeError(str(exc), url=url, language=language) from exc
        finally:
            if page is not None:
                self._spawn_cleanup(engine, page)

    def _spawn_cleanup(self, engine: RenderEngine, page: Any) -> None:
        task = asyncio.create_task(self._cleanup_page(engine, page))
        self._cleanup_tasks.add(task)
        task.add_done_callback(self._cleanup_tasks.discard)

    async def _cleanup_page(self, engine: RenderEngine, page: Any) -> None:
        try:
            await page.close()
            cookies = await engine.cookies()
            if cookies:
                await engine.delete_cookies(cookies)
        except Exception as exc:  # noqa: BLE001
            error = CleanupError(f"{type(exc).__name__}: {exc}")
            logger.warning(
                "fetch.cleanup_failed", language=engine.language, error=str(error)
            )

    async def drain_cleanup(self, timeout: float) -> int:
        """Wait up to ``timeout`` seconds for detached cleanups to finish.

        Cleanups still running afterwards are cancelled.

        Returns:
            Number of cleanups that did not finish in time.
        """
        tasks = set(self._cleanup_tasks)
        if not tasks:
            return 0
        _done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("shutdown.cleanup_abandoned", pending=len(pending))
        return len(pending)

    # ------------------------------------------------------------------
    # Single payload
    # ------------------------------------------------------------------

    async def process_payload(self, raw: str | bytes) -> JobOutcome:
        """Handle one raw wait-queue payload from parse to terminal write."""
        try:
            job = parse_job(raw)
        except JobParseError as exc:
            logger.error("job.unparseable", error=str(exc), payload=_preview(raw))
            render_jobs_total.labels(outcome=JobOutcome.DROPPED_INVALID.value).inc()
            return JobOutcome.DROPPED_INVALID
        except JobSchemaError as exc:
            logger.warning("job.invalid", error=str(exc), payload=_preview(raw))
            render_jobs_total.labels(outcome=JobOutcome.DROPPED_INVALID.value).inc()
            return JobOutcome.DROPPED_INVALID

        with job_context(job_id=job.id):
            language = job.language(self.default_language)
            try:
                html = await self.fetch(job.url, language)
            except ScrapeError as exc:
                logger.error(
                    "job.scrape_failed", url=job.url, language=language, error=str(exc)
                )
                job.mark_failed()
            else:
                job.mark_rendered(html)

            outcome = await self._store_result(job, raw)
            logger.info("job.finished", outcome=outcome.value, success=job.success)

        render_jobs_total.labels(outcome=outcome.value).inc()
        return outcome

    async def _store_result(self, job: Job, raw: str | bytes) -> JobOutcome:
        try:
            await self._queue.push(self.done_queue, job.to_payload())
        except QueueConnectionError as exc:
            persist_error = ResultPersistError(job.id)
            logger.error(
                "job.persist_failed",
                error=str(persist_error),
                cause=str(exc),
                requeue_to=self.wait_queue,
            )
            try:
                await self._queue.push(self.wait_queue, raw)
            except QueueConnectionError as requeue_exc:
                render_jobs_lost_total.inc()
                logger.error(
                    "job.lost",
                    error=str(requeue_exc),
                    payload=_preview(raw),
                )
                return JobOutcome.LOST
            return JobOutcome.REQUEUED

        return JobOutcome.COMPLETED if job.success else JobOutcome.FAILED

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _pop(self) -> tuple[str, bytes] | None:
        """Blocking pop that gives up as soon as stop is requested.

        A reply that has already been read when the pop is abandoned is
        still returned so it is processed rather than dropped.
        """
        pop = asyncio.ensure_future(self._queue.blocking_pop(self.wait_queue, timeout=0))
        stop = asyncio.ensure_future(self._stop_event.wait())
        try:
            done, _pending = await asyncio.wait(
                {pop, stop}, return_when=asyncio.FIRST_COMPLETED
            )
            if pop in done:
                return pop.result()

            # An item Redis has removed but whose reply is still unread is lost here.
            pop.cancel()
            try:
                return await pop
            except asyncio.CancelledError:
                return None
            except QueueConnectionError:
                return None
        finally:
            for task in (pop, stop):
                if not task.done():
                    task.cancel()

    async def run_once(self) -> JobOutcome | None:
        """Run one ``READY → PROCESSING → READY`` iteration.

        Returns:
            The outcome of the popped payload, or ``None`` if nothing was
            popped (timeout or stop requested).

        Raises:
            QueueConnectionError: If the blocking pop fails.
        """
        self._state = LoopState.READY
        logger.debug("worker.waiting", queue=self.wait_queue)
        item = await self._pop()
        if item is None:
            return None

        _queue_name, raw = item
        self._state = LoopState.PROCESSING
        try:
            return await self.process_payload(raw)
        finally:
            self._state = LoopState.STOPPING if self.stopping else LoopState.READY

    async def _backoff(self) -> None:
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(
                self._stop_event.wait(), timeout=self._error_backoff_seconds
            )

    async def run(self) -> None:
        """Process jobs until :meth:`request_stop` is called."""
        logger.info(
            "worker.started",
            wait_queue=self.wait_queue,
            done_queue=self.done_queue,
            default_language=self.default_language,
        )
        try:
            while not self.stopping:
                try:
                    await self.run_once()
                except QueueConnectionError as exc:
                    if self.stopping:
                        break
                    logger.error("queue.pop_failed", error=str(exc))
                    await self._backoff()
                except Exception:  # noqa: BLE001
                    logger.exception("worker.iteration_failed")
                    await self._backoff()
            self._state = LoopState.STOPPING
        finally:
            self._state = LoopState.STOPPED
            logger.info("worker.stopped")
