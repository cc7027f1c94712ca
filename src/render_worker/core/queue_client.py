"""Redis list queue client.

The worker only needs two primitives from the queue service:

- ``blocking_pop(queue, timeout)``: ``BLPOP`` one payload, waiting up to
  ``timeout`` seconds (``0`` waits forever).
- ``push(queue, payload)``: ``RPUSH`` one payload.

Producers ``RPUSH`` onto the wait queue and the worker ``BLPOP``s from its
head, so each list behaves as a FIFO.  Payloads are kept as raw ``bytes`` so
that a payload re-queued after a failure is byte-for-byte what was popped.

Every transport failure is re-raised as
:class:`~render_worker.core.exceptions.QueueConnectionError`.

Typical usage::

    queue = QueueClient.from_settings(get_settings())
    await queue.wait_until_ready(attempts=10, delay=1.0)
    item = await queue.blocking_pop("scrape-jobs:wait", timeout=0)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import redis.asyncio as aioredis
from redis.asyncio.cluster import RedisCluster
from redis.exceptions import RedisError

from render_worker.config.settings import Settings
from render_worker.core.exceptions import QueueConnectionError
from render_worker.core.logging_config import redact_url
from render_worker.core.metrics import render_queue_errors_total

logger = logging.getLogger(__name__)

_TRANSPORT_ERRORS = (RedisError, OSError)


def _connection_url(settings: Settings) -> str:
    """Return the Redis URL to connect to, upgraded to ``rediss://`` when TLS is implied."""
    parts = urlsplit(settings.redis_url)
    if parts.scheme == "redis" and settings.tls_insecure:
        return urlunsplit(parts._replace(scheme="rediss"))
    return settings.redis_url


def build_redis_client(settings: Settings) -> Any:
    """Create the (not yet connected) Redis client described by ``settings``.

    Returns:
        A :class:`redis.asyncio.Redis` or :class:`RedisCluster` instance.
    """
    url = _connection_url(settings)
    kwargs: dict[str, Any] = {"decode_responses": False}
    if urlsplit(url).scheme == "rediss" and settings.tls_insecure:
        kwargs.update(ssl_cert_reqs="none", ssl_check_hostname=False)

    if settings.redis_cluster:
        return RedisCluster.from_url(url, read_from_replicas=False, **kwargs)
    return aioredis.from_url(url, **kwargs)


class QueueClient:
    """Blocking pop / push over Redis lists.

    Args:
        redis_client: An async Redis (or Redis Cluster) client.  Tests pass a
            mock exposing ``blpop``, ``rpush``, ``ping`` and ``aclose``.
    """

    def __init__(self, redis_client: Any) -> None:
        self._redis = redis_client
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "QueueClient":
        logger.info(
            "queue: connecting to %s (cluster=%s)",
            redact_url(settings.redis_url),
            settings.redis_cluster,
        )
        return cls(build_redis_client(settings))

    @property
    def closed(self) -> bool:
        return self._closed

    async def ping(self) -> None:
        """Raise :class:`QueueConnectionError` unless Redis answers ``PING``."""
        try:
            await self._redis.ping()
        except _TRANSPORT_ERRORS as exc:
            raise QueueConnectionError(f"Redis ping failed: {exc}", operation="ping") from exc

    async def wait_until_ready(self, attempts: int, delay: float) -> None:
        """Probe Redis until it answers, up to ``attempts`` times.

        Raises:
            QueueConnectionError: If Redis never became ready.
        """
        for attempt in range(1, attempts + 1):
            try:
                await self.ping()
                logger.info("queue: ready after %d attempt(s)", attempt)
                return
            except QueueConnectionError as exc:
                logger.warning(
                    "queue: not ready (attempt %d/%d): %s", attempt, attempts, exc
                )
                if attempt < attempts:
                    await asyncio.sleep(delay)
        raise QueueConnectionError(
            f"Redis did not become ready after {attempts} attempts", operation="ping"
        )

    async def blocking_pop(
        self, queue: str, timeout: float = 0
    ) -> tuple[str, bytes] | None:
        """Pop the head of ``queue``, waiting up to ``timeout`` seconds.

        Returns:
            ``(queue_name, raw_payload)``, or ``None`` if the timeout expired.

        Raises:
            QueueConnectionError: On any transport failure.
        """
        try:
            item = await self._redis.blpop([queue], timeout=timeout)
        except _TRANSPORT_ERRORS as exc:
            render_queue_errors_total.labels(operation="pop").inc()
            raise QueueConnectionError(
                f"BLPOP on {queue!r} failed: {exc}", operation="pop"
            ) from exc
        if item is None:
            return None
        name, payload = item
        if isinstance(name, bytes):
            name = name.decode("utf-8", errors="replace")
        return name, payload

    async def push(self, queue: str, payload: str | bytes) -> int:
        """Append ``payload`` to the tail of ``queue``.

        Returns:
            The length of the list after the push.

        Raises:
            QueueConnectionError: On any transport failure.
        """
        try:
            return await self._redis.rpush(queue, payload)
        except _TRANSPORT_ERRORS as exc:
            render_queue_errors_total.labels(operation="push").inc()
            raise QueueConnectionError(
                f"RPUSH on {queue!r} failed: {exc}", operation="push"
            ) from exc

    async def close(self) -> None:
        """Close the connection pool.  Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            await self._redis.aclose()
        except _TRANSPORT_ERRORS as exc:
            logger.warning("queue: error while closing connection: %s", exc)
        logger.info("queue: connection closed")
