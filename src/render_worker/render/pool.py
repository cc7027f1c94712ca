"""Per-language pool of render engines.

The pool holds at most one :class:`~render_worker.render.engine.RenderEngine`
per language key.  An engine is launched the first time a job asks for its
language, reused by every later job with the same language, and closed only
when the worker shuts down.

Typical usage::

    pool = RenderEnginePool(PlaywrightLauncher(headless=True))
    engine = await pool.acquire("fr")
    ...
    await pool.close_all()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from render_worker.core.metrics import render_engines
from render_worker.render.engine import RenderEngine

logger = logging.getLogger(__name__)

Launcher = Callable[[str], Awaitable[RenderEngine]]


class RenderEnginePool:
    """Own one render engine per language key.

    Launches are serialised by a lock so two concurrent ``acquire`` calls for
    a new key cannot both launch an engine.  A failed launch propagates to the
    caller and registers nothing; the next ``acquire`` for that key tries
    again.

    Args:
        launcher: Async callable returning a new engine for a language.
    """

    def __init__(self, launcher: Launcher) -> None:
        self._launcher = launcher
        self._engines: dict[str, RenderEngine] = {}
        self._lock = asyncio.Lock()
        self._closed = False

    def __len__(self) -> int:
        return len(self._engines)

    def __contains__(self, language: object) -> bool:
        return language in self._engines

    @property
    def languages(self) -> list[str]:
        return list(self._engines)

    async def acquire(self, language: str) -> RenderEngine:
        """Return the engine for ``language``, launching it on first use.

        Raises:
            RuntimeError: If the pool has already been closed.
            Exception: Whatever the launcher raises when the launch fails.
        """
        engine = self._engines.get(language)
        if engine is not None:
            return engine

        async with self._lock:
            if self._closed:
                raise RuntimeError("render engine pool is closed")
            engine = self._engines.get(language)
            if engine is not None:
                return engine

            logger.info("pool: launching render engine for language %s", language)
            engine = await self._launcher(language)
            try:
                closed = await engine.close_default_pages()
            except Exception:
                await engine.close()
                raise
            if closed:
                logger.debug("pool: closed %d default page(s) for %s", closed, language)

            self._engines[language] = engine
            render_engines.set(len(self._engines))
            return engine

    async def close_all(self) -> None:
        """Close every pooled engine.

        A failure closing one engine is logged and does not prevent the
        others from being closed.
        """
        async with self._lock:
            self._closed = True
            engines, self._engines = self._engines, {}

        for language, engine in engines.items():
            try:
                await engine.close()
                logger.info("pool: closed render engine for language %s", language)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "pool: error closing render engine for %s: %s", language, exc
                )
        render_engines.set(0)
