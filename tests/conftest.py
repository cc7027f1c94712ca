"""Shared pytest fixtures for render worker tests.

Fixture summary
---------------
fake_queue     — In-memory stand-in for QueueClient with failure injection.
make_page      — Factory for mocked Playwright pages.
make_engine    — Factory for mocked RenderEngine instances.
launcher       — AsyncMock launcher handing out one mocked engine per call.

No live Redis or browser is required by any test.
"""

from __future__ import annotations

import asyncio
import os
from collections import defaultdict
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

# ---------------------------------------------------------------------------
# Test environment bootstrap
# ---------------------------------------------------------------------------
# Settings() reads the process environment; pin the values the tests rely on
# before any application module is imported.

_TEST_ENV_DEFAULTS: dict[str, str] = {
    "REDIS_URL": "redis://localhost:6379",
    "WAIT_QUEUE": "scrape-jobs:wait",
    "DONE_QUEUE": "scrape-jobs:done",
}

for _key, _default in _TEST_ENV_DEFAULTS.items():
    os.environ.setdefault(_key, _default)

from render_worker.config.settings import get_settings  # noqa: E402
from render_worker.core.exceptions import QueueConnectionError  # noqa: E402
from render_worker.render.engine import RenderEngine  # noqa: E402

get_settings.cache_clear()

WAIT_QUEUE = "scrape-jobs:wait"
DONE_QUEUE = "scrape-jobs:done"


# ---------------------------------------------------------------------------
# Queue fake
# ---------------------------------------------------------------------------


class FakeQueue:
    """In-memory QueueClient replacement.

    Attributes:
        lists: Queue name -> pending payloads.
        pushes: Every successful ``(queue, payload)`` push, in order.
        push_attempts: Every attempted push, including failed ones.
        pop_count: Number of ``blocking_pop`` calls that returned an item.
        fail_push_to: Queue names whose pushes raise QueueConnectionError.
        pop_errors: Exceptions raised (in order) by the next pops.
    """

    def __init__(self) -> None:
        self.lists: dict[str, list[Any]] = defaultdict(list)
        self.pushes: list[tuple[str, Any]] = []
        self.push_attempts: list[tuple[str, Any]] = []
        self.pop_count = 0
        self.fail_push_to: set[str] = set()
        self.pop_errors: list[Exception] = []
        self.closed = False
        self._added = asyncio.Event()

    def seed(self, queue: str, *payloads: Any) -> None:
        self.lists[queue].extend(payloads)
        self._added.set()

    async def blocking_pop(self, queue: str, timeout: float = 0) -> tuple[str, Any] | None:
        if self.pop_errors:
            raise self.pop_errors.pop(0)
        while not self.lists[queue]:
            self._added.clear()
            await self._added.wait()
        self.pop_count += 1
        return queue, self.lists[queue].pop(0)

    async def push(self, queue: str, payload: Any) -> int:
        self.push_attempts.append((queue, payload))
        if queue in self.fail_push_to:
            raise QueueConnectionError(f"RPUSH on {queue!r} failed", operation="push")
        self.pushes.append((queue, payload))
        self.lists[queue].append(payload)
        self._added.set()
        return len(self.lists[queue])

    async def close(self) -> None:
        self.closed = True

    def pushed_to(self, queue: str) -> list[Any]:
        return [payload for name, payload in self.pushes if name == queue]


@pytest.fixture
def fake_queue() -> FakeQueue:
    return FakeQueue()


# ---------------------------------------------------------------------------
# Browser mocks
# ---------------------------------------------------------------------------


def _page(html: str = "<html><body>ok</body></html>", goto_error: Exception | None = None) -> MagicMock:
    page = MagicMock()
    page.goto = AsyncMock(side_effect=goto_error)
    page.content = AsyncMock(return_value=html)
    page.close = AsyncMock()
    return page


def _engine(language: str, page: MagicMock | None = None) -> MagicMock:
    engine = MagicMock(spec=RenderEngine)
    engine.language = language
    engine.new_page = AsyncMock(return_value=page if page is not None else _page())
    engine.close_default_pages = AsyncMock(return_value=1)
    engine.cookies = AsyncMock(
        return_value=[{"name": "sid", "domain": ".example.com", "path": "/"}]
    )
    engine.delete_cookies = AsyncMock()
    engine.close = AsyncMock()
    return engine


@pytest.fixture
def make_page() -> Callable[..., MagicMock]:
    return _page


@pytest.fixture
def make_engine() -> Callable[..., MagicMock]:
    return _engine


@pytest.fixture
def launcher() -> AsyncMock:
    """Launcher returning a fresh mocked engine per call.

    Launched engines are recorded in ``launcher.engines`` keyed by language.
    """
    engines: dict[str, MagicMock] = {}

    def _launch(language: str) -> MagicMock:
        engine = _engine(language)
        engines[language] = engine
        return engine

    mock = AsyncMock(side_effect=_launch)
    mock.engines = engines
    return mock
