"""Playwright-backed render engine instances.

A :class:`RenderEngine` is one Chromium browser dedicated to a single
language, holding one isolated, non-persistent browser context whose locale
and ``Accept-Language`` header match that language.  Pages opened for jobs
live inside that context, so cookies set while rendering one page are visible
to the next page of the same language until the detached cleanup deletes
them.

:class:`PlaywrightLauncher` owns the Playwright driver process and is the
production launcher injected into
:class:`~render_worker.render.pool.RenderEnginePool`.

Install Playwright and download the Chromium browser binary::

    pip install playwright
    playwright install chromium
"""

from __future__ import annotations

import logging
from typing import Any

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

logger = logging.getLogger(__name__)


class RenderEngine:
    """A running browser bound to one language key.

    Args:
        language: Locale code the browser was configured with.
        browser: The launched Playwright browser.
        context: The isolated context pages are opened in.
    """

    def __init__(self, language: str, browser: Browser, context: BrowserContext) -> None:
        self.language = language
        self._browser = browser
        self._context = context

    def __repr__(self) -> str:
        return f"RenderEngine(language={self.language!r})"

    @property
    def pages(self) -> list[Page]:
        return list(self._context.pages)

    async def new_page(self) -> Page:
        return await self._context.new_page()

    async def close_default_pages(self) -> int:
        """Close every page currently open so the engine starts with none.

        Returns:
            Number of pages closed.
        """
        pages = self.pages
        for page in pages:
            await page.close()
        return len(pages)

    async def cookies(self) -> list[dict[str, Any]]:
        return list(await self._context.cookies())

    async def delete_cookies(self, cookies: list[dict[str, Any]]) -> None:
        """Delete exactly the given cookies from the engine's context."""
        for cookie in cookies:
            await self._context.clear_cookies(
                name=cookie["name"],
                domain=cookie.get("domain"),
                path=cookie.get("path"),
            )

    async def close(self) -> None:
        """Close the context and then the browser process."""
        try:
            await self._context.close()
        finally:
            await self._browser.close()


class PlaywrightLauncher:
    """Launch Chromium-based :class:`RenderEngine` instances.

    The Playwright driver is started lazily on the first launch (or
    explicitly with :meth:`start`) and must be stopped with :meth:`stop`
    after every engine has been closed.

    Args:
        headless: Launch browsers without a visible window.
    """

    def __init__(self, *, headless: bool = True) -> None:
        self.headless = headless
        self._playwright: Playwright | None = None

    async def start(self) -> None:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
            logger.info("engine: playwright driver started (headless=%s)", self.headless)

    async def stop(self) -> None:
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
            logger.info("engine: playwright driver stopped")

    async def __call__(self, language: str) -> RenderEngine:
        """Launch a browser configured for ``language``.

        Raises:
            playwright.async_api.Error: If Chromium cannot be launched.
        """
        await self.start()
        assert self._playwright is not None
        browser = await self._playwright.chromium.launch(
            headless=self.headless,
            args=[f"--accept-lang={language}", f"--lang={language}"],
        )
        try:
            context = await browser.new_context(
                locale=language,
                extra_http_headers={"Accept-Language": language},
            )
        except Exception:
            await browser.close()
            raise
        return RenderEngine(language, browser, context)
