"""Playwright process ownership and a shared pool of Chromium browsers."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional

from playwright.async_api import Browser, Page, async_playwright

from .config import BrowserConfig, ProxyConfig
from .observability import CrawlMetrics

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-blink-features=AutomationControlled",
    "--no-first-run",
    "--no-default-browser-check",
]


class BrowserRuntime:
    """Owns the Playwright process and launches Chromium instances."""

    def __init__(
        self,
        *,
        headless: bool,
        proxy: Optional[ProxyConfig] = None,
        args: Optional[List[str]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._headless = headless
        self._proxy = proxy
        self._args = args if args is not None else LAUNCH_ARGS
        self._logger = logger or logging.getLogger("igcrawler.browser")
        self._playwright = None

    async def start(self) -> None:
        self._logger.info("Starting Playwright runtime…")
        self._playwright = await async_playwright().start()

    async def launch(self) -> Browser:
        if self._playwright is None:
            raise RuntimeError("BrowserRuntime.start() must be called first")
        options = {"headless": self._headless, "args": self._args}
        if self._proxy is not None:
            options["proxy"] = self._proxy.to_playwright()
        browser = await self._playwright.chromium.launch(**options)
        mode = "headless" if self._headless else "headed"
        self._logger.info(f"Chromium launched ({mode})")
        return browser

    async def stop(self) -> None:
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
        self._logger.info("Playwright runtime stopped")


@dataclass
class PooledBrowser:
    browser: Browser
    open_pages: int = 0
    total_pages: int = 0
    retired: bool = False


class BrowserPool:
    """Shares a few browsers between workers.

    A browser takes at most ``max_open_pages`` pages at once and is retired
    after ``retire_after_pages`` pages; it is closed once its last page is.
    Every page gets its own browser context so cookies and storage never
    leak between tasks.
    """

    def __init__(
        self,
        runtime: BrowserRuntime,
        *,
        max_open_pages: int = 3,
        retire_after_pages: int = 30,
        browser_config: Optional[BrowserConfig] = None,
        metrics: Optional[CrawlMetrics] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.runtime = runtime
        self.max_open_pages = max_open_pages
        self.retire_after_pages = retire_after_pages
        self.browser_config = browser_config or BrowserConfig()
        self.metrics = metrics
        self.logger = logger or logging.getLogger("igcrawler.browser")
        self._browsers: List[PooledBrowser] = []
        self._lock = asyncio.Lock()

    async def _acquire(self) -> PooledBrowser:
        async with self._lock:
            for pooled in self._browsers:
                if not pooled.retired and pooled.open_pages < self.max_open_pages:
                    break
            else:
                pooled = PooledBrowser(browser=await self.runtime.launch())
                self._browsers.append(pooled)
                if self.metrics:
                    self.metrics.browsers_launched.inc()

            pooled.open_pages += 1
            pooled.total_pages += 1
            if pooled.total_pages >= self.retire_after_pages:
                pooled.retired = True
            return pooled

    async def _release(self, pooled: PooledBrowser) -> None:
        async with self._lock:
            pooled.open_pages -= 1
            if not pooled.browser.is_connected():
                pooled.retired = True
            if not (pooled.retired and pooled.open_pages == 0):
                return
            self._browsers.remove(pooled)

        try:
            await pooled.browser.close()
        except Exception as e:
            self.logger.warning(f"Error closing retired browser: {e}")
        if self.metrics:
            self.metrics.browsers_retired.inc()
        self.logger.info(f"Retired browser after {pooled.total_pages} pages")

    @asynccontextmanager
    async def page(self, request_id: str) -> AsyncIterator[Page]:
        """A fresh page in its own context, closed no matter how the task ends."""
        pooled = await self._acquire()
        context = None
        try:
            context = await pooled.browser.new_context(
                viewport={
                    "width": self.browser_config.viewport_width,
                    "height": self.browser_config.viewport_height,
                },
            )
            yield await context.new_page()
        finally:
            if context is not None:
                try:
                    await context.close()
                except Exception as e:
                    self.logger.warning(f"Error closing context for request {request_id}: {e}")
            await self._release(pooled)

    async def close(self) -> None:
        async with self._lock:
            browsers, self._browsers = self._browsers, []
        for pooled in browsers:
            try:
                await pooled.browser.close()
            except Exception as e:
                self.logger.warning(f"Error closing browser: {e}")
