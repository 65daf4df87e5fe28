#!/usr/bin/env python3
"""
Shared browser lifecycle for LinkedIn capture.

One Chromium instance serves every scrape. Each scrape gets its own
BrowserContext (so cookies never cross accounts) with a randomised
fingerprint and stealth patches.

Example:
    from core.browser import BrowserManager

    manager = BrowserManager(headless=True)
    handle = await manager.new_page()
    await handle.page.goto("https://www.linkedin.com/feed/")
    await handle.close()
    await manager.shutdown()
"""

import asyncio
import logging
import random
from typing import Optional, Any, Callable, Awaitable, Dict
from dataclasses import dataclass

from playwright.async_api import async_playwright, Browser, BrowserContext, Page

from browser.stealth import BROWSER_ARGS, Fingerprint, random_fingerprint, build_stealth_script

logger = logging.getLogger(__name__)

Launcher = Callable[[], Awaitable[Browser]]


@dataclass
class PageHandle:
    """An isolated context and its single page."""
    context: BrowserContext
    page: Page
    fingerprint: Fingerprint

    async def close(self):
        try:
            await self.page.close()
        except Exception as e:
            logger.debug(f"Page close failed: {e}")
        try:
            await self.context.close()
        except Exception as e:
            logger.debug(f"Context close failed: {e}")


class BrowserManager:
    """
    Create-if-absent, reconnect-if-dead handle on one Chromium browser.

    Args:
        launcher: coroutine returning a connected Browser. Defaults to a local
            Playwright Chromium launch with stealth arguments.
        headless: passed to the default launcher
        rng: random source for fingerprints
    """

    def __init__(
        self,
        launcher: Optional[Launcher] = None,
        headless: bool = True,
        rng: Optional[random.Random] = None,
    ):
        self.headless = headless
        self._launcher = launcher or self._launch_local
        self._rng = rng or random.Random()
        self._browser: Optional[Browser] = None
        self._playwright = None
        self._lock = asyncio.Lock()
        self._launch_count = 0

    async def _launch_local(self) -> Browser:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch(headless=self.headless, args=BROWSER_ARGS)

    async def get_browser(self) -> Browser:
        async with self._lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser

            if self._browser is not None:
                logger.warning("Browser disconnected, relaunching")
            self._browser = await self._launcher()
            self._launch_count += 1
            logger.info(f"Browser launched (launch #{self._launch_count}, headless={self.headless})")
            return self._browser

    async def new_page(self, user_agent: Optional[str] = None) -> PageHandle:
        """Open a fresh context and page. A cached session's user agent overrides the fingerprint's."""
        browser = await self.get_browser()
        fingerprint = random_fingerprint(self._rng, user_agent=user_agent)

        context = await browser.new_context(**fingerprint.context_options())
        try:
            await context.add_init_script(build_stealth_script(fingerprint))
            page = await context.new_page()
        except Exception:
            await context.close()
            raise

        return PageHandle(context=context, page=page, fingerprint=fingerprint)

    async def shutdown(self):
        async with self._lock:
            if self._browser is not None:
                try:
                    await self._browser.close()
                except Exception as e:
                    logger.warning(f"Error closing browser: {e}")
                self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
        logger.info("Browser shut down")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "connected": self._browser is not None and self._browser.is_connected(),
            "launch_count": self._launch_count,
            "headless": self.headless,
        }
