"""Shared Chromium instance handing out isolated contexts"""
import asyncio
import logging
from typing import List, Optional

from playwright.async_api import async_playwright, Browser, BrowserContext, Playwright

logger = logging.getLogger(__name__)

DEFAULT_LAUNCH_ARGS = [
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-dev-shm-usage',
    '--disable-gpu',
]


class BrowserPool:
    """One long-lived browser, one short-lived context per scrape"""

    def __init__(self, headless: bool = True, user_agent: str = None, launch_args: List[str] = None):
        self.headless = headless
        self.user_agent = user_agent
        self.launch_args = launch_args if launch_args is not None else list(DEFAULT_LAUNCH_ARGS)
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self._lock = asyncio.Lock()

    async def start_browser(self) -> Browser:
        """Launch the browser if it is not running (or has crashed)"""
        async with self._lock:
            if self.browser and self.browser.is_connected():
                return self.browser

            if self.browser:
                logger.warning("Browser disconnected, relaunching")

            if self.playwright is None:
                self.playwright = await async_playwright().start()
            self.browser = await self.playwright.chromium.launch(
                headless=self.headless,
                args=self.launch_args,
            )
            logger.info("Browser started")
            return self.browser

    async def new_context(self) -> BrowserContext:
        browser = await self.start_browser()
        options = {'viewport': {'width': 1920, 'height': 1080}}
        if self.user_agent:
            options['user_agent'] = self.user_agent
        return await browser.new_context(**options)

    async def close(self):
        """Close browser instance"""
        async with self._lock:
            if self.browser:
                try:
                    await self.browser.close()
                except Exception as e:
                    logger.warning(f"Error closing browser: {e}")
                self.browser = None
                logger.info("Browser closed")
            if self.playwright:
                await self.playwright.stop()
                self.playwright = None
