"""Scrape one profile page with session rotation"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from email_pipeline.modules.browser_pool import BrowserPool
from email_pipeline.modules.email_extractor import PageState, extract_email
from email_pipeline.modules.session_store import SessionStore

logger = logging.getLogger(__name__)

BLOCKED_RESOURCE_TYPES = {'image', 'media', 'font', 'stylesheet'}
LOGIN_MARKERS = ('login', 'checkpoint')


class ScrapeStatus(str, Enum):
    DONE = 'done'
    NOT_FOUND = 'not found'
    FAILED = 'failed'


@dataclass
class ScrapeResult:
    value: Optional[str]
    status: ScrapeStatus
    attempts: int = 0
    error: Optional[str] = None


def is_login_redirect(url: str) -> bool:
    url = (url or '').lower()
    return any(marker in url for marker in LOGIN_MARKERS)


async def _block_heavy_resources(route):
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


class PageScraper:
    """Drives one scrape through up to one attempt per session.

    A login/checkpoint redirect or any navigation/extraction error rotates to the next
    session and retries. With fewer than two sessions rotation is a no-op: a redirect
    is then extracted anyway and an error ends the scrape as failed.
    """

    def __init__(self, browser_pool: BrowserPool, session_store: SessionStore,
                 extractor: Callable[[PageState], Optional[str]] = extract_email,
                 navigation_timeout_ms: int = 30000, render_wait_ms: int = 5000,
                 block_resources: bool = True):
        self.browser_pool = browser_pool
        self.session_store = session_store
        self.extractor = extractor
        self.navigation_timeout_ms = navigation_timeout_ms
        self.render_wait_ms = render_wait_ms
        self.block_resources = block_resources

    async def scrape(self, url: str) -> ScrapeResult:
        max_retries = max(1, len(self.session_store))
        last_error = None
        attempt = 0

        while attempt < max_retries:
            attempt += 1
            context = None
            try:
                logger.info(f"Processing: {url} (attempt {attempt}/{max_retries})")
                context = await self.browser_pool.new_context()

                cookies = self.session_store.current()
                if cookies:
                    await context.add_cookies(cookies)

                page = await context.new_page()
                if self.block_resources:
                    await page.route('**/*', _block_heavy_resources)

                await page.goto(url, wait_until='domcontentloaded', timeout=self.navigation_timeout_ms)

                if is_login_redirect(page.url):
                    logger.warning(f"Login redirect or checkpoint for {url}, session may be invalid")
                    if self.session_store.rotate():
                        continue
                    logger.warning("No alternate session, extracting from the current page anyway")

                if self.render_wait_ms:
                    await page.wait_for_timeout(self.render_wait_ms)

                html = await page.content()
                value = self.extractor(PageState(url=page.url, html=html))
                if value:
                    logger.info(f"Found email for {url}: {value}")
                    return ScrapeResult(value=value, status=ScrapeStatus.DONE, attempts=attempt)
                logger.info(f"No email found for {url}")
                return ScrapeResult(value=None, status=ScrapeStatus.NOT_FOUND, attempts=attempt)

            except Exception as e:
                last_error = str(e) or type(e).__name__
                logger.warning(f"Error scraping {url} (attempt {attempt}/{max_retries}): {last_error}")
                if self.session_store.rotate():
                    continue
                break

            finally:
                if context is not None:
                    try:
                        await context.close()
                    except Exception as e:
                        logger.debug(f"Error closing browser context: {e}")

        logger.error(f"Giving up on {url} after {attempt} attempt(s)")
        return ScrapeResult(value=None, status=ScrapeStatus.FAILED, attempts=attempt,
                            error=last_error or 'Session rotation exhausted')
