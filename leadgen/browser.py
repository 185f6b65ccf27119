"""Headless Chromium pages, opened and torn down per call."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from playwright.async_api import Page, async_playwright

from leadgen.settings import BROWSER_HEADLESS, CRAWLER_USER_AGENT, NAV_TIMEOUT_MS

logger = logging.getLogger(__name__)


@asynccontextmanager
async def open_page(timeout_ms: int = NAV_TIMEOUT_MS) -> AsyncIterator[Page]:
    """Launch a browser, yield a fresh page, and always close the browser on exit."""
    async with async_playwright() as pw:
        browser = await pw.chromium.launch(headless=BROWSER_HEADLESS)
        try:
            context = await browser.new_context(
                user_agent=CRAWLER_USER_AGENT,
                viewport={"width": 1366, "height": 900},
                java_script_enabled=True,
            )
            page = await context.new_page()
            page.set_default_navigation_timeout(timeout_ms)
            page.set_default_timeout(timeout_ms)
            yield page
        finally:
            try:
                await browser.close()
            except Exception as exc:
                logger.debug("browser close failed: %s", exc)
