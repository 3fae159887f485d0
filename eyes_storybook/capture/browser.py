"""Playwright browser sessions used for local capture."""

from __future__ import annotations

import logging

from playwright.async_api import Browser, BrowserContext, Page, Playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from eyes_storybook.errors import CaptureError, SetupError
from eyes_storybook.models.config import ViewportSize

logger = logging.getLogger(__name__)

DEFAULT_VIEWPORT = ViewportSize(width=1024, height=768)

# Stop CSS animations and transitions so captures are stable
_FREEZE_ANIMATIONS_CSS = """
*, *::before, *::after {
    animation-duration: 0s !important;
    animation-delay: 0s !important;
    transition-duration: 0s !important;
    transition-delay: 0s !important;
    caret-color: transparent !important;
}
"""


async def launch_browser(playwright: Playwright, headless: bool = True) -> Browser:
    """Launch Chromium for capturing stories."""
    try:
        return await playwright.chromium.launch(
            headless=headless,
            args=["--hide-scrollbars", "--force-color-profile=srgb"],
        )
    except PlaywrightError as e:
        raise SetupError(f"Could not launch Chromium: {e}") from e


class BrowserSession:
    """One isolated browser context with a single page."""

    def __init__(self, context: BrowserContext, page: Page):
        self.context = context
        self.page = page
        self.closed = False


class PlaywrightBrowserDriver:
    """Opens, drives and closes isolated browser sessions on a shared browser."""

    def __init__(
        self,
        browser: Browser,
        navigation_timeout_ms: int = 30000,
        wait_before_screenshot_ms: int = 0,
    ):
        self.browser = browser
        self.navigation_timeout_ms = navigation_timeout_ms
        self.wait_before_screenshot_ms = wait_before_screenshot_ms

    async def open_session(self, viewport: ViewportSize | None) -> BrowserSession:
        viewport = viewport or DEFAULT_VIEWPORT
        context_kwargs: dict = {
            "viewport": {"width": viewport.width, "height": viewport.height},
            "device_scale_factor": 1,
            "locale": "en-US",
            "timezone_id": "UTC",
        }
        try:
            context = await self.browser.new_context(**context_kwargs)
            page = await context.new_page()
        except PlaywrightError as e:
            raise CaptureError(f"Could not open browser session: {e}") from e
        return BrowserSession(context, page)

    async def navigate(self, session: BrowserSession, url: str) -> None:
        page = session.page
        try:
            await page.goto(url, wait_until="load", timeout=self.navigation_timeout_ms)
        except PlaywrightTimeoutError as e:
            raise CaptureError(f"Timed out navigating to {url}") from e
        except PlaywrightError as e:
            raise CaptureError(f"Navigation to {url} failed: {e}") from e

        try:
            await page.wait_for_load_state("networkidle", timeout=3000)
        except PlaywrightTimeoutError:
            # Long-polling stories never go idle; capture anyway
            logger.debug("Network did not go idle for %s", url)

        try:
            await page.add_style_tag(content=_FREEZE_ANIMATIONS_CSS)
            await page.evaluate("() => document.fonts ? document.fonts.ready.then(() => true) : true")
            if self.wait_before_screenshot_ms:
                await page.wait_for_timeout(self.wait_before_screenshot_ms)
        except PlaywrightError as e:
            raise CaptureError(f"Page {url} did not settle: {e}") from e

    async def capture_screenshot(self, session: BrowserSession) -> bytes:
        try:
            return await session.page.screenshot(full_page=True, type="png")
        except PlaywrightError as e:
            raise CaptureError(f"Screenshot failed: {e}") from e

    async def close_session(self, session: BrowserSession) -> None:
        if session.closed:
            return
        session.closed = True
        try:
            await session.context.close()
        except PlaywrightError as e:
            logger.warning("Closing browser session failed: %s", e)
