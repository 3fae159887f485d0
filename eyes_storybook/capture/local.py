"""Local capture: one Playwright screenshot per story."""

from __future__ import annotations

import logging

from eyes_storybook.errors import CaptureError
from eyes_storybook.models.story import Story

from .base import Screenshot
from .browser import PlaywrightBrowserDriver

logger = logging.getLogger(__name__)


class LocalCapturer:
    """Captures stories in a local browser, one isolated session per story."""

    def __init__(self, driver: PlaywrightBrowserDriver):
        self.driver = driver

    async def capture(self, story: Story) -> Screenshot:
        session = await self.driver.open_session(story.viewport_size)
        try:
            logger.debug("Navigating to %s", story.source_url)
            await self.driver.navigate(session, story.source_url)
            image = await self.driver.capture_screenshot(session)
        except CaptureError:
            raise
        except Exception as e:
            raise CaptureError(f"Capturing {story.test_name} failed: {e}") from e
        finally:
            await self.driver.close_session(session)
        return Screenshot(image=image)
