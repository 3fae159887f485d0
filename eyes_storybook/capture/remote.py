"""Remote capture: stories are rendered by the rendering service."""

from __future__ import annotations

import logging

from eyes_storybook.models.render import RenderRequest
from eyes_storybook.models.story import Story
from eyes_storybook.rendering.render_batch import RenderBatchClient
from eyes_storybook.rendering.resources import StaticBuildResources

from .base import RenderedImage

logger = logging.getLogger(__name__)


class RemoteCapturer:
    """Builds a render request per story and waits for its image location."""

    def __init__(
        self,
        client: RenderBatchClient,
        resources: StaticBuildResources,
        browser_name: str = "chrome",
        selectors_to_hide: list[str] | None = None,
    ):
        self.client = client
        self.resources = resources
        self.browser_name = browser_name
        self.selectors_to_hide = list(selectors_to_hide or [])

    def build_request(self, story: Story) -> RenderRequest:
        return RenderRequest(
            url=story.source_url,
            resources=self.resources.for_page(story.source_url),
            viewport_size=story.viewport_size,
            browser_name=self.browser_name,
            selectors_to_hide=self.selectors_to_hide,
        )

    async def capture(self, story: Story) -> RenderedImage:
        request = self.build_request(story)
        result = await self.client.render(request)
        logger.debug("Rendered %s at %s", story.test_name, result.image_location)
        return RenderedImage(image_location=result.image_location, viewport_size=story.viewport_size)
