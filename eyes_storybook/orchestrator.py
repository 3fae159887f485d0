"""Run orchestrator: common setup, capturer selection, dispatch and verdict."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import AsyncExitStack
from typing import Callable, Optional

import httpx
from playwright.async_api import async_playwright

from eyes_storybook.capture.base import Capturer
from eyes_storybook.capture.browser import PlaywrightBrowserDriver, launch_browser
from eyes_storybook.capture.local import LocalCapturer
from eyes_storybook.capture.remote import RemoteCapturer
from eyes_storybook.dispatcher import Dispatcher
from eyes_storybook.errors import EyesStorybookError, SetupError, TransportError
from eyes_storybook.models.config import RunConfig
from eyes_storybook.models.render import RenderingInfo
from eyes_storybook.models.story import Story, expand_viewports
from eyes_storybook.models.test_result import BatchInfo, RunVerdict, TestResult
from eyes_storybook.rendering.render_batch import RenderBatchClient
from eyes_storybook.rendering.resource_cache import ResourceCache
from eyes_storybook.rendering.resources import StaticBuildResources
from eyes_storybook.reporter.aggregator import ResultAggregator
from eyes_storybook.server.eyes_connector import EyesServerConnector
from eyes_storybook.server.http import create_http_client
from eyes_storybook.server.rendering_connector import RenderingConnector
from eyes_storybook.session import TestSession

logger = logging.getLogger(__name__)


class Orchestrator:
    """Runs every story through one capture backend and folds the outcomes."""

    def __init__(
        self,
        config: RunConfig,
        http_client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
    ):
        self.config = config
        self.app_name = config.app_name or "storybook"
        self.batch = BatchInfo(name=config.batch_name or self.app_name)
        self._http_client_factory = http_client_factory or (
            lambda: create_http_client(config.proxy, config.request_timeout_seconds)
        )

    def run(self, stories: list[Story]) -> RunVerdict:
        """Execute the run and return its verdict. Fatal errors end in the fatal exit code."""
        return asyncio.run(self.execute(stories))

    async def execute(self, stories: list[Story]) -> RunVerdict:
        try:
            verdict = await self._execute(stories)
        except EyesStorybookError as e:
            if not e.fatal:
                raise
            logger.error("Run aborted: %s", e)
            return ResultAggregator.fatal_verdict(e)
        return verdict

    async def _execute(self, stories: list[Story]) -> RunVerdict:
        start = time.time()
        self.config.check()

        stories = expand_viewports(stories, self.config.viewport_sizes)
        mode = "remote rendering" if self.config.use_remote_rendering else "local browser"
        logger.info("=== Testing %d stories of %s (%s, concurrency %d) ===",
                    len(stories), self.app_name, mode, self.config.concurrency)

        aggregator = ResultAggregator()
        async with AsyncExitStack() as stack:
            http_client = await stack.enter_async_context(self._http_client_factory())
            eyes = EyesServerConnector(
                api_key=self.config.api_key,
                server_url=self.config.server_url,
                http_client=http_client,
                max_retries=self.config.http_max_retries,
            )
            if self.config.use_remote_rendering:
                capturer = await self._setup_remote(eyes, http_client, stack, stories)
            else:
                await self._handshake(eyes)
                capturer = await self._setup_local(stack)

            async def run_story(story: Story) -> TestResult:
                return await self._test_story(eyes, capturer, story)

            dispatcher = Dispatcher(self.config.concurrency, run_story, on_result=aggregator.add)
            await dispatcher.dispatch(stories)

        verdict = aggregator.verdict()
        logger.info("=== Run complete: %d passed, %d failed, %d new in %.1fs ===",
                    verdict.passed, verdict.failed, verdict.new, time.time() - start)
        return verdict

    async def _test_story(self, eyes: EyesServerConnector, capturer: Capturer, story: Story) -> TestResult:
        """capture -> check -> close, strictly in that order."""
        session = TestSession.open(eyes, self.batch, self.app_name, story.test_name, story.viewport_size)
        try:
            captured = await capturer.capture(story)
            await session.check_captured_image(captured, title=story.test_name)
        finally:
            result = await session.close()
        return result

    async def _handshake(self, eyes: EyesServerConnector) -> RenderingInfo:
        """Authenticated first contact with the eyes server; any failure aborts the run."""
        try:
            return await eyes.render_info()
        except TransportError as e:
            raise SetupError(f"Could not obtain rendering info: {e}") from e

    async def _setup_remote(
        self,
        eyes: EyesServerConnector,
        http_client: httpx.AsyncClient,
        stack: AsyncExitStack,
        stories: list[Story],
    ) -> RemoteCapturer:
        resources = StaticBuildResources.load(self.config.static_build_dir)
        info = await self._handshake(eyes)

        rendering = RenderingConnector.from_rendering_info(
            info, http_client, max_retries=self.config.http_max_retries,
        )
        cache = ResourceCache()
        if stories:
            # Every story page loads the whole build; later uploads are cache hits
            shared = list(resources.for_page(stories[0].source_url).values())
            try:
                await cache.ensure_all(shared, rendering.upload_resource)
            except TransportError as e:
                raise SetupError(f"Could not reach the rendering service: {e}") from e
            logger.info("Uploaded %d static resources to the rendering service", len(cache))

        client = RenderBatchClient(
            rendering,
            cache,
            render_timeout=self.config.render_timeout_seconds,
            resource_retry_attempts=self.config.resource_retry_attempts,
            poll_initial_delay=self.config.poll_initial_delay_seconds,
            poll_max_delay=self.config.poll_max_delay_seconds,
        )
        stack.push_async_callback(client.aclose)
        return RemoteCapturer(
            client,
            resources,
            browser_name=self.config.browser_name,
            selectors_to_hide=self.config.selectors_to_hide,
        )

    async def _setup_local(self, stack: AsyncExitStack) -> LocalCapturer:
        playwright = await stack.enter_async_context(async_playwright())
        logger.debug("Launching Chromium for local capture...")
        browser = await launch_browser(playwright, headless=self.config.headless)
        stack.push_async_callback(browser.close)
        driver = PlaywrightBrowserDriver(
            browser,
            navigation_timeout_ms=self.config.navigation_timeout_ms,
            wait_before_screenshot_ms=self.config.wait_before_screenshot_ms,
        )
        return LocalCapturer(driver)
