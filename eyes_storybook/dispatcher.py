"""Bounded worker pool that runs one task per story."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Optional

from eyes_storybook.errors import ConfigurationError, EyesStorybookError
from eyes_storybook.models.story import Story
from eyes_storybook.models.test_result import TestResult

logger = logging.getLogger(__name__)

StoryRunner = Callable[[Story], Awaitable[TestResult]]
ResultCallback = Callable[[TestResult], None]


class Dispatcher:
    """Runs stories with at most ``concurrency`` in flight.

    Each worker takes the next pending story as soon as its current one
    finishes. Story-level errors become failed results. A fatal error stops
    every worker from taking new stories, waits for running stories to finish,
    discards all results and is re-raised.
    """

    def __init__(self, concurrency: int, run_story: StoryRunner, on_result: Optional[ResultCallback] = None):
        if concurrency < 1:
            raise ConfigurationError(f"concurrency should be at least 1, got {concurrency}")
        self.concurrency = concurrency
        self._run_story = run_story
        self._on_result = on_result

    async def dispatch(self, stories: list[Story]) -> list[TestResult]:
        pending: deque[Story] = deque(stories)
        results: list[TestResult] = []
        fatal: list[BaseException] = []
        total = len(pending)

        async def worker(worker_id: int) -> None:
            while pending and not fatal:
                story = pending.popleft()
                logger.info("Running story [%d/%d]: %s", total - len(pending), total, story.test_name)
                try:
                    result = await self._run_story(story)
                except EyesStorybookError as e:
                    if e.fatal:
                        logger.error("Fatal error in %s, aborting run: %s", story.test_name, e)
                        fatal.append(e)
                        return
                    result = self._failed(story, e)
                except Exception as e:
                    logger.debug("Unexpected error in %s", story.test_name, exc_info=True)
                    result = self._failed(story, e)

                if fatal:
                    # Run is aborting; results of draining tasks are dropped
                    return
                results.append(result)
                if self._on_result:
                    self._on_result(result)

        workers = min(self.concurrency, total)
        logger.debug("Dispatching %d stories on %d workers", total, workers)
        await asyncio.gather(*(worker(i) for i in range(workers)))

        if fatal:
            skipped = len(pending)
            if skipped:
                logger.info("%d stories were not started", skipped)
            raise fatal[0]
        return results

    @staticmethod
    def _failed(story: Story, error: BaseException) -> TestResult:
        logger.warning("[FAILED] %s: %s", story.test_name, error)
        return TestResult.from_error(story.test_name, error, story.viewport_size)
