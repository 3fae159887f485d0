"""Single-checkpoint visual test session."""

from __future__ import annotations

import logging
from typing import Optional

from eyes_storybook.capture.base import CaptureResult, RenderedImage, Screenshot
from eyes_storybook.errors import SessionError
from eyes_storybook.models.config import ViewportSize
from eyes_storybook.models.test_result import BatchInfo, TestResult
from eyes_storybook.server.eyes_connector import EyesServerConnector

logger = logging.getLogger(__name__)


class TestSession:
    """One visual check of one story.

    A session is created for a single story execution and is never shared
    between tasks. It reports exactly one checkpoint; ``close`` only does
    bookkeeping and may be called any number of times.
    """

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        connector: EyesServerConnector,
        batch: BatchInfo,
        app_name: str,
        test_name: str,
        viewport_size: Optional[ViewportSize] = None,
    ):
        self._connector = connector
        self.batch = batch
        self.app_name = app_name
        self.test_name = test_name
        self.viewport_size = viewport_size
        self.title = ""
        self.captured_image: Optional[bytes] = None
        self.captured_image_url: Optional[str] = None
        self.result: Optional[TestResult] = None
        self._checked = False
        self._closed = False

    @classmethod
    def open(
        cls,
        connector: EyesServerConnector,
        batch: BatchInfo,
        app_name: str,
        test_name: str,
        viewport_size: Optional[ViewportSize] = None,
    ) -> "TestSession":
        # Nothing is sent to the server until the checkpoint
        logger.debug("Opening session %s / %s (%s)", app_name, test_name, viewport_size or "inferred")
        return cls(connector, batch, app_name, test_name, viewport_size)

    @property
    def is_closed(self) -> bool:
        return self._closed

    def set_image(self, image: bytes) -> None:
        self.captured_image = image
        self.captured_image_url = None

    def set_image_url(self, image_url: str) -> None:
        self.captured_image_url = image_url
        self.captured_image = None

    async def check_captured_image(self, captured: CaptureResult, title: str = "") -> TestResult:
        """Report the session's only checkpoint."""
        if self._closed:
            raise SessionError(f"Session {self.test_name} is closed")
        if self._checked:
            raise SessionError(f"Session {self.test_name} already reported its checkpoint")
        self._checked = True
        self.title = title or ""

        if isinstance(captured, Screenshot):
            self.set_image(captured.image)
            if self.viewport_size is None:
                self.viewport_size = captured.size()
        elif isinstance(captured, RenderedImage):
            self.set_image_url(captured.image_location)
            if self.viewport_size is None:
                self.viewport_size = captured.viewport_size
        else:
            raise TypeError(f"Unsupported capture result: {type(captured).__name__}")

        logger.debug("check_captured_image(%s, %r)", "image" if self.captured_image else self.captured_image_url, self.title)
        self.result = await self._connector.match_single_window(
            batch=self.batch,
            app_name=self.app_name,
            test_name=self.test_name,
            viewport_size=self.viewport_size,
            title=self.title,
            image=self.captured_image,
            image_url=self.captured_image_url,
        )
        return self.result

    async def close(self) -> Optional[TestResult]:
        # Single-checkpoint sessions have nothing to finalize on the server
        self._closed = True
        return self.result
