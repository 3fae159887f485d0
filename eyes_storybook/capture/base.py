"""The capture capability shared by the local and remote backends."""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Optional, Protocol, Union

from PIL import Image

from eyes_storybook.models.config import ViewportSize
from eyes_storybook.models.story import Story


@dataclass(frozen=True)
class Screenshot:
    """A PNG captured in a local browser."""

    image: bytes

    def size(self) -> ViewportSize:
        with Image.open(io.BytesIO(self.image)) as img:
            width, height = img.size
        return ViewportSize(width=width, height=height)


@dataclass(frozen=True)
class RenderedImage:
    """An image hosted by the rendering service."""

    image_location: str
    viewport_size: Optional[ViewportSize] = None


CaptureResult = Union[Screenshot, RenderedImage]


class Capturer(Protocol):
    async def capture(self, story: Story) -> CaptureResult: ...
