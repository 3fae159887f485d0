"""Data structures exchanged with the rendering service."""

from __future__ import annotations

import hashlib
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from eyes_storybook.models.config import ViewportSize

# Render states reported by the service
NEED_MORE_RESOURCES = "need-more-resources"
RENDERING = "rendering"
RENDERED = "rendered"
ERROR = "error"

TERMINAL_STATES = frozenset({RENDERED, ERROR})


class _WireModel(BaseModel):
    # The service speaks camelCase
    model_config = ConfigDict(populate_by_name=True)


class RenderingInfo(_WireModel):
    service_url: str = Field(alias="serviceUrl")
    access_token: str = Field(alias="accessToken")
    results_url: str = Field(default="", alias="resultsUrl")


class RGridResource(BaseModel):
    """A static asset referenced by rendered stories."""

    model_config = ConfigDict(frozen=True)

    url: str
    content_type: str
    content: bytes
    hash: str

    @classmethod
    def from_content(cls, url: str, content_type: str, content: bytes) -> "RGridResource":
        return cls(
            url=url,
            content_type=content_type,
            content=content,
            hash=hashlib.sha256(content).hexdigest(),
        )

    def descriptor(self) -> dict:
        return {"hashFormat": "sha256", "hash": self.hash, "contentType": self.content_type}


class ResourceCacheEntry(BaseModel):
    hash: str
    uploaded: bool = False


class RenderRequest(BaseModel):
    url: str
    resources: dict[str, RGridResource] = Field(default_factory=dict)
    viewport_size: Optional[ViewportSize] = None
    browser_name: str = "chrome"
    selectors_to_hide: list[str] = Field(default_factory=list)

    def to_payload(self, render_id: str | None = None) -> dict:
        payload: dict = {
            "url": self.url,
            "resources": {url: r.descriptor() for url, r in self.resources.items()},
            "browser": {"name": self.browser_name},
            "renderInfo": {"sizeMode": "full-page"},
        }
        if self.viewport_size:
            payload["renderInfo"]["width"] = self.viewport_size.width
            payload["renderInfo"]["height"] = self.viewport_size.height
        if self.selectors_to_hide:
            payload["selectorsToHide"] = list(self.selectors_to_hide)
        if render_id:
            payload["renderId"] = render_id
        return payload


class RunningRender(_WireModel):
    render_id: str = Field(alias="renderId")
    render_status: str = Field(alias="renderStatus")  # need-more-resources, rendering, rendered, error
    need_more_resources: list[str] = Field(default_factory=list, alias="needMoreResources")
    error: Optional[str] = None


class RenderStatusResult(_WireModel):
    render_id: str = Field(alias="renderId")
    status: str  # rendering, rendered, error
    image_location: Optional[str] = Field(default=None, alias="imageLocation")
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES
