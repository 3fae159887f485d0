"""Story descriptors produced by the discovery step."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from eyes_storybook.errors import ConfigurationError
from eyes_storybook.models.config import ViewportSize


class Story(BaseModel):
    """One component variant to capture."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: str
    source_url: str
    params: dict[str, Any] = Field(default_factory=dict)
    viewport_size: Optional[ViewportSize] = None

    @property
    def test_name(self) -> str:
        return f"{self.kind}: {self.name}"

    def with_viewport(self, viewport_size: ViewportSize) -> "Story":
        return self.model_copy(update={"viewport_size": viewport_size})


def expand_viewports(stories: list[Story], viewport_sizes: list[ViewportSize]) -> list[Story]:
    """Return one Story per (story, viewport) pair.

    With no viewports configured the stories are returned untouched and the
    viewport is later inferred from the captured image.
    """
    if not viewport_sizes:
        return list(stories)
    return [story.with_viewport(vs) for story in stories for vs in viewport_sizes]


def load_stories(path: str | Path) -> list[Story]:
    """Load a JSON list of stories."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Stories file not found: {path}")
    with open(path) as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Stories file {path} is not valid JSON: {e}") from e
    if not isinstance(data, list):
        raise ConfigurationError(f"Stories file {path} should contain a JSON list")
    try:
        return [Story(**item) for item in data]
    except ValidationError as e:
        raise ConfigurationError(f"Invalid story in {path}: {e}") from e
