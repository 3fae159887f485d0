"""Collects the static build's files as render resources."""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from urllib.parse import urljoin

from eyes_storybook.errors import ConfigurationError
from eyes_storybook.models.render import RGridResource

logger = logging.getLogger(__name__)

_DEFAULT_CONTENT_TYPE = "application/octet-stream"


class StaticBuildResources:
    """Every file of a built Storybook, hashed once per run.

    All stories load the same bundle, so their render requests reference the
    same resource hashes and each file is uploaded once.
    """

    def __init__(self, files: dict[str, tuple[str, bytes]]):
        # relative path -> (content type, content)
        self._files = files
        self._by_base: dict[str, dict[str, RGridResource]] = {}

    @classmethod
    def load(cls, build_dir: str | Path) -> "StaticBuildResources":
        build_dir = Path(build_dir)
        if not build_dir.is_dir():
            raise ConfigurationError(f"Static build directory not found: {build_dir}")

        files: dict[str, tuple[str, bytes]] = {}
        for path in sorted(build_dir.rglob("*")):
            if not path.is_file():
                continue
            rel = path.relative_to(build_dir).as_posix()
            content_type = mimetypes.guess_type(path.name)[0] or _DEFAULT_CONTENT_TYPE
            files[rel] = (content_type, path.read_bytes())

        if not files:
            raise ConfigurationError(f"Static build directory is empty: {build_dir}")
        logger.info("Loaded %d static resources from %s", len(files), build_dir)
        return cls(files)

    def __len__(self) -> int:
        return len(self._files)

    def for_page(self, page_url: str) -> dict[str, RGridResource]:
        """Resources keyed by absolute URL relative to the story page."""
        base = urljoin(page_url, ".")
        resources = self._by_base.get(base)
        if resources is None:
            resources = {
                urljoin(base, rel): RGridResource.from_content(urljoin(base, rel), content_type, content)
                for rel, (content_type, content) in self._files.items()
            }
            self._by_base[base] = resources
        return resources
