"""Content-addressed dedup table for resources uploaded to the rendering service."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from eyes_storybook.models.render import ResourceCacheEntry, RGridResource

logger = logging.getLogger(__name__)

Uploader = Callable[[RGridResource], Awaitable[None]]


class ResourceCache:
    """Process-wide record of which resource hashes the service already has.

    Uploads are single-flight per hash: while one task uploads a hash, other
    tasks asking for the same hash wait for it instead of uploading again. A
    failed upload leaves the hash unmarked so a later caller can retry it.
    """

    def __init__(self) -> None:
        self._entries: dict[str, ResourceCacheEntry] = {}
        self._inflight: dict[str, asyncio.Event] = {}
        self.upload_count = 0

    def __contains__(self, resource_hash: str) -> bool:
        entry = self._entries.get(resource_hash)
        return entry is not None and entry.uploaded

    def __len__(self) -> int:
        return sum(1 for e in self._entries.values() if e.uploaded)

    def mark_uploaded(self, resource_hash: str) -> None:
        self._entries[resource_hash] = ResourceCacheEntry(hash=resource_hash, uploaded=True)

    async def ensure_uploaded(self, resource: RGridResource, upload: Uploader) -> bool:
        """Upload ``resource`` unless its hash is already present.

        Returns True if this call performed the upload.
        """
        while True:
            if resource.hash in self:
                return False
            pending = self._inflight.get(resource.hash)
            if pending is None:
                break
            await pending.wait()

        done = asyncio.Event()
        self._inflight[resource.hash] = done
        try:
            await upload(resource)
            self.mark_uploaded(resource.hash)
            self.upload_count += 1
        finally:
            del self._inflight[resource.hash]
            done.set()
        return True

    async def ensure_all(self, resources: list[RGridResource], upload: Uploader) -> int:
        """Make sure every resource is present; returns how many were uploaded here."""
        unique = {r.hash: r for r in resources}
        uploaded = await asyncio.gather(
            *(self.ensure_uploaded(r, upload) for r in unique.values())
        )
        count = sum(1 for u in uploaded if u)
        if count:
            logger.debug("Uploaded %d of %d resources", count, len(unique))
        return count
