"""Connector for the rendering service (resource upload, render, status)."""

from __future__ import annotations

import logging

import httpx
from pydantic import TypeAdapter, ValidationError

from eyes_storybook.errors import TransportError
from eyes_storybook.models.render import RenderingInfo, RenderStatusResult, RGridResource, RunningRender

from .http import HttpConnector

logger = logging.getLogger(__name__)

_RUNNING_RENDERS = TypeAdapter(list[RunningRender])
_STATUS_RESULTS = TypeAdapter(list[RenderStatusResult])


class RenderingConnector(HttpConnector):
    """Authenticated with the access token obtained from the render-info handshake."""

    def __init__(self, *, service_url: str, access_token: str, http_client: httpx.AsyncClient, max_retries: int = 3):
        super().__init__(service_url, http_client, max_retries=max_retries)
        self._access_token = access_token

    @classmethod
    def from_rendering_info(
        cls, info: RenderingInfo, http_client: httpx.AsyncClient, max_retries: int = 3,
    ) -> "RenderingConnector":
        return cls(
            service_url=info.service_url,
            access_token=info.access_token,
            http_client=http_client,
            max_retries=max_retries,
        )

    def _auth_headers(self) -> dict[str, str]:
        return {"X-Auth-Token": self._access_token}

    async def upload_resource(self, resource: RGridResource) -> None:
        await self._request(
            "PUT",
            f"/resources/sha256/{resource.hash}",
            content=resource.content,
            headers={"Content-Type": resource.content_type},
        )
        logger.debug("Uploaded %s (%s, %d bytes)", resource.url, resource.hash[:12], len(resource.content))

    async def post_render_batch(self, payloads: list[dict]) -> list[RunningRender]:
        resp = await self._request("POST", "/render", json=payloads)
        try:
            renders = _RUNNING_RENDERS.validate_python(self._json(resp))
        except ValidationError as e:
            raise TransportError(f"Malformed render response: {e}") from e
        if len(renders) != len(payloads):
            raise TransportError(
                f"Render response has {len(renders)} entries for {len(payloads)} requests"
            )
        return renders

    async def get_render_status_batch(self, render_ids: list[str]) -> list[RenderStatusResult]:
        resp = await self._request("POST", "/render-status", json=render_ids)
        try:
            return _STATUS_RESULTS.validate_python(self._json(resp))
        except ValidationError as e:
            raise TransportError(f"Malformed render status response: {e}") from e
