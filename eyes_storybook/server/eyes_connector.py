"""Connector for the eyes comparison server.

Two calls matter for a run: the rendering-info handshake, made once at startup,
and the single-window match that reports a story's only checkpoint.
"""

from __future__ import annotations

import base64
import logging

import httpx
from pydantic import ValidationError

from eyes_storybook import __version__
from eyes_storybook.errors import TransportError
from eyes_storybook.models.config import ViewportSize
from eyes_storybook.models.render import RenderingInfo
from eyes_storybook.models.test_result import BatchInfo, TestResult

from .http import HttpConnector

logger = logging.getLogger(__name__)

AGENT_ID = f"eyes.storybook.python/{__version__}"


class EyesServerConnector(HttpConnector):
    """Talks to the eyes server, authenticated with the API key."""

    def __init__(self, *, api_key: str, server_url: str, http_client: httpx.AsyncClient, max_retries: int = 3):
        if not api_key:
            raise ValueError("api_key is required")
        super().__init__(server_url, http_client, max_retries=max_retries)
        self._api_key = api_key

    def _auth_params(self) -> dict[str, str]:
        return {"apiKey": self._api_key}

    async def render_info(self) -> RenderingInfo:
        """Fetch the rendering service URL and its access token."""
        resp = await self._request("GET", "/api/sessions/renderinfo")
        try:
            info = RenderingInfo.model_validate(self._json(resp))
        except ValidationError as e:
            raise TransportError(f"Malformed rendering info: {e}") from e
        logger.debug("Rendering service: %s", info.service_url)
        return info

    async def match_single_window(
        self,
        *,
        batch: BatchInfo,
        app_name: str,
        test_name: str,
        viewport_size: ViewportSize | None,
        title: str,
        image: bytes | None = None,
        image_url: str | None = None,
    ) -> TestResult:
        """Report one checkpoint and return the resulting test outcome.

        Exactly one of ``image`` and ``image_url`` must be given. The call is not
        retried: a checkpoint is reported at most once.
        """
        if (image is None) == (image_url is None):
            raise ValueError("exactly one of image and image_url is required")

        app_output: dict = {"title": title}
        if image is not None:
            app_output["screenshot64"] = base64.b64encode(image).decode("ascii")
        else:
            app_output["screenshotUrl"] = image_url

        environment: dict = {"inferred": f"useragent:{AGENT_ID}"}
        if viewport_size:
            environment["displaySize"] = {"width": viewport_size.width, "height": viewport_size.height}

        payload = {
            "startInfo": {
                "agentId": AGENT_ID,
                "appIdOrName": app_name,
                "scenarioIdOrName": test_name,
                "batchInfo": batch.to_payload(),
                "environment": environment,
            },
            "appOutput": app_output,
            "tag": title,
        }
        resp = await self._request("POST", "/api/sessions/running/match", json=payload, retry=False)
        data = self._json(resp)
        if isinstance(data, dict):
            data.setdefault("name", test_name)
            if viewport_size and not data.get("hostDisplaySize"):
                data["hostDisplaySize"] = {"width": viewport_size.width, "height": viewport_size.height}
        try:
            return TestResult.model_validate(data)
        except ValidationError as e:
            raise TransportError(f"Malformed match result for {test_name}: {e}") from e
