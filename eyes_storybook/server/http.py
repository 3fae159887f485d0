"""Shared httpx plumbing for the remote connectors.

Requests are retried with exponential backoff and full jitter on transient
failures (timeouts, connection errors, 429 and 5xx). Error responses are mapped
onto the run's error taxonomy so callers never see raw httpx objects.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any

import httpx

from eyes_storybook.errors import AuthenticationError, TransportError

logger = logging.getLogger(__name__)

# Status codes eligible for automatic retry.
_RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

_DEFAULT_BASE_DELAY = 0.5  # seconds
_DEFAULT_MAX_DELAY = 10.0  # seconds


def create_http_client(proxy: str | None = None, timeout_seconds: float = 30.0) -> httpx.AsyncClient:
    return httpx.AsyncClient(proxy=proxy, timeout=timeout_seconds, follow_redirects=True)


class HttpConnector:
    """Base class for connectors sharing one httpx.AsyncClient."""

    def __init__(
        self,
        base_url: str,
        http_client: httpx.AsyncClient,
        *,
        max_retries: int = 3,
        base_delay: float = _DEFAULT_BASE_DELAY,
        max_delay: float = _DEFAULT_MAX_DELAY,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = http_client
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._max_delay = max_delay

    def _auth_headers(self) -> dict[str, str]:
        return {}

    def _auth_params(self) -> dict[str, str]:
        return {}

    def _raise_for_status(self, resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return

        body = resp.text
        message = body[:200] if body else f"HTTP {resp.status_code}"
        try:
            payload = resp.json()
            if isinstance(payload, dict):
                message = payload.get("error", payload.get("message", message))
        except ValueError:
            pass

        request = resp.request
        detail = f"{request.method} {request.url.path} returned {resp.status_code}: {message}"
        if resp.status_code in (401, 403):
            raise AuthenticationError(detail, status_code=resp.status_code, response_body=body)
        raise TransportError(detail, status_code=resp.status_code, response_body=body)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any | None = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
        retry: bool = True,
    ) -> httpx.Response:
        """Send a request, retrying transient failures, and raise on error statuses."""
        url = f"{self._base_url}{path}"
        all_headers = {**self._auth_headers(), **(headers or {})}
        max_retries = self._max_retries if retry else 0

        for attempt in range(max_retries + 1):
            try:
                resp = await self._client.request(
                    method,
                    url,
                    headers=all_headers,
                    params=self._auth_params(),
                    json=json,
                    content=content,
                )
            except httpx.HTTPError as e:
                if attempt < max_retries:
                    delay = self._backoff_delay(attempt)
                    logger.warning(
                        "%s %s failed: %s (attempt %d/%d), retrying in %.1fs",
                        method, path, e, attempt + 1, max_retries + 1, delay,
                    )
                    await asyncio.sleep(delay)
                    continue
                raise TransportError(f"{method} {path} failed: {e}") from e

            if resp.status_code in _RETRYABLE_STATUS_CODES and attempt < max_retries:
                delay = self._retry_after_delay(resp, attempt)
                logger.warning(
                    "%s %s returned %d (attempt %d/%d), retrying in %.1fs",
                    method, path, resp.status_code, attempt + 1, max_retries + 1, delay,
                )
                await asyncio.sleep(delay)
                continue

            self._raise_for_status(resp)
            return resp

        raise TransportError(f"{method} {path}: exhausted retries with no response")

    def _backoff_delay(self, attempt: int) -> float:
        """Exponential backoff with full jitter."""
        delay = min(self._base_delay * (2 ** attempt), self._max_delay)
        return random.uniform(0, delay)

    def _retry_after_delay(self, resp: httpx.Response, attempt: int) -> float:
        """Use Retry-After header if present, otherwise exponential backoff."""
        retry_after = resp.headers.get("retry-after")
        if retry_after:
            try:
                return max(float(retry_after), 0.1)
            except ValueError:
                pass
        return self._backoff_delay(attempt)

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise TransportError(
                f"{resp.request.method} {resp.request.url.path} returned invalid JSON",
                status_code=resp.status_code,
                response_body=resp.text,
            ) from e
