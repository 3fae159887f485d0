"""Pytest configuration and shared fixtures."""

import io
import json
from pathlib import Path

import httpx
import pytest
from PIL import Image

from eyes_storybook.models.config import RunConfig, ViewportSize
from eyes_storybook.models.story import Story
from eyes_storybook.models.test_result import AppUrls, TestResult

EYES_URL = "https://eyes.test"
RENDER_URL = "https://render.test"
BATCH_URL = "https://eyes.test/app/batches/42"


# ============================================================================
# Fake remote service
# ============================================================================


class FakeEyesService:
    """Serves the eyes server and rendering service endpoints over httpx.MockTransport."""

    def __init__(
        self,
        renderinfo_status: int = 200,
        render_status: str = "rendered",
        match_result: dict | None = None,
        rendering_reachable: bool = True,
    ):
        self.renderinfo_status = renderinfo_status
        self.render_status = render_status
        self.match_result = match_result or {}
        self.rendering_reachable = rendering_reachable
        self.requests: list[httpx.Request] = []
        self.uploads: list[str] = []
        self.render_payloads: list[dict] = []
        self.status_calls: list[list[str]] = []
        self.matches: list[dict] = []
        self._render_ids: dict[str, str] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if not self.rendering_reachable and request.url.host == "render.test":
            raise httpx.ConnectError("connection refused", request=request)

        if path == "/api/sessions/renderinfo":
            if self.renderinfo_status != 200:
                return httpx.Response(self.renderinfo_status, json={"message": "Unauthorized"})
            return httpx.Response(200, json={
                "serviceUrl": RENDER_URL, "accessToken": "render-token", "resultsUrl": "",
            })

        if path.startswith("/resources/sha256/"):
            self.uploads.append(path.rsplit("/", 1)[-1])
            return httpx.Response(200)

        if path == "/render":
            payloads = json.loads(request.content)
            running = []
            for payload in payloads:
                self.render_payloads.append(payload)
                render_id = payload.get("renderId") or f"render-{len(self.render_payloads)}"
                self._render_ids[render_id] = payload["url"]
                running.append({"renderId": render_id, "renderStatus": "rendering"})
            return httpx.Response(200, json=running)

        if path == "/render-status":
            render_ids = json.loads(request.content)
            self.status_calls.append(render_ids)
            statuses = []
            for render_id in render_ids:
                status = {"renderId": render_id, "status": self.render_status}
                if self.render_status == "rendered":
                    status["imageLocation"] = f"{RENDER_URL}/images/{render_id}.png"
                elif self.render_status == "error":
                    status["error"] = "render crashed"
                statuses.append(status)
            return httpx.Response(200, json=statuses)

        if path == "/api/sessions/running/match":
            body = json.loads(request.content)
            self.matches.append(body)
            result = {
                "isNew": False, "isPassed": True, "mismatches": 0, "missing": 0,
                "matches": 1, "steps": 1, "status": "Passed",
                "appUrls": {"batch": BATCH_URL},
            }
            result.update(self.match_result)
            return httpx.Response(200, json=result)

        return httpx.Response(404, json={"message": f"unknown path {path}"})

    def client_factory(self):
        return lambda: httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def fake_service() -> FakeEyesService:
    return FakeEyesService()


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def static_build(tmp_path: Path) -> Path:
    """A tiny built Storybook."""
    build = tmp_path / "storybook-static"
    (build / "static").mkdir(parents=True)
    (build / "iframe.html").write_text("<html><body><div id='root'></div></body></html>")
    (build / "static" / "main.js").write_text("console.log('stories');")
    (build / "static" / "main.css").write_text("body { margin: 0; }")
    return build


@pytest.fixture
def run_config(static_build: Path) -> RunConfig:
    """Remote-mode configuration with fast polling."""
    return RunConfig(
        app_name="design-system",
        api_key="test-key",
        server_url=EYES_URL,
        concurrency=2,
        use_remote_rendering=True,
        static_build_dir=str(static_build),
        render_timeout_seconds=5.0,
        poll_initial_delay_seconds=0.01,
        poll_max_delay_seconds=0.05,
        http_max_retries=0,
    )


# ============================================================================
# Story Fixtures
# ============================================================================


def make_story(name: str, kind: str = "Button", viewport: ViewportSize | None = None) -> Story:
    return Story(
        name=name,
        kind=kind,
        source_url=f"http://localhost:9001/iframe.html?selectedKind={kind}&selectedStory={name}",
        viewport_size=viewport,
    )


@pytest.fixture
def stories() -> list[Story]:
    return [make_story("Primary"), make_story("Secondary"), make_story("Disabled")]


# ============================================================================
# Image / Result Fixtures
# ============================================================================


def make_png(width: int = 320, height: int = 200) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), (255, 255, 255)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


def make_result(name: str = "Button: Primary", **kwargs) -> TestResult:
    defaults = dict(
        is_passed=True, steps=1, matches=1,
        host_display_size=ViewportSize(width=1024, height=768),
        app_urls=AppUrls(batch=BATCH_URL),
        status="Passed",
    )
    defaults.update(kwargs)
    return TestResult(name=name, **defaults)
