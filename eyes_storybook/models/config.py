"""Run configuration model."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from eyes_storybook.errors import ConfigurationError

API_KEY_ENV_VAR = "APPLITOOLS_API_KEY"
DEFAULT_SERVER_URL = "https://eyesapi.applitools.com"


class ViewportSize(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int
    height: int

    @field_validator("width", "height")
    @classmethod
    def positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("viewport width and height must be positive")
        return v

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


class RunConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Target
    app_name: Optional[str] = None
    batch_name: Optional[str] = None

    # Remote service
    api_key: Optional[str] = Field(default_factory=lambda: os.environ.get(API_KEY_ENV_VAR))
    server_url: str = DEFAULT_SERVER_URL
    proxy: Optional[str] = None
    request_timeout_seconds: float = 30.0
    http_max_retries: int = 3

    # Execution
    concurrency: int = 10
    use_remote_rendering: bool = True
    viewport_sizes: list[ViewportSize] = Field(default_factory=list)

    # Remote rendering
    static_build_dir: str = "storybook-static"
    browser_name: str = "chrome"
    selectors_to_hide: list[str] = Field(default_factory=list)
    render_timeout_seconds: float = 300.0
    poll_initial_delay_seconds: float = 0.5
    poll_max_delay_seconds: float = 5.0
    resource_retry_attempts: int = 2

    # Local capture
    headless: bool = True
    navigation_timeout_ms: int = 30000
    wait_before_screenshot_ms: int = 0

    # Reporting
    report_output_dir: Optional[str] = None

    @field_validator("api_key", mode="before")
    @classmethod
    def resolve_env_api_key(cls, v: Optional[str]) -> Optional[str]:
        if isinstance(v, str) and v.startswith("env:"):
            env_var = v[4:]
            resolved = os.environ.get(env_var)
            if resolved is None:
                raise ValueError(f"Environment variable '{env_var}' not set")
            return resolved
        return v

    @field_validator("viewport_sizes", mode="before")
    @classmethod
    def wrap_single_viewport(cls, v):
        # A lone {"width": .., "height": ..} is accepted as a one-element list
        if isinstance(v, dict):
            return [v]
        return v

    @field_validator("server_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    def check(self) -> None:
        """Validate the settings a run depends on. Raises ConfigurationError."""
        if self.concurrency < 1:
            raise ConfigurationError(
                f"concurrency should be at least 1, got {self.concurrency}"
            )
        if not self.api_key:
            raise ConfigurationError(
                "The Applitools API Key is missing. Please add it to your "
                f"configuration file or set the {API_KEY_ENV_VAR} environment variable."
            )
        if self.render_timeout_seconds <= 0:
            raise ConfigurationError("render_timeout_seconds should be positive")
        if self.resource_retry_attempts < 0:
            raise ConfigurationError("resource_retry_attempts cannot be negative")

    @classmethod
    def load(cls, path: str | Path) -> "RunConfig":
        """Load config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Config file {path} is not valid JSON: {e}") from e
        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration in {path}: {e}") from e

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(exclude={"api_key"})
        with open(path, "w") as f:
            json.dump(data, f, indent=2)
