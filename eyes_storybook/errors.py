"""Error taxonomy for a test run.

Errors marked ``fatal`` abort the whole run. Everything else is scoped to the
story that raised it and ends up as a failed TestResult.
"""

from __future__ import annotations


class EyesStorybookError(Exception):
    """Base class for all errors raised by eyes-storybook."""

    fatal = False


class ConfigurationError(EyesStorybookError):
    """Invalid or missing configuration (credentials, concurrency, viewports)."""

    fatal = True


class SetupError(EyesStorybookError):
    """Setup shared by every story failed (handshake, browser launch)."""

    fatal = True


class TransportError(EyesStorybookError):
    """Network or HTTP failure talking to a backend."""

    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message)


class AuthenticationError(TransportError):
    """The backend rejected our credentials (401/403)."""

    fatal = True


class RenderError(EyesStorybookError):
    """The rendering service could not produce an image for a render request."""

    def __init__(self, message: str, render_id: str | None = None):
        self.render_id = render_id
        super().__init__(message)


class RenderTimeoutError(RenderError):
    """A render did not reach a terminal state before its deadline."""


class CaptureError(EyesStorybookError):
    """Local browser automation failed for one story."""


class SessionError(EyesStorybookError):
    """A test session was used outside its single-checkpoint lifecycle."""
