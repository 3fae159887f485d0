"""Submit/poll protocol client for the rendering service.

Every render request moves through an explicit state machine::

    submitted -> awaiting-resources -> rendering -> rendered | error

Submission happens in batches. A request the service answers with
``need-more-resources`` gets the missing resources uploaded and is resubmitted,
up to ``resource_retry_attempts`` times. Requests that reach ``rendering`` are
handed to a single polling task that queries the status of every outstanding
render in batches, backing off between rounds, until each render is terminal or
its deadline passes.

A render the service reports as ``error`` (on submission or while polling) goes
back to ``submitted`` and is resubmitted under its render id. These retries share
the ``resource_retry_attempts`` allowance with resource resubmissions.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Optional

from eyes_storybook.errors import EyesStorybookError, RenderError, RenderTimeoutError, TransportError
from eyes_storybook.models import render as states
from eyes_storybook.models.render import RenderRequest, RenderStatusResult, RunningRender
from eyes_storybook.server.rendering_connector import RenderingConnector

from .resource_cache import ResourceCache

logger = logging.getLogger(__name__)

# Job states
SUBMITTED = "submitted"
AWAITING_RESOURCES = "awaiting-resources"

_STATUS_BATCH_SIZE = 50
_BACKOFF_FACTOR = 1.5
_JITTER = 0.2


@dataclass
class RenderJob:
    request: RenderRequest
    state: str = SUBMITTED
    render_id: Optional[str] = None
    resubmissions: int = 0
    missing_resources: list[str] = field(default_factory=list)
    image_location: Optional[str] = None
    error: Optional[str] = None
    timed_out: bool = False
    retryable: bool = False  # the service itself reported the error
    deadline: float = 0.0
    done: Optional[asyncio.Future] = field(default=None, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.state in states.TERMINAL_STATES

    def finish(
        self,
        state: str,
        *,
        image_location: str | None = None,
        error: str | None = None,
        retryable: bool = False,
    ) -> None:
        self.state = state
        self.image_location = image_location
        self.error = error
        self.retryable = retryable
        if self.done is not None and not self.done.done():
            self.done.set_result(None)

    def fail(self, exc: BaseException) -> None:
        self.state = states.ERROR
        self.error = str(exc)
        if self.done is not None and not self.done.done():
            self.done.set_exception(exc)

    def result(self) -> RenderStatusResult:
        return RenderStatusResult(
            render_id=self.render_id or "",
            status=self.state,
            image_location=self.image_location,
            error=self.error,
        )


class RenderBatchClient:
    """Renders requests remotely and returns one terminal status per request."""

    def __init__(
        self,
        connector: RenderingConnector,
        cache: ResourceCache,
        *,
        render_timeout: float = 300.0,
        resource_retry_attempts: int = 2,
        poll_initial_delay: float = 0.5,
        poll_max_delay: float = 5.0,
    ):
        self.connector = connector
        self.cache = cache
        self.render_timeout = render_timeout
        self.resource_retry_attempts = resource_retry_attempts
        self.poll_initial_delay = poll_initial_delay
        self.poll_max_delay = poll_max_delay
        # render id -> jobs waiting on it; a service may hand out one id twice
        self._outstanding: dict[str, list[RenderJob]] = {}
        self._poll_task: asyncio.Task | None = None

    async def render(self, request: RenderRequest) -> RenderStatusResult:
        """Render one request. Raises RenderError / RenderTimeoutError on failure."""
        job = (await self._run([request]))[0]
        result = self._result(job)
        if job.timed_out:
            raise RenderTimeoutError(result.error or "render timed out", render_id=result.render_id)
        if result.status != states.RENDERED:
            raise RenderError(result.error or "render failed", render_id=result.render_id)
        return result

    async def render_batch(self, requests: list[RenderRequest]) -> list[RenderStatusResult]:
        """Render a batch of requests, one terminal result per request.

        Story-level failures, timeouts included, come back as ``error`` results.
        Fatal transport errors (authentication) propagate.
        """
        jobs = await self._run(requests)
        return [self._result(job) for job in jobs]

    async def _run(self, requests: list[RenderRequest]) -> list[RenderJob]:
        jobs = [RenderJob(request=r) for r in requests]
        await self._put_resources(jobs)
        pending = jobs
        while pending:
            await self._submit(pending)
            await self._wait_rendered(pending)
            pending = [j for j in pending if self._requeue_failed(j)]
        for job in jobs:
            if job.timed_out:
                logger.warning("Render %s timed out after %.0fs", job.render_id, self.render_timeout)
        return jobs

    def _requeue_failed(self, job: RenderJob) -> bool:
        """Send a render the service failed back to submission while attempts remain."""
        if job.state != states.ERROR or not job.retryable:
            return False
        if job.resubmissions >= self.resource_retry_attempts:
            return False
        job.resubmissions += 1
        logger.warning("Render %s failed (%s), resubmitting (%d/%d)",
                       job.render_id, job.error, job.resubmissions, self.resource_retry_attempts)
        job.state = SUBMITTED
        job.error = None
        job.retryable = False
        job.done = None
        return True

    def _result(self, job: RenderJob) -> RenderStatusResult:
        if job.state == states.RENDERED and not job.image_location:
            job.state = states.ERROR
            job.error = f"render {job.render_id} finished without an image location"
        return job.result()

    # ------------------------------------------------------------------
    # Resource phase
    # ------------------------------------------------------------------

    async def _put_resources(self, jobs: list[RenderJob]) -> None:
        outcomes = await asyncio.gather(
            *(self.cache.ensure_all(list(j.request.resources.values()), self.connector.upload_resource)
              for j in jobs),
            return_exceptions=True,
        )
        for job, outcome in zip(jobs, outcomes):
            if isinstance(outcome, BaseException):
                self._fail_or_raise(job, outcome, "resource upload failed")

    def _fail_or_raise(self, job: RenderJob, exc: BaseException, context: str) -> None:
        if not isinstance(exc, Exception) or (isinstance(exc, EyesStorybookError) and exc.fatal):
            raise exc
        job.finish(states.ERROR, error=f"{context}: {exc}")

    # ------------------------------------------------------------------
    # Submission phase
    # ------------------------------------------------------------------

    async def _submit(self, jobs: list[RenderJob]) -> None:
        pending = [j for j in jobs if j.state in (SUBMITTED, AWAITING_RESOURCES)]
        while pending:
            try:
                running = await self.connector.post_render_batch(
                    [j.request.to_payload(j.render_id) for j in pending]
                )
            except TransportError as e:
                if e.fatal:
                    raise
                for job in pending:
                    job.finish(states.ERROR, error=f"render submission failed: {e}")
                return

            for job, rr in zip(pending, running):
                self._apply_running_render(job, rr)

            awaiting = [j for j in pending if j.state == AWAITING_RESOURCES]
            if awaiting:
                await self._upload_missing(awaiting)
            pending = [j for j in awaiting if j.state == AWAITING_RESOURCES]

    def _apply_running_render(self, job: RenderJob, rr: RunningRender) -> None:
        job.render_id = rr.render_id
        status = rr.render_status
        if status == states.NEED_MORE_RESOURCES:
            if job.resubmissions >= self.resource_retry_attempts:
                job.finish(
                    states.ERROR,
                    error=f"render {rr.render_id} still needs resources after "
                          f"{job.resubmissions} resubmissions",
                )
                return
            job.resubmissions += 1
            job.state = AWAITING_RESOURCES
            logger.debug("Render %s needs %d more resources", rr.render_id, len(rr.need_more_resources))
            job.missing_resources = list(rr.need_more_resources)
        elif status == states.RENDERING:
            job.state = states.RENDERING
        elif status == states.RENDERED:
            # Finished without polling; the location still comes from the status call
            job.state = states.RENDERING
        else:
            job.finish(states.ERROR, error=rr.error or f"render {rr.render_id} failed", retryable=True)

    async def _upload_missing(self, jobs: list[RenderJob]) -> None:
        for job in jobs:
            missing = job.missing_resources
            unknown = [url for url in missing if url not in job.request.resources]
            if unknown:
                job.finish(states.ERROR, error=f"render {job.render_id} needs unknown resources: {unknown}")
                continue
            resources = [job.request.resources[url] for url in missing]
            try:
                await self.cache.ensure_all(resources, self.connector.upload_resource)
            except Exception as e:
                self._fail_or_raise(job, e, "resource upload failed")

    # ------------------------------------------------------------------
    # Polling phase
    # ------------------------------------------------------------------

    async def _wait_rendered(self, jobs: list[RenderJob]) -> None:
        loop = asyncio.get_running_loop()
        waiting = [j for j in jobs if j.state == states.RENDERING]
        if not waiting:
            return
        for job in waiting:
            job.deadline = loop.time() + self.render_timeout
            job.done = loop.create_future()
            self._outstanding.setdefault(job.render_id, []).append(job)
        self._ensure_poller()
        await asyncio.gather(*(j.done for j in waiting))

    def _ensure_poller(self) -> None:
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._poll_loop())

    def _next_delay(self, delay: float) -> float:
        return delay * random.uniform(1 - _JITTER, 1 + _JITTER)

    async def _poll_loop(self) -> None:
        try:
            await self._poll_until_settled()
        except Exception as e:
            logger.error("Render status polling crashed: %s", e)
            self._fail_all(e)

    async def _poll_until_settled(self) -> None:
        loop = asyncio.get_running_loop()
        delay = self.poll_initial_delay
        while self._outstanding:
            earliest = min(j.deadline for jobs in self._outstanding.values() for j in jobs)
            await asyncio.sleep(max(0.0, min(self._next_delay(delay), earliest - loop.time())))
            delay = min(delay * _BACKOFF_FACTOR, self.poll_max_delay)

            self._expire(loop.time())
            render_ids = list(self._outstanding)
            for start in range(0, len(render_ids), _STATUS_BATCH_SIZE):
                chunk = render_ids[start:start + _STATUS_BATCH_SIZE]
                try:
                    statuses = await self.connector.get_render_status_batch(chunk)
                except TransportError as e:
                    if e.fatal:
                        self._fail_all(e)
                        return
                    logger.warning("Render status poll failed: %s", e)
                    continue
                for status in statuses:
                    self._apply_status(status)

    def _apply_status(self, status: RenderStatusResult) -> None:
        if status.render_id not in self._outstanding or not status.is_terminal:
            return
        for job in self._outstanding.pop(status.render_id):
            if status.status == states.RENDERED:
                job.finish(states.RENDERED, image_location=status.image_location)
            else:
                job.finish(
                    states.ERROR,
                    error=status.error or f"render {status.render_id} failed",
                    retryable=True,
                )

    def _expire(self, now: float) -> None:
        for render_id, jobs in list(self._outstanding.items()):
            expired = [j for j in jobs if now >= j.deadline]
            if not expired:
                continue
            remaining = [j for j in jobs if j not in expired]
            if remaining:
                self._outstanding[render_id] = remaining
            else:
                del self._outstanding[render_id]
            for job in expired:
                job.timed_out = True
                job.finish(
                    states.ERROR,
                    error=f"render {render_id} timed out after {self.render_timeout:.0f}s",
                )

    def _fail_all(self, exc: BaseException) -> None:
        jobs = [j for waiting in self._outstanding.values() for j in waiting]
        self._outstanding.clear()
        for job in jobs:
            job.fail(exc)

    async def aclose(self) -> None:
        """Stop polling; outstanding renders fail."""
        if self._poll_task is not None and not self._poll_task.done():
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
        self._fail_all(RenderError("render client closed"))
