"""Job ownership: the singleton job slot, cancellation and progress capabilities."""

from __future__ import annotations

import contextlib
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional, Protocol

from .errors import CrawlCancelled, JobConflictError
from .models import CrawlTarget, JobResult, JobState

logger = logging.getLogger("gallery_crawler.jobs")


class ProgressSink(Protocol):
    """Receives human-readable progress lines while a job runs."""

    def on_log(self, line: str) -> None:
        ...


class NullSink:
    """Progress sink that discards everything."""

    def on_log(self, line: str) -> None:
        return None


class CancellationToken:
    """Cooperative cancellation flag checked at the engine's check-points."""

    def __init__(self) -> None:
        self._requested = False

    def request(self) -> None:
        self._requested = True

    def is_requested(self) -> bool:
        return self._requested

    def raise_if_requested(self) -> None:
        if self._requested:
            raise CrawlCancelled()


@dataclass
class Job:
    """State of the one crawl allowed to run at a time."""

    target: CrawlTarget
    identity: str = "local"
    state: JobState = JobState.PENDING
    token: CancellationToken = field(default_factory=CancellationToken)
    result: JobResult = field(default_factory=JobResult)
    browser: Any = None
    error: Optional[str] = None
    started_at: float = field(default_factory=time.time)

    def attach_browser(self, browser: Any) -> None:
        """Record the browsing engine so :meth:`abort` can tear it down."""
        self.browser = browser

    @property
    def cancelled(self) -> bool:
        return self.token.is_requested()

    async def abort(self) -> None:
        """Request cancellation and force the browsing engine closed."""
        self.token.request()
        if self.state is JobState.RUNNING:
            self.state = JobState.CANCELLING
        browser = self.browser
        if browser is None:
            return
        try:
            await browser.close()
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Error closing browser during abort: %s", exc)

    def snapshot(self) -> Dict[str, Any]:
        target = self.target
        data: Dict[str, Any] = {
            "state": self.state.value,
            "kind": target.kind.value,
            "name": target.name,
            "identity": self.identity,
            "startedAt": self.started_at,
        }
        if target.post_url:
            data["postUrl"] = target.post_url
        else:
            data["start"] = target.pages.start
            data["end"] = target.pages.end
        data.update(self.result.to_dict())
        if self.error:
            data["error"] = self.error
        return data


class JobController:
    """Owns the singleton job slot.

    The slot is only touched from the event loop thread, so acquisition
    and release need no lock.
    """

    def __init__(self) -> None:
        self._job: Optional[Job] = None

    @property
    def current(self) -> Optional[Job]:
        return self._job

    @property
    def busy(self) -> bool:
        return self._job is not None

    def start(self, target: CrawlTarget, identity: str = "local") -> Job:
        if self._job is not None:
            raise JobConflictError()
        job = Job(target=target, identity=identity, state=JobState.RUNNING)
        self._job = job
        logger.info("Job started: %s (client %s)", target.describe(), identity)
        return job

    def release(self, job: Job) -> None:
        if self._job is job:
            self._job = None

    @contextlib.asynccontextmanager
    async def run(self, target: CrawlTarget, identity: str = "local") -> AsyncIterator[Job]:
        """Occupy the slot for the duration of the block and settle the job.

        :class:`CrawlCancelled` raised inside the block, or any error raised
        after cancellation was requested, settles the job as cancelled and
        is swallowed; other errors settle it as failed and propagate.
        """
        job = self.start(target, identity)
        try:
            yield job
        except CrawlCancelled:
            job.state = JobState.CANCELLED
        except Exception as exc:
            if job.cancelled:
                logger.debug("Error after cancellation treated as cancel: %s", exc)
                job.state = JobState.CANCELLED
            else:
                job.state = JobState.FAILED
                job.error = str(exc) or exc.__class__.__name__
                raise
        else:
            job.state = JobState.CANCELLED if job.cancelled else JobState.COMPLETED
        finally:
            self.release(job)
            logger.info("Job settled as %s: %s", job.state.value, target.describe())

    async def stop(self) -> Optional[Job]:
        """Abort the running job, if any, and return it."""
        job = self._job
        if job is None:
            return None
        await job.abort()
        return job
