"""Bounded, retrying navigation and navigation-as-fetch for images."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from playwright.async_api import Error as PlaywrightError

from .browser import BrowsingContext
from .config import CrawlConfig
from .errors import NavigationError
from .jobs import CancellationToken
from .retry import linear_backoff, with_retry

logger = logging.getLogger("gallery_crawler.navigation")


class EmptyResponse(Exception):
    """The browser finished a navigation without a response object."""

    def __init__(self) -> None:
        super().__init__("no response")


RETRYABLE_ERRORS = (PlaywrightError, asyncio.TimeoutError, EmptyResponse)


class Navigator:
    """Navigates browsing contexts with a timeout and linear backoff.

    Failures observed after cancellation was requested surface as
    :class:`~gallery_crawler.errors.CrawlCancelled` rather than being retried,
    so a forced browser teardown ends the job promptly.
    """

    def __init__(self, config: CrawlConfig, token: Optional[CancellationToken] = None) -> None:
        self.config = config
        self.token = token or CancellationToken()

    async def navigate(
        self,
        session: BrowsingContext,
        url: str,
        *,
        wait_until: str = "domcontentloaded",
        timeout_ms: Optional[float] = None,
        attempts: Optional[int] = None,
    ) -> Any:
        """Navigate ``session`` to ``url`` and return the response."""
        attempts = attempts or self.config.navigation_attempts
        timeout_ms = self.config.navigation_timeout_ms if timeout_ms is None else timeout_ms

        async def _goto() -> Any:
            response = await session.page.goto(url, wait_until=wait_until, timeout=timeout_ms)
            if response is None:
                raise EmptyResponse()
            return response

        def _log_failure(attempt: int, exc: BaseException) -> None:
            logger.warning("Navigation attempt %d/%d for %s failed: %s", attempt, attempts, url, exc)

        self.token.raise_if_requested()
        try:
            return await with_retry(
                _goto,
                attempts,
                linear_backoff(self.config.retry_base_delay),
                retry_on=RETRYABLE_ERRORS,
                should_stop=self.token.is_requested,
                on_failure=_log_failure,
            )
        except RETRYABLE_ERRORS as exc:
            raise NavigationError(url, attempts, exc) from exc

    async def fetch_image(self, session: BrowsingContext, url: str) -> bytes:
        """Navigate straight to an image URL and return the response body."""
        session.allow_image(url)
        response = await self.navigate(
            session,
            url,
            wait_until="networkidle",
            timeout_ms=self.config.image_timeout_ms,
            attempts=self.config.image_attempts,
        )
        if not response.ok:
            raise NavigationError(url, 1, RuntimeError(f"HTTP {response.status}"))
        try:
            return await response.body()
        except PlaywrightError as exc:
            self.token.raise_if_requested()
            raise NavigationError(url, 1, exc) from exc
