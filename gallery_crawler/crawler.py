"""High-level orchestration for walking listings, visiting posts and saving images."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, List, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from .browser import ContextPool, close_browser, launch_browser
from .config import CrawlConfig
from .errors import CrawlCancelled, NavigationError
from .extractor import PostExtractor
from .images import ImageFetcher
from .jobs import CancellationToken, Job, NullSink, ProgressSink
from .listing import ListingWalker
from .models import CrawlTarget, ImageOutcome, JobResult, TargetKind
from .navigation import Navigator

logger = logging.getLogger("gallery_crawler")


class CrawlEngine:
    """Walks listing pages, visits each post and downloads its images.

    Work is strictly sequential. Cancellation is observed at the top of
    every listing page, every post and every image, and through navigation
    failures once the browser has been torn down.
    """

    def __init__(
        self,
        config: CrawlConfig,
        pool: Any,
        sink: Optional[ProgressSink] = None,
        token: Optional[CancellationToken] = None,
        navigator: Optional[Navigator] = None,
        extractor: Optional[PostExtractor] = None,
    ) -> None:
        self.config = config
        self.pool = pool
        self.sink = sink or NullSink()
        self.token = token or CancellationToken()
        self.navigator = navigator or Navigator(config, self.token)
        self.extractor = extractor or PostExtractor(ready_timeout=config.post_ready_timeout)
        self.fetcher = ImageFetcher(
            self.navigator,
            verify_images=config.verify_images,
            token=self.token,
            emit=self.emit,
        )

    def emit(self, line: str) -> None:
        logger.info("%s", line)
        self.sink.on_log(line)

    async def run(
        self, target: CrawlTarget, download_dir: Path, result: Optional[JobResult] = None
    ) -> JobResult:
        result = result if result is not None else JobResult()
        download_dir.mkdir(parents=True, exist_ok=True)
        self.emit(f"Starting {target.describe()}")

        if target.kind is TargetKind.POST:
            await self.process_post(target.post_url or "", 1, download_dir, result, label=target.name)
        else:
            await self._walk(target, download_dir, result)

        self.emit(
            f"Finished {target.describe()}: {result.pages_processed} pages, "
            f"{result.posts_processed} posts, {result.images_downloaded} images saved, "
            f"{result.images_skipped} skipped, {len(result.errors)} errors"
        )
        return result

    async def _walk(self, target: CrawlTarget, download_dir: Path, result: JobResult) -> None:
        listing = await self.pool.acquire()
        try:
            walker = ListingWalker(
                self.navigator, listing, self.config, result, self.token, emit=self.emit
            )
            async for page in walker.walk(target):
                result.pages_processed += 1
                total = len(page.post_links)
                for position, link in enumerate(page.post_links, start=1):
                    self.token.raise_if_requested()
                    await self.process_post(
                        link,
                        result.posts_processed + 1,
                        download_dir,
                        result,
                        label=f"{target.name} page {page.index} post {position}/{total}",
                    )
                self.emit(
                    f"Page {page.index} completed. Total: {result.pages_processed} pages, "
                    f"{result.posts_processed} posts, {result.images_downloaded} images"
                )
        finally:
            await self.pool.release(listing)

    async def process_post(
        self,
        url: str,
        number: int,
        download_dir: Path,
        result: JobResult,
        label: str = "",
    ) -> None:
        """Download every image of one post; failures are recorded, not raised."""
        self.token.raise_if_requested()
        result.posts_processed += 1
        session = None
        outcomes: List[ImageOutcome] = []
        try:
            session = await self.pool.acquire()
            await self.navigator.navigate(session, url)
            await self.extractor.wait_until_ready(session.page)
            images = await self.extractor.extract(session.page)
            self.emit(f"[Post {number}] Found {len(images)} images ({label}): {url}")
            try:
                await self.fetcher.fetch_all(session, download_dir, images, outcomes)
            finally:
                result.record_images(outcomes)
        except CrawlCancelled:
            raise
        except (NavigationError, PlaywrightError) as exc:
            self.token.raise_if_requested()
            result.add_error("post", url, str(exc))
            self.emit(f"Error processing post {number}: {exc}")
        finally:
            if session is not None:
                await self.pool.release(session)


async def run_job(
    job: Job,
    config: CrawlConfig,
    download_dir: Path,
    sink: Optional[ProgressSink] = None,
) -> JobResult:
    """Launch a browser, run ``job`` to completion and tear everything down.

    The browser is attached to the job as soon as it exists so a stop
    request can close it while navigations are in flight.
    """
    async with async_playwright() as playwright:
        browser = await launch_browser(playwright, config)
        job.attach_browser(browser)
        try:
            engine = CrawlEngine(config, ContextPool(browser, config), sink, job.token)
            return await engine.run(job.target, download_dir, job.result)
        finally:
            await close_browser(browser)
