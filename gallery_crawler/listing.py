"""Listing page URLs and the walker that pages through them."""

from __future__ import annotations

import logging
from typing import AsyncIterator, Callable, Iterator, List, Optional
from urllib.parse import quote

from playwright.async_api import Error as PlaywrightError

from .browser import BrowsingContext
from .config import CREATOR_POST_LINK_SELECTOR, IDOL_POST_LINK_SELECTOR, CrawlConfig
from .errors import ExtractionError, NavigationError
from .jobs import CancellationToken
from .models import CrawlTarget, JobResult, ListingPage, TargetKind
from .navigation import Navigator

logger = logging.getLogger("gallery_crawler.listing")


def build_listing_url(base_url: str, target: CrawlTarget, index: int) -> str:
    """Return the listing URL for page ``index`` of ``target``.

    Idol listings always carry the page segment; creator listings omit it
    on the first page.
    """
    base = base_url.rstrip("/")
    name = quote(target.name, safe="")
    if target.kind is TargetKind.IDOL:
        return f"{base}/idols/{name}/page/{index}/"
    if target.kind is TargetKind.CREATOR:
        if index == 1:
            return f"{base}/creator/{name}/"
        return f"{base}/creator/{name}/page/{index}/"
    raise ValueError(f"{target.kind.value} targets have no listing pages")


def post_link_selector(kind: TargetKind) -> str:
    if kind is TargetKind.CREATOR:
        return CREATOR_POST_LINK_SELECTOR
    return IDOL_POST_LINK_SELECTOR


class ListingWalker:
    """Yields listing pages for a target, one navigation at a time.

    Bounded ranges visit every index in ``start..end``. Open-ended walks
    stop at the first successfully loaded page without post links. A page
    that cannot be loaded is recorded as a page error and skipped; it never
    ends an open-ended walk by itself, but ``max_failures`` consecutive
    failures do.
    """

    def __init__(
        self,
        navigator: Navigator,
        session: BrowsingContext,
        config: CrawlConfig,
        result: JobResult,
        token: Optional[CancellationToken] = None,
        emit: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.navigator = navigator
        self.session = session
        self.config = config
        self.result = result
        self.token = token or navigator.token
        self.emit = emit or (lambda line: None)
        self.has_more_pages = True

    def _indices(self, target: CrawlTarget) -> Iterator[int]:
        index = target.pages.start
        while target.pages.end is None or index <= target.pages.end:
            yield index
            index += 1

    async def _post_links(self, selector: str) -> List[str]:
        try:
            links = await self.session.page.eval_on_selector_all(
                selector, "els => els.map(a => a.href)"
            )
        except PlaywrightError as exc:
            raise ExtractionError(f"post link query failed: {exc}") from exc
        return [link for link in links or [] if link]

    async def walk(self, target: CrawlTarget) -> AsyncIterator[ListingPage]:
        selector = post_link_selector(target.kind)
        open_ended = target.pages.open_ended
        consecutive_failures = 0
        self.has_more_pages = True

        for index in self._indices(target):
            self.token.raise_if_requested()
            url = build_listing_url(self.config.base_url, target, index)
            self.emit(f"[{target.name}] Opening page {index}: {url}")
            try:
                await self.navigator.navigate(self.session, url)
                links = await self._post_links(selector)
            except (NavigationError, ExtractionError) as exc:
                self.token.raise_if_requested()
                self.result.add_error("page", index, str(exc))
                self.emit(f"Failed to open page {index}: {exc}")
                consecutive_failures += 1
                if open_ended and consecutive_failures >= self.config.max_listing_failures:
                    self.emit(
                        f"Stopping after {consecutive_failures} consecutive failed pages"
                    )
                    self.has_more_pages = False
                    return
                continue

            consecutive_failures = 0
            if not links:
                self.emit(f"No posts found on page {index}.")
                if open_ended:
                    self.has_more_pages = False
                    yield ListingPage(index=index, url=url, post_links=[])
                    return
            else:
                self.emit(f"Found {len(links)} posts on page {index}")
            yield ListingPage(index=index, url=url, post_links=links)

        self.has_more_pages = False
