"""Image URL extraction from rendered post pages."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from playwright.async_api import Error as PlaywrightError

from .config import CONTENT_LINK_SELECTOR, GALLERY_IMAGE_SELECTOR, POST_READY_SELECTOR
from .errors import ExtractionError

logger = logging.getLogger("gallery_crawler.extractor")

_ATTRIBUTE_SCRIPT = "(els, attr) => els.map(el => el[attr])"


@dataclass(frozen=True)
class SelectorStrategy:
    """Collect one attribute from every element matching a selector."""

    name: str
    selector: str
    attribute: str

    async def query(self, page: Any) -> List[str]:
        try:
            values = await page.eval_on_selector_all(
                self.selector, _ATTRIBUTE_SCRIPT, self.attribute
            )
        except PlaywrightError as exc:
            raise ExtractionError(f"{self.name} selector failed: {exc}") from exc
        return [value for value in values or [] if isinstance(value, str) and value]


GALLERY_STRATEGY = SelectorStrategy("gallery", GALLERY_IMAGE_SELECTOR, "src")
CONTENT_LINK_STRATEGY = SelectorStrategy("content-links", CONTENT_LINK_SELECTOR, "href")

DEFAULT_STRATEGIES = (GALLERY_STRATEGY, CONTENT_LINK_STRATEGY)


class PostExtractor:
    """Try each strategy in order; the first non-empty result wins.

    The site uses either a gallery slider of ``<img>`` elements or a
    content block of links to full-resolution files, never both.
    """

    def __init__(
        self,
        strategies: Sequence[SelectorStrategy] = DEFAULT_STRATEGIES,
        ready_selector: Optional[str] = POST_READY_SELECTOR,
        ready_timeout: float = 5.0,
    ) -> None:
        self.strategies = tuple(strategies)
        self.ready_selector = ready_selector
        self.ready_timeout = ready_timeout

    async def wait_until_ready(self, page: Any) -> None:
        if not self.ready_selector or self.ready_timeout <= 0:
            return
        try:
            await page.wait_for_selector(self.ready_selector, timeout=self.ready_timeout * 1000)
        except PlaywrightError:
            logger.debug("Post markup did not appear within %.1fs", self.ready_timeout)

    async def extract(self, page: Any) -> List[str]:
        for strategy in self.strategies:
            try:
                urls = await strategy.query(page)
            except ExtractionError as exc:
                logger.warning("%s", exc)
                continue
            logger.debug("%s selector found %d URL(s)", strategy.name, len(urls))
            if urls:
                return urls
        return []
