"""Post image extraction and listing walks."""

from __future__ import annotations

import asyncio
from typing import List

import pytest
from fakes import FakePool, FakeSite

from gallery_crawler.config import (
    CONTENT_LINK_SELECTOR,
    CREATOR_POST_LINK_SELECTOR,
    GALLERY_IMAGE_SELECTOR,
    IDOL_POST_LINK_SELECTOR,
)
from gallery_crawler.errors import CrawlCancelled
from gallery_crawler.extractor import PostExtractor
from gallery_crawler.jobs import CancellationToken
from gallery_crawler.listing import ListingWalker, build_listing_url
from gallery_crawler.models import CrawlTarget, JobResult, ListingPage
from gallery_crawler.navigation import Navigator

POST = "https://gallery.test/post/1/"


def _extract(site: FakeSite) -> List[str]:
    async def scenario():
        session = await FakePool(site).acquire()
        await session.page.goto(POST)
        return await PostExtractor(ready_timeout=0).extract(session.page)

    return asyncio.run(scenario())


def test_gallery_images_win_over_content_links() -> None:
    site = FakeSite(
        documents={
            POST: {
                GALLERY_IMAGE_SELECTOR: ["https://cdn.test/1.jpg", "https://cdn.test/2.jpg"],
                CONTENT_LINK_SELECTOR: ["https://cdn.test/full.jpg"],
            }
        }
    )
    assert _extract(site) == ["https://cdn.test/1.jpg", "https://cdn.test/2.jpg"]


def test_falls_back_to_content_links_when_gallery_is_empty() -> None:
    site = FakeSite(documents={POST: {CONTENT_LINK_SELECTOR: ["https://cdn.test/full.jpg", ""]}})
    assert _extract(site) == ["https://cdn.test/full.jpg"]


def test_returns_empty_when_no_selector_matches() -> None:
    assert _extract(FakeSite(documents={POST: {}})) == []


def test_selector_errors_fall_through_to_next_strategy() -> None:
    site = FakeSite(
        documents={POST: {CONTENT_LINK_SELECTOR: ["https://cdn.test/full.jpg"]}},
        broken_selectors={GALLERY_IMAGE_SELECTOR: "Execution context was destroyed"},
    )
    assert _extract(site) == ["https://cdn.test/full.jpg"]


@pytest.mark.parametrize(
    "target, index, expected",
    [
        (CrawlTarget.idol("jihyo", 1, 3), 1, "https://gallery.test/idols/jihyo/page/1/"),
        (CrawlTarget.idol("jihyo", 1, 3), 3, "https://gallery.test/idols/jihyo/page/3/"),
        (CrawlTarget.creator("darkyeji"), 1, "https://gallery.test/creator/darkyeji/"),
        (CrawlTarget.creator("darkyeji"), 2, "https://gallery.test/creator/darkyeji/page/2/"),
        (CrawlTarget.creator("a b"), 1, "https://gallery.test/creator/a%20b/"),
    ],
)
def test_build_listing_url(target: CrawlTarget, index: int, expected: str) -> None:
    assert build_listing_url("https://gallery.test/", target, index) == expected


def test_build_listing_url_rejects_post_targets() -> None:
    with pytest.raises(ValueError):
        build_listing_url("https://gallery.test", CrawlTarget.post("x", POST), 1)


def _walk(site: FakeSite, config, target: CrawlTarget, token=None):
    result = JobResult()
    token = token or CancellationToken()

    async def scenario():
        session = await FakePool(site).acquire()
        walker = ListingWalker(Navigator(config, token), session, config, result, token)
        pages: List[ListingPage] = []
        async for page in walker.walk(target):
            pages.append(page)
        return walker, pages

    walker, pages = asyncio.run(scenario())
    return walker, pages, result


def creator_page(index: int) -> str:
    if index == 1:
        return "https://gallery.test/creator/maker/"
    return f"https://gallery.test/creator/maker/page/{index}/"


def test_open_ended_walk_stops_on_first_empty_page(config) -> None:
    site = FakeSite(
        documents={
            creator_page(1): {CREATOR_POST_LINK_SELECTOR: ["p1", "p2"]},
            creator_page(2): {CREATOR_POST_LINK_SELECTOR: ["p3"]},
            creator_page(3): {},
            creator_page(4): {CREATOR_POST_LINK_SELECTOR: ["never"]},
        }
    )
    walker, pages, result = _walk(site, config, CrawlTarget.creator("maker"))

    assert [page.index for page in pages] == [1, 2, 3]
    assert pages[-1].post_links == []
    assert walker.has_more_pages is False
    assert creator_page(4) not in site.visits
    assert result.errors == []


def test_open_ended_walk_continues_past_listing_failures(config) -> None:
    site = FakeSite(
        documents={
            creator_page(1): {CREATOR_POST_LINK_SELECTOR: ["p1"]},
            creator_page(2): {CREATOR_POST_LINK_SELECTOR: ["p2"]},
            creator_page(3): {},
        },
        failures={creator_page(2): 10},
    )
    walker, pages, result = _walk(site, config, CrawlTarget.creator("maker"))

    assert [page.index for page in pages] == [1, 3]
    assert [(err.scope, err.identifier) for err in result.errors] == [("page", "2")]
    assert walker.has_more_pages is False


def test_open_ended_walk_gives_up_after_consecutive_failures(config) -> None:
    config.max_listing_failures = 2
    site = FakeSite(
        documents={creator_page(1): {CREATOR_POST_LINK_SELECTOR: ["p1"]}},
        failures={creator_page(2): 10, creator_page(3): 10},
    )
    walker, pages, result = _walk(site, config, CrawlTarget.creator("maker"))

    assert [page.index for page in pages] == [1]
    assert len(result.errors_in_scope("page")) == 2
    assert creator_page(4) not in site.visits


def test_bounded_walk_visits_every_index_and_skips_empty_pages(config) -> None:
    pages_urls = {i: f"https://gallery.test/idols/jihyo/page/{i}/" for i in range(2, 6)}
    site = FakeSite(
        documents={
            pages_urls[2]: {IDOL_POST_LINK_SELECTOR: ["a"]},
            pages_urls[3]: {},
            pages_urls[4]: {IDOL_POST_LINK_SELECTOR: ["b", "c"]},
            pages_urls[5]: {IDOL_POST_LINK_SELECTOR: ["d"]},
        },
        failures={pages_urls[5]: 10},
    )
    walker, pages, result = _walk(site, config, CrawlTarget.idol("jihyo", 2, 5))

    assert [page.index for page in pages] == [2, 3, 4]
    assert [len(page.post_links) for page in pages] == [1, 0, 2]
    assert [err.identifier for err in result.errors_in_scope("page")] == ["5"]
    assert "https://gallery.test/idols/jihyo/page/6/" not in site.visits


def test_walk_checks_cancellation_before_each_page(config) -> None:
    site = FakeSite(documents={creator_page(i): {CREATOR_POST_LINK_SELECTOR: ["p"]} for i in (1, 2)})
    token = CancellationToken()
    site.on_visit = lambda url: token.request()

    with pytest.raises(CrawlCancelled):
        _walk(site, config, CrawlTarget.creator("maker"), token)
    assert site.visits == [creator_page(1)]
