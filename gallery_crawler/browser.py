"""Browser lifecycle and isolated browsing contexts with request filtering."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Set

from playwright.async_api import Browser, BrowserContext, Page, Playwright, Route
from playwright.async_api import Error as PlaywrightError

from .config import CrawlConfig
from .errors import BrowserLaunchError
from .retry import with_retry

logger = logging.getLogger("gallery_crawler.browser")

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--disable-extensions",
    "--disable-sync",
    "--disable-translate",
    "--disable-background-networking",
    "--hide-scrollbars",
    "--mute-audio",
    "--no-pings",
    "--metrics-recording-only",
    "--disable-blink-features=AutomationControlled",
]

ALWAYS_BLOCKED = {"stylesheet", "font", "media"}

STEALTH_LANGUAGES = ["en-US", "en"]


def stealth_script(languages: List[str]) -> str:
    """Init script hiding the usual automation markers."""
    languages_js = json.dumps(languages)
    return f"""
    Object.defineProperty(navigator, 'webdriver', {{ get: () => undefined }});
    Object.defineProperty(navigator, 'plugins', {{ get: () => [1, 2, 3, 4, 5] }});
    Object.defineProperty(navigator, 'languages', {{ get: () => {languages_js} }});
    window.chrome = {{ runtime: {{}} }};
    """


def should_block(resource_type: str, url: str, allowed_images: Set[str]) -> bool:
    """Decide whether a request is aborted by the interception policy.

    Stylesheets, fonts and media are always blocked. Images are blocked
    unless their URL was allow-listed for the context beforehand.
    """
    if resource_type in ALWAYS_BLOCKED:
        return True
    if resource_type == "image":
        return url not in allowed_images
    return False


@dataclass
class BrowsingContext:
    """An isolated browsing session: one context with one page."""

    page: Page
    context: BrowserContext
    allowed_images: Set[str] = field(default_factory=set)

    def allow_image(self, url: str) -> None:
        self.allowed_images.add(url)

    async def _route(self, route: Route) -> None:
        request = route.request
        if should_block(request.resource_type, request.url, self.allowed_images):
            await route.abort()
        else:
            await route.continue_()


class ContextPool:
    """Hands out freshly configured browsing contexts from one browser."""

    def __init__(self, browser: Browser, config: CrawlConfig) -> None:
        self.browser = browser
        self.config = config

    def _context_options(self) -> Dict[str, Any]:
        return {
            "viewport": {
                "width": self.config.viewport_width,
                "height": self.config.viewport_height,
            },
            "user_agent": self.config.user_agent,
            "locale": "en-US",
            "extra_http_headers": {
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                "Accept-Language": self.config.accept_language,
            },
        }

    async def acquire(self) -> BrowsingContext:
        context = await self.browser.new_context(**self._context_options())
        try:
            await context.add_init_script(stealth_script(STEALTH_LANGUAGES))
            context.set_default_navigation_timeout(self.config.navigation_timeout_ms)
            page = await context.new_page()
            session = BrowsingContext(page=page, context=context)
            await page.route("**/*", session._route)
        except Exception:
            await context.close()
            raise
        return session

    async def release(self, session: BrowsingContext) -> None:
        try:
            await session.context.close()
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Failed to close browsing context: %s", exc)


async def launch_browser(playwright: Playwright, config: CrawlConfig) -> Browser:
    """Launch Chromium, retrying a few times, and smoke-test it."""
    options: Dict[str, Any] = {
        "headless": config.headless,
        "args": list(LAUNCH_ARGS),
        "timeout": 30_000,
    }
    if config.executable_path:
        options["executable_path"] = config.executable_path
    if config.proxy_server:
        options["proxy"] = {"server": config.proxy_server}
        logger.info("Using proxy: %s", config.proxy_server)

    async def _launch() -> Browser:
        browser = await playwright.chromium.launch(**options)
        try:
            page = await browser.new_page()
            await page.goto(
                "data:text/html,<html><body>ok</body></html>",
                wait_until="domcontentloaded",
                timeout=5_000,
            )
            await page.close()
        except Exception:
            await browser.close()
            raise
        return browser

    def _log_failure(attempt: int, exc: BaseException) -> None:
        logger.error(
            "Browser launch attempt %d/%d failed: %s", attempt, config.launch_attempts, exc
        )

    try:
        browser = await with_retry(
            _launch,
            config.launch_attempts,
            lambda _attempt: config.launch_retry_delay,
            retry_on=(PlaywrightError, OSError),
            on_failure=_log_failure,
        )
    except (PlaywrightError, OSError) as exc:
        raise BrowserLaunchError(f"All browser launch attempts failed: {exc}") from exc
    logger.info("Browser launched")
    return browser


async def close_browser(browser: Browser) -> None:
    """Close every context and then the browser; failures are only logged."""
    try:
        for context in list(browser.contexts):
            await context.close()
        await browser.close()
        logger.info("Browser closed")
    except Exception as exc:  # pylint: disable=broad-except
        logger.warning("Error closing browser: %s", exc)
