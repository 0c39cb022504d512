"""Exception taxonomy shared by the crawl pipeline and its front ends."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import RateLimitStatus


class CrawlerError(Exception):
    """Base class for every error raised by the crawler."""


class ConfigError(CrawlerError):
    """Configuration values could not be parsed."""


class BrowserLaunchError(CrawlerError):
    """The browsing engine could not be started."""


class NavigationError(CrawlerError):
    """A navigation failed after exhausting its retry budget."""

    def __init__(self, url: str, attempts: int, cause: Optional[BaseException] = None):
        self.url = url
        self.attempts = attempts
        self.cause = cause
        detail = str(cause) if cause is not None else "no response"
        super().__init__(f"Navigation to {url} failed after {attempts} attempt(s): {detail}")


class ExtractionError(CrawlerError):
    """A DOM query could not be evaluated."""


class ImageWriteError(CrawlerError):
    """Downloaded bytes could not be persisted."""


class CrawlCancelled(CrawlerError):
    """The running job was cancelled; not a failure."""

    def __init__(self, message: str = "Cancelled"):
        super().__init__(message)


class JobConflictError(CrawlerError):
    """A job was requested while another one occupies the slot."""

    def __init__(self, message: str = "A download job is already running"):
        super().__init__(message)


class RateLimitExceeded(CrawlerError):
    """The client has no quota left for the requested work."""

    def __init__(self, status: "RateLimitStatus", estimate: Optional[int] = None):
        self.status = status
        self.estimate = estimate
        if estimate is None:
            message = "Rate limit exceeded"
        else:
            message = (
                f"Request would download approximately {estimate} images but only "
                f"{status.remaining} remain in the current window"
            )
        super().__init__(message)
