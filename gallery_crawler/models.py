"""Data models used throughout the crawler pipeline."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class TargetKind(str, enum.Enum):
    """What a job crawls."""

    IDOL = "idol"
    CREATOR = "creator"
    POST = "post"


class JobState(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    CANCELLING = "cancelling"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PageRange:
    """Inclusive listing page range; ``end=None`` walks until a page is empty."""

    start: int = 1
    end: Optional[int] = None

    def __post_init__(self) -> None:
        if self.start < 1:
            raise ValueError("start page must be >= 1")
        if self.end is not None and self.end < self.start:
            raise ValueError("end page must be >= start page")

    @property
    def open_ended(self) -> bool:
        return self.end is None

    @property
    def page_count(self) -> Optional[int]:
        if self.end is None:
            return None
        return self.end - self.start + 1


@dataclass(frozen=True)
class CrawlTarget:
    """Immutable description of what a single job downloads."""

    kind: TargetKind
    name: str
    pages: PageRange = field(default_factory=PageRange)
    post_url: Optional[str] = None

    @classmethod
    def idol(cls, name: str, start: int, end: int) -> "CrawlTarget":
        return cls(TargetKind.IDOL, name, PageRange(start, end))

    @classmethod
    def creator(cls, name: str, start: int = 1, end: Optional[int] = None) -> "CrawlTarget":
        return cls(TargetKind.CREATOR, name, PageRange(start, end))

    @classmethod
    def post(cls, name: str, post_url: str) -> "CrawlTarget":
        return cls(TargetKind.POST, name, post_url=post_url)

    def describe(self) -> str:
        if self.kind is TargetKind.POST:
            return f"post {self.post_url} ({self.name})"
        end = "until empty" if self.pages.end is None else str(self.pages.end)
        return f"{self.kind.value} {self.name} pages {self.pages.start}-{end}"


@dataclass
class ErrorRecord:
    """A failure recorded against a page, post or image."""

    scope: str
    identifier: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"scope": self.scope, "identifier": self.identifier, "message": self.message}


@dataclass
class ImageOutcome:
    """Result of processing one image URL."""

    filename: str
    success: bool
    error: Optional[str] = None
    skipped: bool = False
    url: str = ""


@dataclass
class JobResult:
    """Counters and errors accumulated while a job runs."""

    pages_processed: int = 0
    posts_processed: int = 0
    images_downloaded: int = 0
    images_skipped: int = 0
    errors: List[ErrorRecord] = field(default_factory=list)

    def add_error(self, scope: str, identifier: Any, message: str) -> None:
        self.errors.append(ErrorRecord(scope, str(identifier), message))

    def record_images(self, outcomes: List[ImageOutcome]) -> None:
        for outcome in outcomes:
            if outcome.skipped:
                self.images_skipped += 1
            elif outcome.success:
                self.images_downloaded += 1
            else:
                self.add_error("image", outcome.url or outcome.filename, outcome.error or "failed")

    def errors_in_scope(self, scope: str) -> List[ErrorRecord]:
        return [err for err in self.errors if err.scope == scope]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pagesProcessed": self.pages_processed,
            "postsProcessed": self.posts_processed,
            "imagesDownloaded": self.images_downloaded,
            "imagesSkipped": self.images_skipped,
            "errors": [err.to_dict() for err in self.errors],
        }


@dataclass
class ListingPage:
    """One listing page produced by the walker."""

    index: int
    url: str
    post_links: List[str]


@dataclass
class RateLimitStatus:
    allowed: bool
    remaining: int
    reset_in: int
