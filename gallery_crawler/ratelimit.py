"""Per-client image quota enforced over fixed time windows."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .errors import RateLimitExceeded
from .models import RateLimitStatus

logger = logging.getLogger("gallery_crawler.ratelimit")


@dataclass
class RateLimitRecord:
    count: int
    reset_at: float


class RateLimiter:
    """Fixed-window counter per client identity.

    The first request from an identity opens a window of ``window`` seconds
    allowing ``max_images`` images. Once the window has passed the record is
    replaced by a fresh one. This is coarser than a sliding window: a burst
    straddling a window boundary may briefly exceed the average rate.
    """

    def __init__(
        self,
        max_images: int = 10,
        window: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_images = max_images
        self.window = window
        self.clock = clock
        self._records: Dict[str, RateLimitRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def _record(self, identity: str, now: float) -> RateLimitRecord:
        record = self._records.get(identity)
        if record is None or now >= record.reset_at:
            record = RateLimitRecord(count=0, reset_at=now + self.window)
            self._records[identity] = record
        return record

    def check(self, identity: str) -> RateLimitStatus:
        now = self.clock()
        record = self._record(identity, now)
        reset_in = max(0, math.ceil(record.reset_at - now))
        remaining = max(0, self.max_images - record.count)
        return RateLimitStatus(allowed=remaining > 0, remaining=remaining, reset_in=reset_in)

    def require(self, identity: str, estimate: Optional[int] = None) -> RateLimitStatus:
        """Raise :class:`RateLimitExceeded` unless the identity may proceed."""
        status = self.check(identity)
        if not status.allowed:
            raise RateLimitExceeded(status)
        if estimate is not None and estimate > status.remaining:
            raise RateLimitExceeded(status, estimate=estimate)
        return status

    def consume(self, identity: str, count: int = 1) -> None:
        if count <= 0:
            return
        record = self._record(identity, self.clock())
        record.count = min(self.max_images, record.count + count)
        logger.debug("Identity %s used %d/%d images", identity, record.count, self.max_images)

    def sweep(self) -> int:
        """Drop expired records; returns how many were removed."""
        now = self.clock()
        expired = [key for key, record in self._records.items() if now >= record.reset_at]
        for key in expired:
            del self._records[key]
        return len(expired)
