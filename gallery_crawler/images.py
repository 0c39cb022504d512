"""Image downloading, validation and the on-disk dedup store."""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from filetype import guess

from .browser import BrowsingContext
from .errors import CrawlCancelled, ImageWriteError, NavigationError
from .jobs import CancellationToken
from .models import ImageOutcome
from .navigation import Navigator
from .utils import filename_from_url

logger = logging.getLogger("gallery_crawler.images")


def detect_image_format(data: bytes) -> Optional[str]:
    """Detect image type using filetype; returns lowercase extension."""
    kind = guess(data)
    if kind and kind.mime.startswith("image/"):
        ext = kind.extension.lower()
        if ext == "jpeg":
            return "jpg"
        return ext
    return None


def write_atomic(path: Path, data: bytes) -> None:
    """Write ``data`` to a hidden temp file beside ``path`` and rename it into place."""
    partial: Optional[Path] = None
    try:
        with tempfile.NamedTemporaryFile(
            dir=path.parent, prefix=".", suffix=".part", delete=False
        ) as handle:
            partial = Path(handle.name)
            handle.write(data)
        os.replace(partial, path)
    except OSError as exc:
        if partial is not None:
            with contextlib.suppress(OSError):
                partial.unlink()
        raise ImageWriteError(f"Failed to write {path}: {exc}") from exc


class ImageFetcher:
    """Downloads image URLs into a directory, skipping files already saved.

    Existing files are never fetched again, which makes re-running a crawl
    over an already downloaded range cheap. A failed image is recorded and
    the batch moves on.
    """

    def __init__(
        self,
        navigator: Navigator,
        verify_images: bool = True,
        token: Optional[CancellationToken] = None,
        emit: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.navigator = navigator
        self.verify_images = verify_images
        self.token = token or navigator.token
        self.emit = emit or (lambda line: None)

    async def fetch_one(self, session: BrowsingContext, download_dir: Path, url: str) -> ImageOutcome:
        try:
            filename = filename_from_url(url)
            save_path = download_dir / filename
            exists = save_path.exists()
        except (ValueError, OSError) as exc:
            self.emit(f"Failed {url}: {exc}")
            return ImageOutcome(filename="", success=False, error=f"Unusable image URL: {exc}", url=url)

        if exists:
            self.emit(f"Skipping {filename}, already exists.")
            return ImageOutcome(filename=filename, success=True, skipped=True, url=url)

        self.emit(f"Downloading {url}")
        try:
            data = await self.navigator.fetch_image(session, url)
            if self.verify_images and detect_image_format(data) is None:
                raise ImageWriteError(f"{url} did not return an image payload")
            write_atomic(save_path, data)
        except CrawlCancelled:
            raise
        except (NavigationError, ImageWriteError) as exc:
            self.token.raise_if_requested()
            self.emit(f"Failed {filename}: {exc}")
            return ImageOutcome(filename=filename, success=False, error=str(exc), url=url)

        self.emit(f"Saved {filename}")
        return ImageOutcome(filename=filename, success=True, url=url)

    async def fetch_all(
        self,
        session: BrowsingContext,
        download_dir: Path,
        images: Sequence[str],
        outcomes: Optional[List[ImageOutcome]] = None,
    ) -> List[ImageOutcome]:
        """Fetch ``images`` in order, appending to ``outcomes`` as each one settles.

        Passing a list lets the caller keep the outcomes gathered before a
        cancellation interrupted the batch.
        """
        download_dir.mkdir(parents=True, exist_ok=True)
        outcomes = outcomes if outcomes is not None else []
        for url in images:
            self.token.raise_if_requested()
            outcomes.append(await self.fetch_one(session, download_dir, url))

        saved = sum(1 for o in outcomes if o.success and not o.skipped)
        failed = sum(1 for o in outcomes if not o.success)
        logger.info(
            "Image batch completed: %d saved, %d skipped, %d failed",
            saved,
            len(outcomes) - saved - failed,
            failed,
        )
        return outcomes
