"""Pytest session bootstrap.

Puts the repository root on ``sys.path`` so tests import ``gallery_crawler``
straight from the checkout.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from gallery_crawler.config import CrawlConfig  # noqa: E402


@pytest.fixture
def config(tmp_path: Path) -> CrawlConfig:
    return CrawlConfig(
        downloads_root=tmp_path / "downloads",
        base_url="https://gallery.test",
        retry_base_delay=0.0,
        post_ready_timeout=0.0,
        launch_retry_delay=0.0,
    )
