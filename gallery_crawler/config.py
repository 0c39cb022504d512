"""Configuration objects and constants for the crawler."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .errors import ConfigError

DEFAULT_BASE_URL = "https://idolfap.com"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36"
)

IDOL_POST_LINK_SELECTOR = ".grid.grid-show .post-image-wrapper > a"
CREATOR_POST_LINK_SELECTOR = (
    "body > div > main > div.grid.grid-show .post-image-wrapper > a"
)
GALLERY_IMAGE_SELECTOR = ".post-slider-item.open-gallery img"
CONTENT_LINK_SELECTOR = ".post-content a"
POST_READY_SELECTOR = ".post-slider-item, .post-content"

DEFAULT_IDOLS = ["jihyo", "karina", "izone-yujin", "park-min-young"]
DEFAULT_CREATORS = ["darkyeji", "twice", "blackpink", "redvelvet"]


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"not a boolean: {value!r}")


# Environment variable -> (field name, parser)
_ENV_FIELDS: Dict[str, tuple[str, Callable[[str], Any]]] = {
    "DOWNLOADS_DIR": ("downloads_root", Path),
    "BASE_URL": ("base_url", str),
    "NAVIGATION_TIMEOUT": ("navigation_timeout", float),
    "NAVIGATION_ATTEMPTS": ("navigation_attempts", int),
    "RETRY_BASE_DELAY": ("retry_base_delay", float),
    "IMAGE_TIMEOUT": ("image_timeout", float),
    "VERIFY_IMAGES": ("verify_images", _parse_bool),
    "USER_AGENT": ("user_agent", str),
    "HEADLESS": ("headless", _parse_bool),
    "CHROMIUM_EXECUTABLE_PATH": ("executable_path", str),
    "PROXY_SERVER": ("proxy_server", str),
    "RATE_LIMIT_MAX_IMAGES": ("rate_limit_max_images", int),
    "RATE_LIMIT_WINDOW": ("rate_limit_window", float),
    "IMAGES_PER_PAGE_ESTIMATE": ("images_per_page_estimate", int),
    "HOST": ("host", str),
    "PORT": ("port", int),
}


@dataclass
class CrawlConfig:
    """Top-level settings that control crawling, downloading and serving."""

    downloads_root: Path = Path("downloads")
    base_url: str = DEFAULT_BASE_URL

    navigation_timeout: float = 10.0
    navigation_attempts: int = 3
    retry_base_delay: float = 0.5
    image_timeout: float = 60.0
    image_attempts: int = 1
    post_ready_timeout: float = 5.0
    verify_images: bool = True
    max_listing_failures: int = 5

    viewport_width: int = 1365
    viewport_height: int = 768
    user_agent: str = DEFAULT_USER_AGENT
    accept_language: str = "en-US,en;q=0.9"
    headless: bool = True
    executable_path: Optional[str] = None
    proxy_server: Optional[str] = None
    launch_attempts: int = 3
    launch_retry_delay: float = 2.0

    rate_limit_max_images: int = 10
    rate_limit_window: float = 600.0
    rate_limit_sweep_interval: float = 900.0
    images_per_page_estimate: int = 15

    host: str = "0.0.0.0"
    port: int = 5000
    log_ping_interval: float = 30.0

    idols: List[str] = field(default_factory=lambda: list(DEFAULT_IDOLS))
    creators: List[str] = field(default_factory=lambda: list(DEFAULT_CREATORS))

    @classmethod
    def from_env(
        cls, environ: Optional[Dict[str, str]] = None, **overrides: Any
    ) -> "CrawlConfig":
        """Build a config from environment variables; keyword overrides win."""
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for env_name, (field_name, parser) in _ENV_FIELDS.items():
            raw = environ.get(env_name)
            if raw is None or raw == "":
                continue
            try:
                values[field_name] = parser(raw)
            except ValueError as exc:
                raise ConfigError(f"Invalid value for {env_name}: {raw!r}") from exc

        known = {f.name for f in fields(cls)}
        for key, value in overrides.items():
            if key not in known:
                raise ConfigError(f"Unknown configuration field: {key}")
            if value is not None:
                values[key] = value
        return cls(**values)

    @property
    def navigation_timeout_ms(self) -> float:
        return self.navigation_timeout * 1000

    @property
    def image_timeout_ms(self) -> float:
        return self.image_timeout * 1000
