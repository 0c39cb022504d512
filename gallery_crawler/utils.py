"""Utility helpers for filename and identity normalization."""

from __future__ import annotations

import hashlib
import re
from urllib.parse import unquote, urlparse

FILENAME_PATTERN = re.compile(r"[^A-Za-z0-9._-]")
IDENTITY_PATTERN = re.compile(r"[^A-Za-z0-9-]")

MAX_FILENAME_LENGTH = 200


def _shorten(name: str, max_length: int) -> str:
    # Keep the extension and a digest of the full name so distinct long
    # names stay distinct after truncation.
    digest = hashlib.sha1(name.encode("ascii")).hexdigest()[:10]
    stem, dot, ext = name.rpartition(".")
    if not dot or not stem or len(ext) > 10:
        stem, ext = name, ""
    suffix = f"-{digest}" + (f".{ext}" if ext else "")
    return stem[: max_length - len(suffix)] + suffix


def sanitize_filename(name: str, fallback: str = "file", max_length: int = MAX_FILENAME_LENGTH) -> str:
    """Replace everything outside ``[A-Za-z0-9._-]`` with an underscore.

    Names made only of dots would resolve to the current or parent
    directory, so they collapse to ``fallback`` as well. Names longer than
    ``max_length`` are truncated, keeping their extension.
    """
    cleaned = FILENAME_PATTERN.sub("_", name)
    if len(cleaned) > max_length:
        cleaned = _shorten(cleaned, max_length)
    if not cleaned.strip("."):
        return fallback
    return cleaned


def filename_from_url(url: str) -> str:
    """Derive the on-disk filename for an image URL from its path basename."""
    basename = urlparse(url).path.rsplit("/", 1)[-1]
    return sanitize_filename(unquote(basename))


def sanitize_identity(raw: str) -> str:
    """Turn a client address into a folder-safe identity."""
    identity = raw.replace(":", "-").replace(".", "-")
    identity = IDENTITY_PATTERN.sub("", identity)
    return identity or "unknown"
