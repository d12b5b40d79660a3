"""Validation helpers for watch URLs and subject identifiers."""

from __future__ import annotations

import re
from urllib.parse import parse_qs, urlparse

WATCH_URL_TEMPLATE = "https://www.youtube.com/watch?v={subject_id}"


class InvalidWatchURLError(ValueError):
    """Raised when a URL does not point at a single watchable item."""


_SUBJECT_ID_PATTERN = re.compile(r"^[0-9A-Za-z_-]{6,}$")
_SHORTS_PATH_PATTERN = re.compile(r"/shorts/([0-9A-Za-z_-]{6,})")


def extract_subject_id(url: str) -> str:
    """Extract a subject id from a watch URL, a short-form URL or a raw id."""

    stripped = url.strip()
    if _SUBJECT_ID_PATTERN.fullmatch(stripped):
        return stripped

    parsed = urlparse(stripped)
    if parsed.netloc == "youtu.be":
        candidate = parsed.path.lstrip("/")
        if _SUBJECT_ID_PATTERN.fullmatch(candidate):
            return candidate

    if parsed.netloc.endswith("youtube.com"):
        if parsed.path == "/watch":
            candidates = parse_qs(parsed.query).get("v", [])
            if candidates and _SUBJECT_ID_PATTERN.fullmatch(candidates[0]):
                return candidates[0]
        else:
            shorts_match = _SHORTS_PATH_PATTERN.search(parsed.path)
            if shorts_match:
                return shorts_match.group(1)

    raise InvalidWatchURLError(f"Invalid watch URL or subject id: {url!r}")


def canonical_source_url(target: str, subject_id: str) -> str:
    """Return ``target`` when it is already a URL, else the canonical watch URL for ``subject_id``."""

    if urlparse(target.strip()).scheme in {"http", "https"}:
        return target.strip()
    return WATCH_URL_TEMPLATE.format(subject_id=subject_id)


__all__ = ["InvalidWatchURLError", "WATCH_URL_TEMPLATE", "canonical_source_url", "extract_subject_id"]
