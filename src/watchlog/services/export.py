"""Queries and exports over the watch log: filtering, CSV, day-grouped JSON and playlist links."""

from __future__ import annotations

import csv
import io
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, TypeVar

from watchlog.models.watch import LogEntry, PlaylistLink
from watchlog.utils import utc_now

EXPORT_SCHEMA_VERSION = 2
PLAYLIST_URL_PREFIX = "https://www.youtube.com/watch_videos?video_ids="
DEFAULT_PLAYLIST_LIMIT = 50

CSV_COLUMNS = (
    "watchedAt",
    "profile",
    "subjectId",
    "title",
    "channelTitle",
    "durationSeconds",
    "sourceUrl",
    "description",
    "isShorts",
    "liveContent",
    "publishedAt",
    "categoryId",
    "categoryName",
    "tags",
    "defaultLanguage",
    "defaultAudioLanguage",
    "caption",
    "madeForKids",
    "viewCount",
    "likeCount",
    "commentCount",
    # Never populated; kept so headers match earlier exports.
    "referrer",
    "pageTitle",
)

T = TypeVar("T")


def filter_entries(
    entries: Iterable[LogEntry],
    *,
    query: Optional[str] = None,
    only_shorts: bool = False,
    only_kids: bool = False,
) -> List[LogEntry]:
    """Return matching entries, newest first.

    ``query`` matches title or channel title case-insensitively.
    """

    needle = (query or "").strip().lower()
    rows = sorted(entries, key=lambda entry: entry.watched_at, reverse=True)
    if needle:
        rows = [
            entry
            for entry in rows
            if needle in (entry.title or "").lower() or needle in (entry.channel_title or "").lower()
        ]
    if only_shorts:
        rows = [entry for entry in rows if entry.is_shorts]
    if only_kids:
        rows = [entry for entry in rows if entry.made_for_kids is True]
    return rows


def _csv_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list):
        return "|".join(str(item) for item in value)
    return str(value)


def to_csv(entries: Iterable[LogEntry]) -> str:
    """Render entries as CSV with every cell quoted."""

    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for entry in entries:
        payload = entry.model_dump(mode="json", by_alias=True)
        writer.writerow([_csv_cell(payload.get(column)) for column in CSV_COLUMNS])
    return buffer.getvalue().rstrip("\n")


def unique_preserve_order(values: Iterable[T]) -> List[T]:
    seen = set()
    unique: List[T] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        unique.append(value)
    return unique


def group_by_day(entries: Iterable[LogEntry]) -> Dict[str, List[Dict[str, Any]]]:
    """Bucket entries by the UTC calendar day they were watched."""

    by_day: Dict[str, List[Dict[str, Any]]] = {}
    for entry in entries:
        day = entry.watched_at.astimezone(timezone.utc).date().isoformat()
        by_day.setdefault(day, []).append(entry.to_storage())
    return by_day


def build_daily_export(
    entries: Sequence[LogEntry],
    playlist_links: Sequence[PlaylistLink],
    *,
    generated_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Build the day-grouped JSON export payload."""

    return {
        "schemaVersion": EXPORT_SCHEMA_VERSION,
        "generatedAt": (generated_at or utc_now()).isoformat(),
        "profiles": unique_preserve_order(entry.profile for entry in entries),
        "dailyLogs": group_by_day(entries),
        "playlistLinks": [link.model_dump(mode="json", by_alias=True) for link in playlist_links],
    }


def playlist_subject_ids(entries: Iterable[LogEntry], *, limit: int = DEFAULT_PLAYLIST_LIMIT) -> List[str]:
    """Subject ids of the first ``limit`` entries in log order."""

    return [entry.subject_id for entry in entries if entry.subject_id][:limit]


def build_playlist_url(subject_ids: Sequence[str]) -> str:
    """Anonymous playlist URL that queues ``subject_ids`` in order."""

    if not subject_ids:
        raise ValueError("A playlist needs at least one subject id.")
    return PLAYLIST_URL_PREFIX + ",".join(subject_ids)


def format_duration(seconds: Optional[int]) -> str:
    """Render seconds as ``"1h 2m 3s"``; empty for unknown durations."""

    if seconds is None:
        return ""
    hours, remainder = divmod(int(seconds), 3600)
    minutes, secs = divmod(remainder, 60)
    parts: List[str] = []
    if hours:
        parts.append(f"{hours}h")
    if minutes or hours:
        parts.append(f"{minutes}m")
    parts.append(f"{secs}s")
    return " ".join(parts)


def export_stamp(moment: Optional[datetime] = None) -> str:
    """Compact ``YYYYMMDDHHMM`` stamp used in export file names."""

    return (moment or utc_now()).strftime("%Y%m%d%H%M")


__all__ = [
    "CSV_COLUMNS",
    "DEFAULT_PLAYLIST_LIMIT",
    "EXPORT_SCHEMA_VERSION",
    "build_daily_export",
    "build_playlist_url",
    "export_stamp",
    "filter_entries",
    "format_duration",
    "group_by_day",
    "playlist_subject_ids",
    "to_csv",
    "unique_preserve_order",
]
