import csv
import io
from datetime import datetime, timedelta, timezone

import pytest

from watchlog.models.watch import PlaylistLink
from watchlog.services.export import (
    CSV_COLUMNS,
    EXPORT_SCHEMA_VERSION,
    build_daily_export,
    build_playlist_url,
    export_stamp,
    filter_entries,
    format_duration,
    playlist_subject_ids,
    to_csv,
    unique_preserve_order,
)

MORNING = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def entries(make_entry):
    return [
        make_entry("first01", watched_at=MORNING, title="Counting Song", channel_title="Kids Channel", made_for_kids=True),
        make_entry("second1", watched_at=MORNING + timedelta(hours=2), title="Cooking Pasta", is_shorts=True),
        make_entry(
            "third01",
            watched_at=MORNING + timedelta(days=1),
            title="Space Facts",
            channel_title="Science Hub",
            profile="Teen",
            tags=["space", "facts"],
        ),
    ]


def test_filter_entries_newest_first(entries):
    assert [entry.subject_id for entry in filter_entries(entries)] == ["third01", "second1", "first01"]


def test_filter_entries_by_query_shorts_and_kids(entries):
    assert [entry.subject_id for entry in filter_entries(entries, query="science")] == ["third01"]
    assert [entry.subject_id for entry in filter_entries(entries, query="  SONG ")] == ["first01"]
    assert [entry.subject_id for entry in filter_entries(entries, only_shorts=True)] == ["second1"]
    assert [entry.subject_id for entry in filter_entries(entries, only_kids=True)] == ["first01"]


def test_to_csv_quotes_every_cell(entries):
    rendered = to_csv(entries)
    rows = list(csv.reader(io.StringIO(rendered)))

    assert rendered.splitlines()[0].startswith('"watchedAt","profile","subjectId"')
    assert not rendered.endswith("\n")
    assert tuple(rows[0]) == CSV_COLUMNS
    third = dict(zip(CSV_COLUMNS, rows[3]))
    assert third["subjectId"] == "third01"
    assert third["tags"] == "space|facts"
    assert third["isShorts"] == "false"
    assert third["madeForKids"] == ""
    assert dict(zip(CSV_COLUMNS, rows[1]))["madeForKids"] == "true"


def test_to_csv_keeps_trailing_referrer_and_title_columns(entries):
    rows = list(csv.reader(io.StringIO(to_csv(entries))))

    assert CSV_COLUMNS[-2:] == ("referrer", "pageTitle")
    assert all(len(row) == len(CSV_COLUMNS) for row in rows)
    assert all(row[-2:] == ["", ""] for row in rows[1:])


def test_to_csv_of_nothing_is_header_only():
    assert to_csv([]) == ",".join(f'"{column}"' for column in CSV_COLUMNS)


def test_build_daily_export_groups_by_utc_day(entries):
    link = PlaylistLink(url="https://example.test/playlist", count=2, created_at=MORNING)

    payload = build_daily_export(entries, [link], generated_at=MORNING)

    assert payload["schemaVersion"] == EXPORT_SCHEMA_VERSION
    assert payload["generatedAt"] == MORNING.isoformat()
    assert payload["profiles"] == ["Child", "Teen"]
    assert list(payload["dailyLogs"]) == ["2024-05-01", "2024-05-02"]
    assert [item["subjectId"] for item in payload["dailyLogs"]["2024-05-01"]] == ["first01", "second1"]
    assert payload["playlistLinks"][0]["url"] == "https://example.test/playlist"


def test_playlist_helpers(entries):
    subject_ids = playlist_subject_ids(entries, limit=2)

    assert subject_ids == ["first01", "second1"]
    assert build_playlist_url(subject_ids) == "https://www.youtube.com/watch_videos?video_ids=first01,second1"


def test_build_playlist_url_requires_ids():
    with pytest.raises(ValueError):
        build_playlist_url([])


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [(None, ""), (0, "0s"), (59, "59s"), (60, "1m 0s"), (3723, "1h 2m 3s"), (3600, "1h 0m 0s")],
)
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


def test_unique_preserve_order():
    assert unique_preserve_order(["b", "a", "b", "c", "a"]) == ["b", "a", "c"]


def test_export_stamp():
    assert export_stamp(datetime(2024, 5, 1, 8, 7, tzinfo=timezone.utc)) == "202405010807"
