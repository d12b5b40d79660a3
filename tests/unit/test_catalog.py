import pytest

from watchlog.services.catalog import (
    CatalogClient,
    CategoryNameCache,
    ConfigMissingError,
    MetadataFetcher,
    NetworkError,
    NotFoundError,
    ParseError,
    infer_is_shorts,
    parse_iso_duration,
    parse_iso_duration_strict,
)
from watchlog.models.watch import LiveContent

BASE_URL = "https://catalog.test/youtube/v3"


def _fetcher(catalog, console, sleep, **kwargs) -> MetadataFetcher:
    client = CatalogClient(base_url=BASE_URL, transport=catalog.transport)
    return MetadataFetcher(client, console=console, sleep=sleep, **kwargs)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("PT1H2M3S", 3723),
        ("PT4M13S", 253),
        ("PT45S", 45),
        ("PT10M", 600),
        ("PT2H", 7200),
        ("PT", None),
        ("P1D", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_iso_duration(value, expected):
    assert parse_iso_duration(value) == expected


def test_parse_iso_duration_strict_rejects_empty_components():
    with pytest.raises(ParseError):
        parse_iso_duration_strict("PT")


@pytest.mark.parametrize(
    ("url", "duration", "expected"),
    [
        ("https://www.youtube.com/shorts/abc123def", 300, True),
        ("https://www.youtube.com/watch?v=abc123def", 60, True),
        ("https://www.youtube.com/watch?v=abc123def", 61, False),
        ("https://www.youtube.com/watch?v=abc123def", None, False),
        (None, 15, True),
    ],
)
def test_infer_is_shorts(url, duration, expected):
    assert infer_is_shorts(url, duration) is expected


@pytest.mark.asyncio
async def test_fetch_primary_maps_catalog_item(catalog, console, recording_sleep):
    catalog.add_video("abc123def", duration="PT1M5S", made_for_kids=True)
    fetcher = _fetcher(catalog, console, recording_sleep)

    record = await fetcher.fetch_primary("abc123def", "test-key")

    assert record.subject_id == "abc123def"
    assert record.title == "Counting Song"
    assert record.duration_seconds == 65
    assert record.caption is True
    assert record.made_for_kids is True
    assert record.view_count == 1200
    assert record.tags == ["music", "numbers"]
    assert record.live_content is LiveContent.NONE
    assert catalog.requests[0].url.params["key"] == "test-key"
    assert catalog.requests[0].url.params["id"] == "abc123def"
    await fetcher.aclose()


@pytest.mark.asyncio
async def test_fetch_primary_retries_with_linear_backoff(catalog, console, recording_sleep):
    catalog.add_video("abc123def")
    catalog.fail("videos", 500, 503, 500)
    fetcher = _fetcher(catalog, console, recording_sleep, max_retries=3, backoff_ms=300)

    record = await fetcher.fetch_primary("abc123def", "test-key")

    assert record.title == "Counting Song"
    assert catalog.calls["videos"] == 4
    assert recording_sleep.delays == pytest.approx([0.3, 0.6, 0.9])


@pytest.mark.asyncio
async def test_fetch_primary_gives_up_after_retry_bound(catalog, console, recording_sleep):
    catalog.add_video("abc123def")
    catalog.fail("videos", 500, 500, 500, 500)
    fetcher = _fetcher(catalog, console, recording_sleep, max_retries=3, backoff_ms=300)

    with pytest.raises(NetworkError) as excinfo:
        await fetcher.fetch_primary("abc123def", "test-key")

    assert excinfo.value.status_code == 500
    assert catalog.calls["videos"] == 4
    assert len(recording_sleep.delays) == 3


@pytest.mark.asyncio
async def test_fetch_primary_not_found_is_retried_then_raised(catalog, console, recording_sleep):
    fetcher = _fetcher(catalog, console, recording_sleep, max_retries=1, backoff_ms=100)

    with pytest.raises(NotFoundError):
        await fetcher.fetch_primary("missing1", "test-key")

    assert catalog.calls["videos"] == 2
    assert recording_sleep.delays == pytest.approx([0.1])


@pytest.mark.asyncio
async def test_fetch_primary_requires_api_key(catalog, console, recording_sleep):
    fetcher = _fetcher(catalog, console, recording_sleep)

    with pytest.raises(ConfigMissingError):
        await fetcher.fetch_primary("abc123def", "")

    assert sum(catalog.calls.values()) == 0


@pytest.mark.asyncio
async def test_category_name_is_fetched_once_per_region(catalog, console, recording_sleep):
    catalog.add_category("10", "Music")
    fetcher = _fetcher(catalog, console, recording_sleep)

    first = await fetcher.fetch_category_name("10", "test-key", "US")
    second = await fetcher.fetch_category_name("10", "test-key", "US")

    assert first == second == "Music"
    assert catalog.calls["videoCategories"] == 1
    assert catalog.requests[0].url.params["regionCode"] == "US"

    await fetcher.fetch_category_name("10", "test-key", "GB")
    assert catalog.calls["videoCategories"] == 2


@pytest.mark.asyncio
async def test_unknown_category_is_cached_as_none(catalog, console, recording_sleep):
    fetcher = _fetcher(catalog, console, recording_sleep)

    assert await fetcher.fetch_category_name("999", "test-key", "US") is None
    assert await fetcher.fetch_category_name("999", "test-key", "US") is None

    assert catalog.calls["videoCategories"] == 1
    assert ("US", "999") in fetcher.category_cache


@pytest.mark.asyncio
async def test_category_http_failure_is_not_cached(catalog, console, recording_sleep):
    catalog.add_category("10", "Music")
    catalog.fail("videoCategories", 500)
    fetcher = _fetcher(catalog, console, recording_sleep)

    assert await fetcher.fetch_category_name("10", "test-key", "US") is None
    assert await fetcher.fetch_category_name("10", "test-key", "US") == "Music"
    assert catalog.calls["videoCategories"] == 2
    assert recording_sleep.delays == []


@pytest.mark.asyncio
async def test_category_lookup_skipped_without_id_or_key(catalog, console, recording_sleep):
    fetcher = _fetcher(catalog, console, recording_sleep)

    assert await fetcher.fetch_category_name(None, "test-key") is None
    assert await fetcher.fetch_category_name("10", None) is None
    assert catalog.calls["videoCategories"] == 0


@pytest.mark.asyncio
async def test_shared_category_cache_is_used(catalog, console, recording_sleep):
    cache = CategoryNameCache()
    cache.store("US", "10", "Music")
    fetcher = _fetcher(catalog, console, recording_sleep, category_cache=cache)

    assert await fetcher.fetch_category_name("10", "test-key", "US") == "Music"
    assert catalog.calls["videoCategories"] == 0
    assert len(cache) == 1


@pytest.mark.asyncio
async def test_channel_basics_mapped(catalog, console, recording_sleep):
    catalog.add_channel("UC_channel")
    fetcher = _fetcher(catalog, console, recording_sleep)

    channel = await fetcher.fetch_channel_basics("UC_channel", "test-key")

    assert channel is not None
    assert channel.custom_url == "@kidschannel"
    assert channel.banner == "https://img.test/banner.jpg"
    assert channel.subscriber_count == 5000
    assert channel.video_count == 120


@pytest.mark.asyncio
async def test_channel_failure_returns_none_without_retry(catalog, console, recording_sleep):
    catalog.add_channel("UC_channel")
    catalog.fail("channels", 500)
    fetcher = _fetcher(catalog, console, recording_sleep)

    assert await fetcher.fetch_channel_basics("UC_channel", "test-key") is None
    assert catalog.calls["channels"] == 1
    assert recording_sleep.delays == []


@pytest.mark.asyncio
async def test_unparseable_counts_and_dates_become_none(catalog, console, recording_sleep):
    item = catalog.add_video("abc123def")
    item["statistics"]["viewCount"] = "n/a"
    item["snippet"]["publishedAt"] = "not a date"
    catalog.add_channel("UC_channel")
    catalog.channels["UC_channel"]["statistics"]["subscriberCount"] = "hidden"
    fetcher = _fetcher(catalog, console, recording_sleep)

    record = await fetcher.fetch_primary("abc123def", "test-key")
    channel = await fetcher.fetch_channel_basics("UC_channel", "test-key")

    assert record.view_count is None
    assert record.published_at is None
    assert record.comment_count == 4
    assert channel.subscriber_count is None
    assert channel.video_count == 120
