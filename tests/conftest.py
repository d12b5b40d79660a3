import asyncio
import io
from collections import Counter
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from rich.console import Console

from watchlog.config.settings import PipelineConfig, Settings
from watchlog.models.watch import IntakeEvent, LogEntry, MetadataRecord
from watchlog.services.kv_store import MemoryKeyValueStore, StorePair

CATALOG_BASE_URL = "https://catalog.test/youtube/v3"


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class YieldingKeyValueStore(MemoryKeyValueStore):
    """Memory store that gives other tasks a turn on every read and write."""

    async def get(self, key, default=None):
        await asyncio.sleep(0)
        return await super().get(key, default)

    async def set(self, values):
        await asyncio.sleep(0)
        await super().set(values)


class FakeCatalog:
    """In-memory stand-in for the catalog's list endpoints."""

    def __init__(self):
        self.videos: dict[str, dict] = {}
        self.categories: dict[str, dict] = {}
        self.channels: dict[str, dict] = {}
        self.calls: Counter[str] = Counter()
        self.requests: list[httpx.Request] = []
        self._failures: dict[str, list[int]] = {}

    def fail(self, resource: str, *statuses: int) -> None:
        self._failures.setdefault(resource, []).extend(statuses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        resource = request.url.path.rsplit("/", 1)[-1]
        self.calls[resource] += 1
        self.requests.append(request)

        pending = self._failures.get(resource)
        if pending:
            return httpx.Response(pending.pop(0), json={"error": {"message": "boom"}})

        table = {"videos": self.videos, "videoCategories": self.categories, "channels": self.channels}[resource]
        item = table.get(request.url.params.get("id"))
        return httpx.Response(200, json={"items": [item] if item else []})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def add_video(
        self,
        subject_id: str,
        *,
        title: str = "Counting Song",
        duration: str = "PT4M13S",
        category_id: str = "10",
        channel_id: str = "UC_channel",
        made_for_kids: bool = False,
    ) -> dict:
        item = {
            "id": subject_id,
            "snippet": {
                "title": title,
                "description": "A song about numbers",
                "publishedAt": "2024-01-02T03:04:05Z",
                "channelId": channel_id,
                "channelTitle": "Kids Channel",
                "tags": ["music", "numbers"],
                "thumbnails": {"default": {"url": "https://img.test/default.jpg"}},
                "categoryId": category_id,
                "defaultLanguage": "en",
                "liveBroadcastContent": "none",
            },
            "contentDetails": {"duration": duration, "definition": "hd", "caption": "true"},
            "statistics": {"viewCount": "1200", "likeCount": "30", "commentCount": "4"},
            "status": {"madeForKids": made_for_kids},
            "topicDetails": {"topicCategories": ["https://en.wikipedia.org/wiki/Music"]},
        }
        self.videos[subject_id] = item
        return item

    def add_category(self, category_id: str, title: str) -> None:
        self.categories[category_id] = {"id": category_id, "snippet": {"title": title}}

    def add_channel(self, channel_id: str) -> None:
        self.channels[channel_id] = {
            "id": channel_id,
            "snippet": {
                "customUrl": "@kidschannel",
                "country": "US",
                "description": "Songs for kids",
                "publishedAt": "2015-06-01T00:00:00Z",
            },
            "statistics": {"subscriberCount": "5000", "videoCount": "120"},
            "brandingSettings": {"image": {"bannerExternalUrl": "https://img.test/banner.jpg"}},
        }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def console():
    return Console(file=io.StringIO(), width=120)


@pytest.fixture
def stores():
    return StorePair(local=MemoryKeyValueStore(), sync=MemoryKeyValueStore())


@pytest.fixture
def configured_stores():
    return StorePair(
        local=MemoryKeyValueStore(),
        sync=MemoryKeyValueStore({"apiKey": "test-key", "profile": "Teen"}),
    )


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=None,
        data_dir=tmp_path,
        catalog_base_url=CATALOG_BASE_URL,
        pipeline=PipelineConfig(retry_backoff_ms=0),
    )


@pytest.fixture
def make_entry():
    def _make(
        subject_id: str,
        *,
        watched_at: datetime | None = None,
        profile: str = "Child",
        title: str | None = None,
        channel_title: str | None = None,
        is_shorts: bool = False,
        made_for_kids: bool | None = None,
        tags: list[str] | None = None,
    ) -> LogEntry:
        metadata = MetadataRecord(
            subject_id=subject_id,
            title=title,
            channel_title=channel_title,
            made_for_kids=made_for_kids,
            tags=tags or [],
            duration_seconds=90,
        )
        return LogEntry.assemble(
            IntakeEvent(subject_id=subject_id, source_url=f"https://www.youtube.com/watch?v={subject_id}"),
            profile=profile,
            metadata=metadata,
            is_shorts=is_shorts,
            watched_at=watched_at or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        )

    return _make


@pytest.fixture
def yielding_stores():
    return StorePair(local=YieldingKeyValueStore(), sync=YieldingKeyValueStore())
