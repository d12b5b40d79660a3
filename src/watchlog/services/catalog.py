"""Catalog API client, category cache and retrying metadata fetcher."""

from __future__ import annotations

import asyncio
import re
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple

import httpx
from pydantic import ValidationError
from rich.console import Console

from watchlog.config.settings import DEFAULT_CATALOG_BASE_URL
from watchlog.models.watch import ChannelRecord, LiveContent, MetadataRecord

DEFAULT_REGION = "US"
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_MS = 300
REQUEST_TIMEOUT = 30.0

PRIMARY_PARTS = ("snippet", "contentDetails", "statistics", "status", "topicDetails")
CHANNEL_PARTS = ("snippet", "statistics", "brandingSettings", "topicDetails")

SHORTS_PATH_SEGMENT = "/shorts/"
SHORTS_MAX_SECONDS = 60

_DURATION_PATTERN = re.compile(r"PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?")

Sleep = Callable[[float], Awaitable[None]]


class CatalogError(RuntimeError):
    """Base exception for catalog lookups."""


class NetworkError(CatalogError):
    """Transport failure or non-success HTTP status."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(CatalogError):
    """The catalog answered successfully but returned no items."""


class ConfigMissingError(CatalogError):
    """A lookup was attempted without a credential."""


class ParseError(ValueError):
    """Raised when a compact duration string cannot be parsed."""


# ---------------------------------------------------------------------- #
# Pure helpers                                                           #
# ---------------------------------------------------------------------- #
def parse_iso_duration_strict(value: Optional[str]) -> int:
    """Convert ``PT[nH][nM][nS]`` into total seconds.

    Raises
    ------
    ParseError
        If ``value`` holds no hour, minute or second component.
    """

    match = _DURATION_PATTERN.search(value or "")
    if match is None or not any(match.groups()):
        raise ParseError(f"Unrecognised duration: {value!r}")
    hours, minutes, seconds = (int(group or 0) for group in match.groups())
    return hours * 3600 + minutes * 60 + seconds


def parse_iso_duration(value: Optional[str]) -> Optional[int]:
    """Lenient form of :func:`parse_iso_duration_strict` returning ``None`` on bad input."""

    try:
        return parse_iso_duration_strict(value)
    except ParseError:
        return None


def infer_is_shorts(source_url: Optional[str], duration_seconds: Optional[int]) -> bool:
    """Short-form if the URL says so, otherwise if the item runs a minute or less."""

    if source_url and SHORTS_PATH_SEGMENT in source_url:
        return True
    if duration_seconds is not None and duration_seconds <= SHORTS_MAX_SECONDS:
        return True
    return False


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_datetime(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _to_live_content(value: Any) -> LiveContent:
    try:
        return LiveContent(value or LiveContent.NONE.value)
    except ValueError:
        return LiveContent.NONE


# ---------------------------------------------------------------------- #
# Category cache                                                         #
# ---------------------------------------------------------------------- #
class CategoryNameCache:
    """Process-lifetime memo of ``(region, category_id)`` to a display name.

    ``None`` is a valid cached value meaning "the catalog has no such category"; entries
    never expire.
    """

    def __init__(self) -> None:
        self._names: Dict[Tuple[str, str], Optional[str]] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._names

    def __len__(self) -> int:
        return len(self._names)

    def get(self, region: str, category_id: str) -> Optional[str]:
        return self._names.get((region, category_id))

    def store(self, region: str, category_id: str, name: Optional[str]) -> None:
        self._names[(region, category_id)] = name


# ---------------------------------------------------------------------- #
# HTTP client                                                            #
# ---------------------------------------------------------------------- #
class CatalogClient:
    """Thin async client for the catalog's ``videos``, ``videoCategories`` and ``channels`` lists."""

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_CATALOG_BASE_URL,
        timeout: float = REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""

        await self._client.aclose()

    async def get_video(self, subject_id: str, api_key: str) -> Mapping[str, Any]:
        return await self._first_item(
            "videos",
            {"part": ",".join(PRIMARY_PARTS), "id": subject_id},
            api_key,
        )

    async def get_category(self, category_id: str, api_key: str, region: str) -> Mapping[str, Any]:
        return await self._first_item(
            "videoCategories",
            {"part": "snippet", "id": category_id, "regionCode": region},
            api_key,
        )

    async def get_channel(self, channel_id: str, api_key: str) -> Mapping[str, Any]:
        return await self._first_item(
            "channels",
            {"part": ",".join(CHANNEL_PARTS), "id": channel_id},
            api_key,
        )

    async def _first_item(self, resource: str, params: Dict[str, str], api_key: str) -> Mapping[str, Any]:
        """Issue one GET and return ``items[0]``.

        Raises
        ------
        ConfigMissingError
            If ``api_key`` is empty.
        NetworkError
            On transport errors, non-2xx responses or undecodable bodies.
        NotFoundError
            If the response carries no items.
        """

        if not api_key:
            raise ConfigMissingError(f"{resource}.list requires an API key")

        try:
            response = await self._client.get(resource, params={**params, "key": api_key})
        except httpx.HTTPError as exc:
            raise NetworkError(f"{resource}.list request failed: {exc}") from exc

        if not response.is_success:
            raise NetworkError(
                f"{resource}.list {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise NetworkError(f"{resource}.list returned invalid JSON") from exc

        items = payload.get("items") if isinstance(payload, Mapping) else None
        if not items:
            raise NotFoundError(f"{resource}.list returned no items for id={params.get('id')}")
        return items[0]


# ---------------------------------------------------------------------- #
# Fetcher                                                                #
# ---------------------------------------------------------------------- #
class MetadataFetcher:
    """Retrying primary lookup plus single-attempt, cache-backed enrichment lookups."""

    def __init__(
        self,
        client: CatalogClient,
        *,
        category_cache: Optional[CategoryNameCache] = None,
        console: Optional[Console] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_ms: int = DEFAULT_BACKOFF_MS,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._client = client
        self._category_cache = category_cache if category_cache is not None else CategoryNameCache()
        self._console = console or Console()
        self._max_retries = max(0, max_retries)
        self._backoff_ms = max(0, backoff_ms)
        self._sleep = sleep

    @property
    def category_cache(self) -> CategoryNameCache:
        return self._category_cache

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_primary(
        self,
        subject_id: str,
        api_key: str,
        *,
        max_retries: Optional[int] = None,
    ) -> MetadataRecord:
        """Fetch the full catalog record for ``subject_id``.

        Failed attempts are retried up to ``max_retries`` more times, sleeping
        ``backoff_ms * attempt`` between them (linear, not exponential).

        Raises
        ------
        ConfigMissingError
            If ``api_key`` is empty; never retried.
        NetworkError, NotFoundError
            The last failure once the retry bound is exhausted.
        """

        if not api_key:
            raise ConfigMissingError("Primary lookup requires an API key")

        retries = self._max_retries if max_retries is None else max(0, max_retries)
        attempt = 0
        while True:
            try:
                item = await self._client.get_video(subject_id, api_key)
                return self._to_metadata(item, subject_id)
            except (NetworkError, NotFoundError) as exc:
                if attempt >= retries:
                    self._console.log(
                        f"[red]Catalog lookup failed after {attempt + 1} attempts:[/red] {exc} (subject_id={subject_id})"
                    )
                    raise
                attempt += 1
                delay = self._backoff_ms * attempt / 1000.0
                self._console.log(
                    f"[yellow]Catalog lookup attempt {attempt} failed:[/yellow] {exc}; "
                    f"retrying in {delay:.1f}s (subject_id={subject_id})"
                )
                await self._sleep(delay)

    async def fetch_category_name(
        self,
        category_id: Optional[str],
        api_key: Optional[str],
        region: str = DEFAULT_REGION,
    ) -> Optional[str]:
        """Resolve a category display name, consulting the cache first.

        Successful answers, including "no such category", are cached for the life of the
        process. Transport and HTTP failures return ``None`` without caching.
        """

        if not category_id or not api_key:
            return None
        if (region, category_id) in self._category_cache:
            return self._category_cache.get(region, category_id)

        try:
            item = await self._client.get_category(category_id, api_key, region)
        except NotFoundError:
            self._category_cache.store(region, category_id, None)
            return None
        except CatalogError as exc:
            self._console.log(f"[yellow]Category lookup skipped:[/yellow] {exc} (category_id={category_id})")
            return None

        name = (item.get("snippet") or {}).get("title") or None
        self._category_cache.store(region, category_id, name)
        return name

    async def fetch_channel_basics(self, channel_id: Optional[str], api_key: Optional[str]) -> Optional[ChannelRecord]:
        """Single-attempt channel enrichment; ``None`` on any failure."""

        if not channel_id or not api_key:
            return None

        try:
            item = await self._client.get_channel(channel_id, api_key)
            return self._to_channel(item, channel_id)
        except (CatalogError, ValidationError, ValueError) as exc:
            self._console.log(f"[yellow]Channel enrichment skipped:[/yellow] {exc} (channel_id={channel_id})")
            return None

    # ------------------------------------------------------------------ #
    # Mapping                                                            #
    # ------------------------------------------------------------------ #
    @staticmethod
    def _to_metadata(item: Mapping[str, Any], subject_id: str) -> MetadataRecord:
        snippet = item.get("snippet") or {}
        content = item.get("contentDetails") or {}
        statistics = item.get("statistics") or {}
        status = item.get("status") or {}
        topics = item.get("topicDetails") or {}

        return MetadataRecord(
            subject_id=item.get("id") or subject_id,
            title=snippet.get("title") or None,
            description=snippet.get("description") or None,
            published_at=_to_datetime(snippet.get("publishedAt")),
            channel_id=snippet.get("channelId") or None,
            channel_title=snippet.get("channelTitle") or None,
            tags=list(snippet.get("tags") or []),
            thumbnails=dict(snippet.get("thumbnails") or {}),
            category_id=snippet.get("categoryId") or None,
            default_language=snippet.get("defaultLanguage") or None,
            default_audio_language=snippet.get("defaultAudioLanguage") or None,
            duration_seconds=parse_iso_duration(content.get("duration")),
            definition=content.get("definition") or None,
            caption=content.get("caption") == "true",
            region_restriction=content.get("regionRestriction") or None,
            content_rating=content.get("contentRating") or None,
            live_content=_to_live_content(snippet.get("liveBroadcastContent")),
            made_for_kids=status.get("madeForKids"),
            view_count=_to_int(statistics.get("viewCount")),
            like_count=_to_int(statistics.get("likeCount")),
            comment_count=_to_int(statistics.get("commentCount")),
            topic_categories=list(topics.get("topicCategories") or []),
        )

    @staticmethod
    def _to_channel(item: Mapping[str, Any], channel_id: str) -> ChannelRecord:
        snippet = item.get("snippet") or {}
        statistics = item.get("statistics") or {}
        branding = item.get("brandingSettings") or {}

        return ChannelRecord(
            channel_id=item.get("id") or channel_id,
            custom_url=snippet.get("customUrl") or None,
            channel_country=snippet.get("country") or None,
            channel_description=snippet.get("description") or None,
            channel_created_at=_to_datetime(snippet.get("publishedAt")),
            banner=(branding.get("image") or {}).get("bannerExternalUrl") or None,
            subscriber_count=_to_int(statistics.get("subscriberCount")),
            video_count=_to_int(statistics.get("videoCount")),
        )


__all__ = [
    "CatalogClient",
    "CatalogError",
    "CategoryNameCache",
    "ConfigMissingError",
    "MetadataFetcher",
    "NetworkError",
    "NotFoundError",
    "ParseError",
    "infer_is_shorts",
    "parse_iso_duration",
    "parse_iso_duration_strict",
]
