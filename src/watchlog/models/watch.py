"""Pydantic models describing watch intake events, catalog records and log entries."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ConfigDict, Field

from watchlog.models.base import WatchLogBaseModel

DEFAULT_PROFILE = "Child"


class LiveContent(str, Enum):
    """Live broadcast state reported by the catalog."""

    NONE = "none"
    LIVE = "live"
    UPCOMING = "upcoming"


class WatchConfig(WatchLogBaseModel):
    """Credential and profile read from the synchronised configuration store."""

    api_key: Optional[str] = None
    profile: str = Field(default=DEFAULT_PROFILE, min_length=1)

    @property
    def has_credential(self) -> bool:
        return bool(self.api_key)


class IntakeEvent(WatchLogBaseModel):
    """A single "item was watched" signal emitted by the navigation detector."""

    subject_id: str = Field(min_length=1)
    source_url: str

    model_config = ConfigDict(frozen=True)


class DedupRecord(WatchLogBaseModel):
    """Last time a (profile, subject) pair was logged."""

    profile: str
    subject_id: str
    logged_at: datetime

    model_config = ConfigDict(frozen=True)

    @property
    def key(self) -> str:
        return f"{self.profile}:{self.subject_id}"


class _MediaFields(WatchLogBaseModel):
    """Catalog fields shared by metadata snapshots and finalised log entries."""

    title: Optional[str] = None
    description: Optional[str] = None
    published_at: Optional[datetime] = None
    channel_id: Optional[str] = None
    channel_title: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    thumbnails: Dict[str, Any] = Field(default_factory=dict)
    category_id: Optional[str] = None
    default_language: Optional[str] = None
    default_audio_language: Optional[str] = None
    duration_seconds: Optional[int] = Field(default=None, ge=0)
    definition: Optional[str] = None
    caption: Optional[bool] = None
    region_restriction: Optional[Dict[str, Any]] = None
    content_rating: Optional[Dict[str, Any]] = None
    live_content: LiveContent = LiveContent.NONE
    made_for_kids: Optional[bool] = None
    view_count: Optional[int] = None
    like_count: Optional[int] = None
    comment_count: Optional[int] = None
    topic_categories: List[str] = Field(default_factory=list)


class MetadataRecord(_MediaFields):
    """Immutable snapshot of the primary catalog lookup for one subject."""

    subject_id: str = Field(min_length=1)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def fallback(cls, subject_id: str) -> "MetadataRecord":
        """Return the metadata-free record used when no credential is configured."""

        return cls(subject_id=subject_id)


class ChannelRecord(WatchLogBaseModel):
    """Optional creator/channel enrichment attached to a log entry."""

    channel_id: str
    custom_url: Optional[str] = None
    channel_country: Optional[str] = None
    channel_description: Optional[str] = None
    channel_created_at: Optional[datetime] = None
    banner: Optional[str] = None
    subscriber_count: Optional[int] = None
    video_count: Optional[int] = None

    model_config = ConfigDict(frozen=True)


class LogEntry(_MediaFields):
    """Finalised, append-only record of one logged watch."""

    subject_id: str = Field(min_length=1)
    source_url: str
    profile: str
    category_name: Optional[str] = None
    is_shorts: bool = False
    watched_at: datetime
    channel_extra: Optional[ChannelRecord] = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def assemble(
        cls,
        event: IntakeEvent,
        *,
        profile: str,
        metadata: MetadataRecord,
        is_shorts: bool,
        watched_at: datetime,
        category_name: Optional[str] = None,
        channel_extra: Optional[ChannelRecord] = None,
    ) -> "LogEntry":
        """Combine the intake event, catalog snapshot and enrichment into one entry."""

        media = {name: getattr(metadata, name) for name in _MediaFields.model_fields}
        return cls(
            **media,
            subject_id=event.subject_id,
            source_url=event.source_url,
            profile=profile,
            category_name=category_name,
            is_shorts=is_shorts,
            watched_at=watched_at,
            channel_extra=channel_extra,
        )

    def to_storage(self) -> Dict[str, Any]:
        """Serialise to the JSON document persisted in the log."""

        payload = self.model_dump(mode="json", by_alias=True)
        if self.channel_extra is None:
            payload.pop("channelExtra", None)
        return payload

    @classmethod
    def from_storage(cls, payload: Mapping[str, Any]) -> "LogEntry":
        return cls.model_validate(payload)


class PlaylistLink(WatchLogBaseModel):
    """A generated cross-link built from logged subject ids."""

    url: str
    count: int = Field(ge=0)
    created_at: datetime

    model_config = ConfigDict(frozen=True)


__all__ = [
    "ChannelRecord",
    "DEFAULT_PROFILE",
    "DedupRecord",
    "IntakeEvent",
    "LiveContent",
    "LogEntry",
    "MetadataRecord",
    "PlaylistLink",
    "WatchConfig",
]
