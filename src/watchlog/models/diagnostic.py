"""Models for operator diagnostics and listener notifications."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import ConfigDict

from watchlog.models.base import WatchLogBaseModel
from watchlog.models.watch import LogEntry
from watchlog.utils.progress import IntakeStage


class FailureKind(str, Enum):
    """Classification of failures caught at the intake boundary."""

    NETWORK = "network"
    NOT_FOUND = "not_found"
    STORAGE = "storage"
    UNEXPECTED = "unexpected"


class DiagnosticRecord(WatchLogBaseModel):
    """Structured description of an intake that ended without a log entry."""

    kind: FailureKind
    subject_id: str
    stage: IntakeStage
    cause: str
    error_type: str
    occurred_at: datetime
    profile: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class LoggedNotification(WatchLogBaseModel):
    """Payload emitted to listeners after an entry has been appended."""

    kind: Literal["logged"] = "logged"
    entry: LogEntry

    model_config = ConfigDict(frozen=True)


__all__ = ["DiagnosticRecord", "FailureKind", "LoggedNotification"]
