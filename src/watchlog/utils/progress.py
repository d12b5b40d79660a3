"""Intake stage tracking shared across the CLI and services."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class IntakeStage(str, Enum):
    """Lifecycle stages of a single watch intake."""

    INTAKE = "intake"
    CONFIG_READ = "config_read"
    DEDUP_CHECK = "dedup_check"
    SUPPRESSED = "suppressed"
    FALLBACK = "fallback"
    FETCH_PRIMARY = "fetch_primary"
    FETCH_FAILED = "fetch_failed"
    ENRICH_CATEGORY = "enrich_category"
    ENRICH_CHANNEL = "enrich_channel"
    ASSEMBLE_ENTRY = "assemble_entry"
    APPEND_LOG = "append_log"
    MARK_LOGGED = "mark_logged"
    NOTIFY = "notify"
    FAILED = "failed"


class StageUpdate(BaseModel):
    """Structured stage transition payload for CLI rendering."""

    stage: IntakeStage
    subject_id: str
    message: str

    model_config = ConfigDict(extra="forbid")


__all__ = ["IntakeStage", "StageUpdate"]
