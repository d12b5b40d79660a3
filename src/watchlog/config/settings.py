"""Application settings loaded from environment variables and config files."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, PositiveFloat, PositiveInt
from pydantic.networks import PostgresDsn
from pydantic_settings import BaseSettings, SettingsConfigDict

from watchlog.config import CONFIG_ROOT

DEFAULT_CATALOG_BASE_URL = "https://www.googleapis.com/youtube/v3"


class PipelineConfig(BaseModel):
    """Tunables for dedup, retry, enrichment and log retention."""

    dedup_ttl_minutes: PositiveInt = 120
    log_capacity: PositiveInt = 5000
    max_retries: NonNegativeInt = 3
    retry_backoff_ms: NonNegativeInt = 300
    category_region: str = Field(default="US", min_length=2, max_length=2)
    request_timeout_seconds: PositiveFloat = 30.0
    playlist_max_items: PositiveInt = 50
    serialize_intakes: bool = False
    diagnostics_retained: PositiveInt = 100

    model_config = ConfigDict(extra="forbid")


def _load_pipeline_config(config_path: Path) -> PipelineConfig:
    if not config_path.exists():
        return PipelineConfig()

    raw_data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    return PipelineConfig(**(raw_data.get("pipeline") or {}))


def _default_data_dir() -> Path:
    return Path.home() / ".watchlog"


class Settings(BaseSettings):
    """Process-level settings for the watch log CLI and services.

    The catalog credential and active profile are deliberately absent: they live in the
    synchronised key-value store and are read per intake through
    :class:`watchlog.services.config_store.ConfigStore`.
    """

    database_url: Optional[PostgresDsn] = Field(default=None, alias="DATABASE_URL")
    data_dir: Path = Field(default_factory=_default_data_dir, alias="WATCHLOG_DATA_DIR")
    catalog_base_url: str = Field(default=DEFAULT_CATALOG_BASE_URL, alias="CATALOG_BASE_URL")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    pipeline: PipelineConfig = Field(default_factory=lambda: _load_pipeline_config(CONFIG_ROOT / "pipeline.yaml"))

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached instance of the application settings."""

    return Settings()


__all__ = ["DEFAULT_CATALOG_BASE_URL", "PipelineConfig", "Settings", "get_settings"]
