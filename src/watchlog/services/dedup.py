"""TTL-based suppression of repeat intakes for the same profile and subject."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from rich.console import Console

from watchlog.models.watch import DedupRecord
from watchlog.services import KeyValueStore
from watchlog.utils import Clock, utc_now

LAST_LOGGED_KEY = "lastLogged"
DEFAULT_TTL_MINUTES = 120


def dedup_key(profile: str, subject_id: str) -> str:
    return f"{profile}:{subject_id}"


def _parse_timestamp(value: object) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=timezone.utc)


class DedupGuard:
    """Answers "was this logged recently?" and records new log times.

    :meth:`is_suppressed` and :meth:`mark_logged` are independent round trips to the
    store. Callers that run fetch work between them leave a window in which a concurrent
    duplicate can pass the check; the guard does not close it.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        ttl_minutes: int = DEFAULT_TTL_MINUTES,
        clock: Optional[Clock] = None,
        console: Optional[Console] = None,
    ) -> None:
        self._store = store
        self._ttl_minutes = ttl_minutes
        self._clock = clock or utc_now
        self._console = console or Console()
        self._write_lock = asyncio.Lock()

    async def lookup(self, profile: str, subject_id: str) -> Optional[DedupRecord]:
        """Return the stored record for the pair, if one exists and is readable."""

        table = await self._read_table()
        raw_value = table.get(dedup_key(profile, subject_id))
        if raw_value is None:
            return None

        logged_at = _parse_timestamp(raw_value)
        if logged_at is None:
            self._console.log(
                f"[yellow]Dedup:[/yellow] ignoring unreadable timestamp {raw_value!r} "
                f"(profile={profile}, subject_id={subject_id})"
            )
            return None
        return DedupRecord(profile=profile, subject_id=subject_id, logged_at=logged_at)

    async def is_suppressed(self, profile: str, subject_id: str, ttl_minutes: Optional[int] = None) -> bool:
        """True iff the pair was logged less than ``ttl_minutes`` ago."""

        record = await self.lookup(profile, subject_id)
        if record is None:
            return False
        ttl = timedelta(minutes=self._ttl_minutes if ttl_minutes is None else ttl_minutes)
        return self._clock() - record.logged_at < ttl

    async def mark_logged(self, profile: str, subject_id: str) -> DedupRecord:
        """Upsert the pair's record with the current time."""

        record = DedupRecord(profile=profile, subject_id=subject_id, logged_at=self._clock())
        async with self._write_lock:
            table = await self._read_table()
            table[record.key] = record.logged_at.isoformat()
            await self._store.set({LAST_LOGGED_KEY: table})
        return record

    async def _read_table(self) -> Dict[str, object]:
        table = await self._store.get(LAST_LOGGED_KEY, {})
        return dict(table) if isinstance(table, dict) else {}


__all__ = ["DEFAULT_TTL_MINUTES", "DedupGuard", "LAST_LOGGED_KEY", "dedup_key"]
