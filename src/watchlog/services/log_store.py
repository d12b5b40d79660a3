"""Bounded, insertion-ordered persistent log of finalised watch entries."""

from __future__ import annotations

import asyncio
from typing import Any, List, Optional

from pydantic import ValidationError
from rich.console import Console

from watchlog.models.watch import LogEntry, PlaylistLink
from watchlog.services import KeyValueStore
from watchlog.utils import Clock, utc_now

WATCH_LOG_KEY = "watchLog"
PLAYLIST_LINKS_KEY = "playlistLinks"
DEFAULT_CAPACITY = 5000


class LogStore:
    """Append-only watch log with FIFO eviction once ``capacity`` is exceeded.

    The store also owns the playlist cross-links generated from the log, since they are
    meaningless once the log they were built from is cleared.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        capacity: int = DEFAULT_CAPACITY,
        clock: Optional[Clock] = None,
        console: Optional[Console] = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("Log capacity must be at least 1.")
        self._store = store
        self._capacity = capacity
        self._clock = clock or utc_now
        self._console = console or Console()
        self._write_lock = asyncio.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    # ------------------------------------------------------------------ #
    # Log entries                                                        #
    # ------------------------------------------------------------------ #
    async def entries(self) -> List[LogEntry]:
        """Return every readable entry, oldest first."""

        entries: List[LogEntry] = []
        for position, payload in enumerate(await self._read_list(WATCH_LOG_KEY)):
            try:
                entries.append(LogEntry.from_storage(payload))
            except (ValidationError, TypeError) as exc:
                self._console.log(f"[yellow]Log:[/yellow] skipping unreadable entry #{position}: {exc}")
        return entries

    async def count(self) -> int:
        return len(await self._read_list(WATCH_LOG_KEY))

    async def append(self, entry: LogEntry) -> int:
        """Append ``entry``, evict the oldest surplus and persist; returns the new length."""

        async with self._write_lock:
            items = await self._read_list(WATCH_LOG_KEY)
            items.append(entry.to_storage())
            surplus = len(items) - self._capacity
            if surplus > 0:
                del items[:surplus]
            await self._store.set({WATCH_LOG_KEY: items})
        if surplus > 0:
            self._console.log(f"[blue]Log:[/blue] evicted {surplus} oldest entr{'y' if surplus == 1 else 'ies'}")
        return len(items)

    async def clear(self) -> None:
        """Reset the log and every collection derived from it in one write."""

        async with self._write_lock:
            await self._store.set({WATCH_LOG_KEY: [], PLAYLIST_LINKS_KEY: []})
        self._console.log("[blue]Log:[/blue] cleared watch log and playlist links")

    # ------------------------------------------------------------------ #
    # Playlist links                                                     #
    # ------------------------------------------------------------------ #
    async def playlist_links(self) -> List[PlaylistLink]:
        return [PlaylistLink.model_validate(link) for link in await self._read_list(PLAYLIST_LINKS_KEY)]

    async def remember_playlist_link(self, url: str, count: int) -> PlaylistLink:
        link = PlaylistLink(url=url, count=count, created_at=self._clock())
        async with self._write_lock:
            links = await self._read_list(PLAYLIST_LINKS_KEY)
            links.append(link.model_dump(mode="json", by_alias=True))
            await self._store.set({PLAYLIST_LINKS_KEY: links})
        return link

    async def _read_list(self, key: str) -> List[Any]:
        value = await self._store.get(key, [])
        return list(value) if isinstance(value, list) else []


__all__ = ["DEFAULT_CAPACITY", "LogStore", "PLAYLIST_LINKS_KEY", "WATCH_LOG_KEY"]
