"""Read and update the credential/profile pair in the synchronised store."""

from __future__ import annotations

from typing import Optional

from rich.console import Console

from watchlog.models.watch import DEFAULT_PROFILE, WatchConfig
from watchlog.services import KeyValueStore

API_KEY_KEY = "apiKey"
PROFILE_KEY = "profile"


class ConfigStore:
    """Access to :class:`WatchConfig`; the core only ever reads it."""

    def __init__(self, store: KeyValueStore, *, console: Optional[Console] = None) -> None:
        self._store = store
        self._console = console or Console()

    async def read(self) -> WatchConfig:
        api_key = str(await self._store.get(API_KEY_KEY, "") or "").strip()
        profile = str(await self._store.get(PROFILE_KEY, DEFAULT_PROFILE) or "").strip()
        return WatchConfig(api_key=api_key or None, profile=profile or DEFAULT_PROFILE)

    async def update(self, *, api_key: Optional[str], profile: Optional[str]) -> WatchConfig:
        """Apply an update from a settings surface; blanks reset to the defaults."""

        cleaned_key = (api_key or "").strip()
        cleaned_profile = (profile or "").strip() or DEFAULT_PROFILE
        await self._store.set({API_KEY_KEY: cleaned_key, PROFILE_KEY: cleaned_profile})
        state = "configured" if cleaned_key else "cleared"
        self._console.log(f"[green]Config:[/green] saved (profile={cleaned_profile}, api_key={state})")
        return WatchConfig(api_key=cleaned_key or None, profile=cleaned_profile)


__all__ = ["API_KEY_KEY", "ConfigStore", "PROFILE_KEY"]
