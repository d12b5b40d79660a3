"""Quick round-trip check for the Postgres-backed key-value store."""

from __future__ import annotations

import asyncio

from watchlog.config.settings import get_settings
from watchlog.services.kv_store import StorageError, open_stores


async def _round_trip() -> None:
    settings = get_settings()
    if settings.database_url is None:
        print("DATABASE_URL is not set; the JSON file store is in use.")
        return

    stores = open_stores(settings)
    await stores.local.set({"connectivityCheck": {"ok": True}})
    print("Round trip successful, read back:", await stores.local.get("connectivityCheck"))


def main() -> None:
    """Write and read one key against DATABASE_URL."""

    try:
        asyncio.run(_round_trip())
    except StorageError as exc:  # pragma: no cover - diagnostic script
        print("Round trip failed:", exc)


if __name__ == "__main__":
    main()
