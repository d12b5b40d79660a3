"""Key-value store implementations backing the log, dedup table and config."""

from __future__ import annotations

import asyncio
import copy
import json
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

import psycopg2
from rich.console import Console

from watchlog.config.settings import Settings
from watchlog.db.connection import connection_factory_for
from watchlog.db.kv_repository import KeyValueRepository, RecordNotFoundError, RepositoryError
from watchlog.db.migrate import MigrationError, run_migrations
from watchlog.services import KeyValueStore

LOCAL_NAMESPACE = "local"
SYNC_NAMESPACE = "sync"


class StorageError(RuntimeError):
    """Raised when a persistent read or write fails."""


@dataclass(slots=True)
class StorePair:
    """The durable local store and the smaller synchronised config store."""

    local: KeyValueStore
    sync: KeyValueStore


StoreFactory = Callable[[Settings], StorePair]


class MemoryKeyValueStore:
    """Process-local store; values are copied on the way in and out."""

    def __init__(self, initial: Optional[Mapping[str, Any]] = None) -> None:
        self._data: Dict[str, Any] = copy.deepcopy(dict(initial or {}))

    async def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    async def set(self, values: Mapping[str, Any]) -> None:
        self._data.update(copy.deepcopy(dict(values)))

    def snapshot(self) -> Dict[str, Any]:
        """Return a copy of every stored key (primarily for tests and debugging)."""

        return copy.deepcopy(self._data)


class JsonFileKeyValueStore:
    """One JSON document per namespace, replaced atomically on every write."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._write_lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def get(self, key: str, default: Any = None) -> Any:
        data = await asyncio.to_thread(self._read)
        return data.get(key, default)

    async def set(self, values: Mapping[str, Any]) -> None:
        await asyncio.to_thread(self._merge_and_write, dict(values))

    def _read(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as exc:
            raise StorageError(f"Failed to read {self._path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"Store document {self._path} is not a JSON object.")
        return data

    def _merge_and_write(self, values: Dict[str, Any]) -> None:
        with self._write_lock:
            data = self._read()
            data.update(values)
            temp_path = self._path.with_name(f"{self._path.name}.tmp")
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                temp_path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
                os.replace(temp_path, self._path)
            except (OSError, TypeError, ValueError) as exc:
                raise StorageError(f"Failed to write {self._path}: {exc}") from exc


class PostgresKeyValueStore:
    """Namespace view over the ``kv_entries`` table; blocking calls run in a worker thread."""

    def __init__(self, namespace: str, *, repository: KeyValueRepository) -> None:
        self._namespace = namespace
        self._repository = repository

    async def get(self, key: str, default: Any = None) -> Any:
        try:
            return await asyncio.to_thread(self._repository.get, self._namespace, key)
        except RecordNotFoundError:
            return default
        except (RepositoryError, psycopg2.Error) as exc:
            raise StorageError(f"Failed to read {self._namespace}:{key}: {exc}") from exc

    async def set(self, values: Mapping[str, Any]) -> None:
        try:
            await asyncio.to_thread(self._repository.upsert_many, self._namespace, dict(values))
        except (RepositoryError, psycopg2.Error) as exc:
            keys = ", ".join(values)
            raise StorageError(f"Failed to write {self._namespace}:[{keys}]: {exc}") from exc


def open_stores(
    settings: Settings,
    *,
    console: Optional[Console] = None,
    auto_migrate: bool = True,
) -> StorePair:
    """Open the local and sync stores described by ``settings``.

    Postgres is used when ``DATABASE_URL`` is configured; otherwise both namespaces are
    JSON documents under ``WATCHLOG_DATA_DIR``.
    """

    console = console or Console()
    if settings.database_url is not None:
        dsn = str(settings.database_url)
        if auto_migrate:
            try:
                run_migrations(dsn, console=console)
            except MigrationError as exc:
                raise StorageError(f"Failed to run database migrations: {exc}") from exc
        try:
            repository = KeyValueRepository(connection_factory_for(dsn))
        except psycopg2.Error as exc:
            raise StorageError(f"Failed to connect to the database: {exc}") from exc
        return StorePair(
            local=PostgresKeyValueStore(LOCAL_NAMESPACE, repository=repository),
            sync=PostgresKeyValueStore(SYNC_NAMESPACE, repository=repository),
        )

    data_dir = settings.data_dir.expanduser()
    return StorePair(
        local=JsonFileKeyValueStore(data_dir / f"{LOCAL_NAMESPACE}.json"),
        sync=JsonFileKeyValueStore(data_dir / f"{SYNC_NAMESPACE}.json"),
    )


__all__ = [
    "JsonFileKeyValueStore",
    "LOCAL_NAMESPACE",
    "MemoryKeyValueStore",
    "PostgresKeyValueStore",
    "SYNC_NAMESPACE",
    "StorageError",
    "StoreFactory",
    "StorePair",
    "open_stores",
]
