"""Repository for the namespaced ``kv_entries`` table."""

from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Any, Mapping, Optional

from psycopg2.extensions import connection as PsycopgConnection
from psycopg2.extras import Json, RealDictCursor

from watchlog.db import ConnectionFactory


class RepositoryError(RuntimeError):
    """Base exception raised for repository layer failures."""


class RecordNotFoundError(RepositoryError):
    """Raised when a requested key is not present."""


class KeyValueRepository:
    """Data access object for JSON values keyed by ``(namespace, key)``."""

    table_name = "kv_entries"

    def __init__(self, connection_factory: ConnectionFactory) -> None:
        self._connection_factory = connection_factory

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def get(self, namespace: str, key: str) -> Any:
        """Return the decoded value stored for ``key``."""

        query = f"SELECT value FROM {self.table_name} WHERE namespace = %(namespace)s AND key = %(key)s"
        row = self._fetch_one(query, {"namespace": namespace, "key": key})
        return row["value"]

    def upsert_many(self, namespace: str, values: Mapping[str, Any]) -> None:
        """Insert or replace every key in ``values`` inside one transaction."""

        if not values:
            raise RepositoryError("No values provided for upsert.")

        query = (
            f"INSERT INTO {self.table_name} (namespace, key, value) "
            "VALUES (%(namespace)s, %(key)s, %(value)s) "
            "ON CONFLICT (namespace, key) DO UPDATE SET value = EXCLUDED.value, updated_at = NOW()"
        )
        with self._connection() as connection:
            with connection.cursor() as cursor:
                for key, value in values.items():
                    cursor.execute(query, {"namespace": namespace, "key": key, "value": Json(value)})

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _fetch_one(self, query: str, params: Mapping[str, object]) -> Mapping[str, Any]:
        with self._connection() as connection:
            with connection.cursor(cursor_factory=RealDictCursor) as cursor:
                cursor.execute(query, params)
                row: Optional[Mapping[str, Any]] = cursor.fetchone()
                if row is None:
                    raise RecordNotFoundError(f"No value stored for {params.get('namespace')}:{params.get('key')}")
                return dict(row)

    def _connection(self) -> AbstractContextManager[PsycopgConnection]:
        return self._connection_factory()


__all__ = ["KeyValueRepository", "RecordNotFoundError", "RepositoryError"]
