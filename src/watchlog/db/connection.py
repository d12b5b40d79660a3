"""psycopg2 connection pools shared by the Postgres key-value store."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator

from psycopg2 import connect
from psycopg2.extensions import connection as PsycopgConnection
from psycopg2.pool import ThreadedConnectionPool

from watchlog.db import ConnectionFactory

MIN_CONNECTIONS = 1
MAX_CONNECTIONS = 4


class DatabasePool:
    """Thread-safe pool; store calls arrive from ``asyncio.to_thread`` workers."""

    def __init__(
        self,
        dsn: str,
        *,
        min_connections: int = MIN_CONNECTIONS,
        max_connections: int = MAX_CONNECTIONS,
    ) -> None:
        self.dsn = dsn
        self._pool = ThreadedConnectionPool(min_connections, max_connections, dsn)

    @contextmanager
    def transaction(self) -> Iterator[PsycopgConnection]:
        """Borrow a connection for one transaction.

        The connection's own context manager commits on success and rolls back on error;
        the connection always goes back to the pool.
        """

        conn = self._pool.getconn()
        try:
            with conn:
                yield conn
        finally:
            self._pool.putconn(conn)

    def close(self) -> None:
        self._pool.closeall()


_pools: Dict[str, DatabasePool] = {}
_pools_lock = threading.Lock()


def connection_factory_for(dsn: str) -> ConnectionFactory:
    """Return the transaction factory of the process-wide pool for ``dsn``."""

    with _pools_lock:
        pool = _pools.get(dsn)
        if pool is None:
            pool = _pools[dsn] = DatabasePool(dsn)
    return pool.transaction


def close_pools() -> None:
    """Close every pool opened through :func:`connection_factory_for`."""

    with _pools_lock:
        pools = list(_pools.values())
        _pools.clear()
    for pool in pools:
        pool.close()


def connection_from_dsn(dsn: str) -> PsycopgConnection:
    """Open an unpooled connection, used for schema migrations."""

    return connect(dsn)


__all__ = ["DatabasePool", "close_pools", "connection_factory_for", "connection_from_dsn"]
