"""Apply the SQL files under `db/migrations` once each, in file-name order."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional, Set

import psycopg2
from psycopg2.extensions import cursor as PsycopgCursor
from rich.console import Console
from rich.table import Table

from watchlog.config.settings import get_settings
from watchlog.db.connection import connection_from_dsn

MIGRATIONS_ROOT = Path(__file__).resolve().parent / "migrations"
MIGRATIONS_TABLE = "schema_migrations"


class MigrationError(RuntimeError):
    """Raised when migrations cannot run."""


def pending_migrations(applied: Iterable[str], directory: Path = MIGRATIONS_ROOT) -> List[Path]:
    """SQL files in ``directory`` whose names are not in ``applied``, sorted by name."""

    done = set(applied)
    return [path for path in sorted(directory.glob("*.sql")) if path.name not in done]


def _applied_versions(db_cursor: PsycopgCursor) -> Set[str]:
    db_cursor.execute(
        f"CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} ("
        "version TEXT PRIMARY KEY, applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW())"
    )
    db_cursor.execute(f"SELECT version FROM {MIGRATIONS_TABLE}")
    return {row[0] for row in db_cursor.fetchall()}


def run_migrations(dsn: Optional[str] = None, console: Console | None = None) -> List[str]:
    """Apply pending migrations against ``dsn`` (or ``DATABASE_URL``) in one transaction.

    Returns the names of the files applied by this call.
    """

    console = console or Console()

    if dsn is None:
        database_url = get_settings().database_url
        if database_url is None:
            raise MigrationError("DATABASE_URL is not configured; nothing to migrate.")
        dsn = str(database_url)

    table = Table(title="Database Migrations")
    table.add_column("Migration", style="cyan")
    table.add_column("Status", style="green")
    applied: List[str] = []

    try:
        connection = connection_from_dsn(dsn)
    except psycopg2.Error as exc:
        raise MigrationError(f"Could not connect for migrations: {exc}") from exc

    try:
        with connection.cursor() as db_cursor:
            already_applied = _applied_versions(db_cursor)
            for migration in pending_migrations(already_applied):
                db_cursor.execute(migration.read_text(encoding="utf-8"))
                db_cursor.execute(f"INSERT INTO {MIGRATIONS_TABLE} (version) VALUES (%s)", (migration.name,))
                applied.append(migration.name)
                table.add_row(migration.name, "applied")
            for version in sorted(already_applied):
                table.add_row(version, "[dim]already applied[/dim]")
        connection.commit()
    except (psycopg2.Error, OSError) as exc:
        connection.rollback()
        raise MigrationError(f"Migration failed: {exc}") from exc
    finally:
        connection.close()

    console.print(table)
    return applied


def main() -> None:
    """Entry point for running migrations via `python -m watchlog.db.migrate`."""

    run_migrations()


if __name__ == "__main__":  # pragma: no cover
    main()
