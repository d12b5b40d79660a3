"""CLI commands for logging watches, managing config and exporting the log."""

from __future__ import annotations

import asyncio
import json
from collections import Counter
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Coroutine, Dict, List, Optional, TextIO, TypeVar

import httpx
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from watchlog.config.settings import Settings, get_settings
from watchlog.db.migrate import MigrationError, run_migrations
from watchlog.models.diagnostic import FailureKind
from watchlog.models.watch import IntakeEvent, LiveContent, LogEntry
from watchlog.services.config_store import ConfigStore
from watchlog.services.export import (
    build_daily_export,
    build_playlist_url,
    export_stamp,
    filter_entries,
    format_duration,
    playlist_subject_ids,
    to_csv,
)
from watchlog.services.kv_store import StorageError, StoreFactory, StorePair, open_stores
from watchlog.services.log_store import LogStore
from watchlog.services.orchestrator import IntakeOutcome, WatchLogger, create_watch_logger
from watchlog.utils.progress import IntakeStage, StageUpdate
from watchlog.utils.validation import InvalidWatchURLError, canonical_source_url, extract_subject_id

T = TypeVar("T")


class LogExitCode:
    """Mapping of meaningful CLI exit codes."""

    SUCCESS = 0
    INVALID_INPUT = 1
    FETCH_FAILED = 3
    PROCESSING_ERROR = 4
    STORAGE_ERROR = 5
    NOT_CONFIGURED = 6


class ExportFormat(str, Enum):
    """Supported export encodings."""

    CSV = "csv"
    JSON = "json"


def parse_intake_line(line: str) -> Optional[IntakeEvent]:
    """Turn one ``listen`` input line into an event.

    Accepts a JSON object with ``subjectId`` and optional ``sourceUrl``, or a bare URL or id.
    Returns ``None`` for blank lines.
    """

    stripped = line.strip()
    if not stripped:
        return None

    if stripped.startswith("{"):
        payload = json.loads(stripped)
        subject_id = payload.get("subjectId") or extract_subject_id(payload.get("sourceUrl") or "")
        source_url = payload.get("sourceUrl") or canonical_source_url(subject_id, subject_id)
        return IntakeEvent(subject_id=subject_id, source_url=source_url)

    subject_id = extract_subject_id(stripped)
    return IntakeEvent(subject_id=subject_id, source_url=canonical_source_url(stripped, subject_id))


def register(
    app: typer.Typer,
    console: Console,
    *,
    settings: Optional[Settings] = None,
    store_factory: Optional[StoreFactory] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> None:
    """Register watch log commands."""

    @lru_cache(maxsize=1)
    def get_app_settings() -> Settings:
        return settings or get_settings()

    @lru_cache(maxsize=1)
    def get_stores() -> StorePair:
        if store_factory is not None:
            return store_factory(get_app_settings())
        return open_stores(get_app_settings(), console=console)

    def run(coroutine: Coroutine[Any, Any, T]) -> T:
        try:
            return asyncio.run(coroutine)
        except StorageError as exc:
            console.print(f"[red]Storage error:[/red] {exc}")
            raise typer.Exit(code=LogExitCode.STORAGE_ERROR) from exc

    def stores_or_exit() -> StorePair:
        try:
            return get_stores()
        except StorageError as exc:
            console.print(f"[red]Storage error:[/red] {exc}")
            raise typer.Exit(code=LogExitCode.STORAGE_ERROR) from exc

    def build_logger() -> WatchLogger:
        return create_watch_logger(stores_or_exit(), settings=get_app_settings(), console=console, transport=transport)

    def build_log_store() -> LogStore:
        return LogStore(stores_or_exit().local, capacity=get_app_settings().pipeline.log_capacity, console=console)

    def build_config_store() -> ConfigStore:
        return ConfigStore(stores_or_exit().sync, console=console)

    # ------------------------------------------------------------------ #
    # Intake                                                             #
    # ------------------------------------------------------------------ #
    @app.command("log")
    def log_watch(
        target: str = typer.Argument(..., help="Watch URL, short-form URL or subject id"),
        quiet: bool = typer.Option(False, "--quiet", "-q", help="Print the outcome as JSON only"),
    ) -> None:
        """Log a single watch and wait for the outcome."""

        try:
            subject_id = extract_subject_id(target)
        except InvalidWatchURLError as exc:
            console.print(f"[red]Error:[/red] {exc}")
            raise typer.Exit(code=LogExitCode.INVALID_INPUT) from exc

        event = IntakeEvent(subject_id=subject_id, source_url=canonical_source_url(target, subject_id))

        def on_stage(update: StageUpdate) -> None:
            console.print(f"[dim]{update.stage.value:>16}[/dim]  {update.message}")

        async def _log() -> IntakeOutcome:
            logger = build_logger()
            try:
                return await logger.handle(event, on_stage=None if quiet else on_stage)
            finally:
                await logger.aclose()

        outcome = run(_log())

        if quiet:
            typer.echo(json.dumps(_outcome_payload(outcome), ensure_ascii=False, indent=2))
        elif outcome.stage is IntakeStage.SUPPRESSED:
            console.print(f"[yellow]Already logged recently:[/yellow] {subject_id}")
        elif outcome.entry is not None:
            console.print(_entry_panel(outcome.entry))

        if outcome.stage is IntakeStage.FETCH_FAILED:
            raise typer.Exit(code=LogExitCode.FETCH_FAILED)
        if outcome.stage is IntakeStage.FAILED:
            storage_failure = outcome.diagnostic is not None and outcome.diagnostic.kind is FailureKind.STORAGE
            raise typer.Exit(code=LogExitCode.STORAGE_ERROR if storage_failure else LogExitCode.PROCESSING_ERROR)

    @app.command("listen")
    def listen(
        file: Optional[Path] = typer.Option(
            None, "--file", "-f", exists=True, dir_okay=False, help="Read events from a file instead of stdin"
        ),
    ) -> None:
        """Log a stream of watch events, one JSON object or URL per line."""

        async def _listen(stream: TextIO) -> List[IntakeOutcome]:
            logger = build_logger()
            last_subject: Optional[str] = None
            try:
                while True:
                    line = await asyncio.to_thread(stream.readline)
                    if not line:
                        break
                    try:
                        event = parse_intake_line(line)
                    except (InvalidWatchURLError, ValidationError, ValueError, AttributeError) as exc:
                        console.print(f"[yellow]Skipping unreadable event:[/yellow] {line.strip()!r} ({exc})")
                        continue
                    if event is None or event.subject_id == last_subject:
                        continue
                    last_subject = event.subject_id
                    logger.submit(event)
                return await logger.drain()
            finally:
                await logger.aclose()

        if file is not None:
            with file.open("r", encoding="utf-8") as handle:
                outcomes = run(_listen(handle))
        else:
            outcomes = run(_listen(typer.get_text_stream("stdin")))

        counts = Counter(outcome.stage.value for outcome in outcomes)
        table = Table(title="Intake Summary")
        table.add_column("Outcome", style="cyan")
        table.add_column("Count", justify="right")
        for stage, count in sorted(counts.items()):
            table.add_row(stage, str(count))
        table.add_row("total", str(len(outcomes)), style="bold")
        console.print(table)

    # ------------------------------------------------------------------ #
    # Config                                                             #
    # ------------------------------------------------------------------ #
    config_app = typer.Typer(help="Show or update the API key and profile.", add_completion=False)
    app.add_typer(config_app, name="config")

    @config_app.command("show")
    def config_show() -> None:
        """Show the active profile and whether an API key is set."""

        config = run(build_config_store().read())
        console.print(f"Profile: [bold]{config.profile}[/bold]")
        console.print(f"API key: {'configured' if config.has_credential else '[yellow]not configured[/yellow]'}")

    @config_app.command("set")
    def config_set(
        api_key: Optional[str] = typer.Option(None, "--api-key", help="Catalog API key; pass '' to clear"),
        profile: Optional[str] = typer.Option(None, "--profile", help="Profile name recorded on each entry"),
    ) -> None:
        """Update the API key and/or profile; omitted values are kept."""

        async def _update() -> None:
            store = build_config_store()
            current = await store.read()
            await store.update(
                api_key=current.api_key if api_key is None else api_key,
                profile=current.profile if profile is None else profile,
            )

        run(_update())
        console.print("[green]Saved.[/green]")

    # ------------------------------------------------------------------ #
    # Log inspection                                                     #
    # ------------------------------------------------------------------ #
    @app.command("list")
    def list_entries(
        query: Optional[str] = typer.Option(None, "--query", "-q", help="Match title or channel"),
        shorts: bool = typer.Option(False, "--shorts", help="Only short-form items"),
        kids: bool = typer.Option(False, "--kids", help="Only items made for kids"),
        limit: int = typer.Option(20, "--limit", min=1, help="Maximum rows to show"),
        json_output: bool = typer.Option(False, "--json", help="Output entries as JSON"),
    ) -> None:
        """Show logged watches, newest first."""

        async def _load() -> tuple[List[LogEntry], bool]:
            entries = await build_log_store().entries()
            config = await build_config_store().read()
            return entries, config.has_credential

        entries, has_credential = run(_load())
        rows = filter_entries(entries, query=query, only_shorts=shorts, only_kids=kids)[:limit]

        if json_output:
            typer.echo(json.dumps([row.to_storage() for row in rows], ensure_ascii=False, indent=2))
            return

        if not has_credential:
            console.print("[yellow]No catalog API key configured. Run `watchlog config set --api-key ...`.[/yellow]")
        if not rows:
            console.print("No items logged yet.")
            return
        console.print(_entries_table(rows))

    @app.command("export")
    def export(
        export_format: ExportFormat = typer.Option(ExportFormat.CSV, "--format", "-f", case_sensitive=False),
        output: Optional[Path] = typer.Option(None, "--output", "-o", help="Destination file"),
        query: Optional[str] = typer.Option(None, "--query", "-q", help="Match title or channel"),
        shorts: bool = typer.Option(False, "--shorts", help="Only short-form items"),
        kids: bool = typer.Option(False, "--kids", help="Only items made for kids"),
    ) -> None:
        """Export the (filtered) log as CSV or as JSON grouped by day."""

        async def _render() -> str:
            log_store = build_log_store()
            rows = filter_entries(await log_store.entries(), query=query, only_shorts=shorts, only_kids=kids)
            if export_format is ExportFormat.CSV:
                return to_csv(rows)
            payload = build_daily_export(rows, await log_store.playlist_links())
            return json.dumps(payload, ensure_ascii=False, indent=2)

        content = run(_render())
        stamp = export_stamp()
        if output is None:
            suffix = "" if export_format is ExportFormat.CSV else "_by_day"
            output = Path(f"youtube_watch_log{suffix}_{stamp}.{export_format.value}")
        output.write_text(content, encoding="utf-8")
        console.print(f"[green]Exported[/green] to {output}")

    @app.command("playlist")
    def playlist(
        limit: Optional[int] = typer.Option(None, "--limit", min=1, help="Maximum items in the playlist"),
    ) -> None:
        """Build a playlist link from the first logged items and remember it."""

        max_items = limit or get_app_settings().pipeline.playlist_max_items

        async def _playlist() -> Optional[str]:
            log_store = build_log_store()
            subject_ids = playlist_subject_ids(await log_store.entries(), limit=max_items)
            if not subject_ids:
                return None
            url = build_playlist_url(subject_ids)
            await log_store.remember_playlist_link(url, len(subject_ids))
            return url

        url = run(_playlist())
        if url is None:
            console.print("[yellow]No items logged yet.[/yellow]")
            return
        typer.echo(url)

    @app.command("clear")
    def clear(
        yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    ) -> None:
        """Clear every logged item and generated playlist link."""

        if not yes and not typer.confirm("Clear all logged items?"):
            console.print("Nothing cleared.")
            return
        run(build_log_store().clear())
        console.print("[green]Watch log cleared.[/green]")

    @app.command("migrate")
    def migrate() -> None:
        """Create the Postgres schema used when DATABASE_URL is set."""

        database_url = get_app_settings().database_url
        if database_url is None:
            console.print("[red]Error:[/red] DATABASE_URL is not configured.")
            raise typer.Exit(code=LogExitCode.NOT_CONFIGURED)
        try:
            run_migrations(str(database_url), console=console)
        except MigrationError as exc:
            console.print(f"[red]Migration failed:[/red] {exc}")
            raise typer.Exit(code=LogExitCode.STORAGE_ERROR) from exc


def _outcome_payload(outcome: IntakeOutcome) -> Dict[str, Any]:
    return {
        "subjectId": outcome.subject_id,
        "stage": outcome.stage.value,
        "logged": outcome.logged,
        "entry": outcome.entry.to_storage() if outcome.entry else None,
        "diagnostic": outcome.diagnostic.model_dump(mode="json", by_alias=True) if outcome.diagnostic else None,
    }


def _entry_flags(entry: LogEntry) -> str:
    flags: List[str] = []
    if entry.is_shorts:
        flags.append("[blue]Shorts[/blue]")
    if entry.live_content is not LiveContent.NONE:
        flags.append(f"[red]{entry.live_content.value}[/red]")
    if entry.made_for_kids:
        flags.append("[green]Made for Kids[/green]")
    if entry.category_name:
        flags.append(entry.category_name)
    return " ".join(flags)


def _entry_panel(entry: LogEntry) -> Panel:
    lines = [
        f"[bold]{entry.title or entry.subject_id}[/bold]",
        f"Channel: {entry.channel_title or 'Unknown'}",
        f"Duration: {format_duration(entry.duration_seconds) or 'n/a'}",
        f"Profile: {entry.profile}",
        f"URL: {entry.source_url}",
    ]
    flags = _entry_flags(entry)
    if flags:
        lines.append(flags)
    return Panel.fit("\n".join(lines), title="Logged", border_style="green")


def _entries_table(rows: List[LogEntry]) -> Table:
    table = Table(title="Watch Log")
    table.add_column("Watched", style="cyan", no_wrap=True)
    table.add_column("Profile")
    table.add_column("Title", overflow="fold")
    table.add_column("Channel")
    table.add_column("Duration", justify="right")
    table.add_column("Flags")
    for entry in rows:
        table.add_row(
            entry.watched_at.astimezone().strftime("%Y-%m-%d %H:%M"),
            entry.profile,
            entry.title or entry.subject_id,
            entry.channel_title or "",
            format_duration(entry.duration_seconds),
            _entry_flags(entry),
        )
    return table


__all__ = ["ExportFormat", "LogExitCode", "parse_intake_line", "register"]
