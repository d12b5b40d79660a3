"""Command registration utilities for the watch log CLI."""

from __future__ import annotations

from typing import Optional

import httpx
import typer
from rich.console import Console

from watchlog.cli.commands import watch_log
from watchlog.config.settings import Settings
from watchlog.services.kv_store import StoreFactory


def register_commands(
    app: typer.Typer,
    console: Console,
    *,
    settings: Optional[Settings] = None,
    store_factory: Optional[StoreFactory] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> None:
    """Attach command groups to the provided Typer application."""

    watch_log.register(app, console, settings=settings, store_factory=store_factory, transport=transport)

    @app.callback(invoke_without_command=True)
    def main_callback(ctx: typer.Context) -> None:
        """Log, inspect and export media watch history."""

        if ctx.invoked_subcommand is None:
            console.print("[bold green]watchlog ready for commands.[/bold green] Try [cyan]watchlog --help[/cyan].")


__all__ = ["register_commands"]
