"""CLI entry point and application wiring."""

from __future__ import annotations

from typing import Optional

import httpx
import typer
from rich.console import Console

from watchlog.cli.commands import register_commands
from watchlog.config.settings import Settings
from watchlog.db.connection import close_pools
from watchlog.services.kv_store import StoreFactory


class CLIApplication:
    """Central orchestrator for the watch log Typer application."""

    def __init__(
        self,
        console: Optional[Console] = None,
        *,
        settings: Optional[Settings] = None,
        store_factory: Optional[StoreFactory] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.console = console or Console()
        self._app = typer.Typer(add_completion=False, rich_markup_mode="rich")
        register_commands(
            self._app,
            self.console,
            settings=settings,
            store_factory=store_factory,
            transport=transport,
        )

    @property
    def app(self) -> typer.Typer:
        """Return the underlying Typer application instance."""

        return self._app

    def run(self, *, prog_name: Optional[str] = None, args: Optional[list[str]] = None) -> None:
        """Invoke the Typer application with optional overrides."""

        try:
            self._app(prog_name=prog_name, args=args)
        finally:
            close_pools()


def create_app(
    console: Optional[Console] = None,
    *,
    settings: Optional[Settings] = None,
    store_factory: Optional[StoreFactory] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> typer.Typer:
    """Factory helper that returns the configured Typer application."""

    return CLIApplication(
        console=console,
        settings=settings,
        store_factory=store_factory,
        transport=transport,
    ).app


def main() -> None:
    """Console script entry point for `python -m watchlog` or the installed `watchlog` command."""

    CLIApplication().run(prog_name="watchlog")


__all__ = ["CLIApplication", "create_app", "main"]
