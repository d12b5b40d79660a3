"""Typer application for logging and exporting watch history."""

from watchlog.cli.main import CLIApplication, create_app

__all__ = ["CLIApplication", "create_app"]
