"""Shared helpers for CLI commands."""

import typer
from rich.console import Console

from chatrelay.core.domain.config_schema import RelayConfig
from chatrelay.core.domain.errors import ConfigError
from chatrelay.infrastructure.config.config_loader import load_config

error_console = Console(stderr=True)


def load_cli_config(ctx: typer.Context) -> RelayConfig:
    """Load the config selected by the global ``--config`` option."""
    config_path = (ctx.obj or {}).get("config_path")
    try:
        return load_config(config_path)
    except ConfigError as exc:
        error_console.print(f"[red]Config error:[/red] {exc.message}")
        raise typer.Exit(1) from exc
