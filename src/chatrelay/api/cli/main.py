"""chatrelay CLI entry point."""

import logging
from pathlib import Path

import structlog
import typer
from rich.console import Console

from chatrelay.api.cli.commands import call, send

app = typer.Typer(
    name="chatrelay",
    help="chatrelay - outbound chat delivery and gateway calls",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

app.command("send", help="Deliver a message to a chat provider")(send.send_message)
app.command("call", help="Call a gateway method once")(call.call_method)


def configure_logging(debug: bool) -> None:
    """Route structlog through a level filter like the rest of the CLI."""
    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(level),
    )


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Config file (default: ~/.chatrelay/config.yaml)"
    ),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
):
    """chatrelay CLI."""
    configure_logging(debug)
    ctx.obj = {"config_path": config, "debug": debug}


@app.command()
def version():
    """Show chatrelay version."""
    from chatrelay import __version__

    console.print(f"[bold blue]Version:[/bold blue] [cyan]{__version__}[/cyan]")


if __name__ == "__main__":
    app()
