"""Send command - deliver a message through the outbound dispatcher."""

import asyncio
import json
import os
from dataclasses import asdict

import typer
from rich.console import Console
from rich.table import Table

from chatrelay.api.cli.context import error_console, load_cli_config
from chatrelay.application.delivery import deliver_outbound_payloads
from chatrelay.core.domain.config_schema import RelayConfig
from chatrelay.core.domain.errors import ChatRelayError
from chatrelay.core.domain.outbound import (
    NormalizedOutboundPayload,
    OutboundDeliveryResult,
    OutboundProvider,
    ReplyPayload,
)
from chatrelay.infrastructure.communication.senders import (
    build_default_send_deps,
    close_send_deps,
)

console = Console()


async def _deliver(
    config: RelayConfig,
    provider: OutboundProvider,
    to: str,
    payload: ReplyPayload,
    best_effort: bool,
) -> list[OutboundDeliveryResult]:
    env = dict(os.environ)
    deps = build_default_send_deps(config, env)

    def report(exc: Exception, failed: NormalizedOutboundPayload) -> None:
        error_console.print(f"[yellow]Delivery failed:[/yellow] {exc}")

    try:
        return await deliver_outbound_payloads(
            config=config,
            provider=provider,
            to=to,
            payloads=[payload],
            deps=deps,
            best_effort=best_effort,
            on_error=report,
            env=env,
        )
    finally:
        await close_send_deps(deps)


def send_message(
    ctx: typer.Context,
    provider: str = typer.Option(..., "--provider", "-P", help="Target provider (telegram, slack, ...)"),
    to: str = typer.Option(..., "--to", "-t", help="Destination chat/channel id or number"),
    message: str = typer.Option("", "--message", "-m", help="Message text"),
    media: list[str] = typer.Option([], "--media", help="Media URL (repeatable)"),
    best_effort: bool = typer.Option(False, "--best-effort", help="Report failures instead of aborting"),
    as_json: bool = typer.Option(False, "--json", help="Print results as JSON"),
):
    """Deliver one message (text and/or media) to a provider."""
    try:
        target = OutboundProvider(provider.strip().lower())
    except ValueError:
        choices = ", ".join(p.value for p in OutboundProvider)
        raise typer.BadParameter(f"unknown provider '{provider}' (choose from {choices})") from None

    config = load_cli_config(ctx)
    payload = ReplyPayload(text=message, media_urls=list(media) or None)

    try:
        results = asyncio.run(_deliver(config, target, to, payload, best_effort))
    except ChatRelayError as exc:
        error_console.print(f"[red]Error:[/red] {exc.message}")
        raise typer.Exit(1) from exc

    if as_json:
        typer.echo(json.dumps([asdict(result) for result in results], ensure_ascii=False))
        return

    if not results:
        console.print("[yellow]Nothing was delivered[/yellow]")
        return

    table = Table(title=f"Delivered via {target.value}")
    table.add_column("Message ID", style="cyan")
    table.add_column("Details", style="white")
    for result in results:
        extra = {k: v for k, v in asdict(result).items() if k not in ("provider", "message_id")}
        table.add_row(result.message_id, ", ".join(f"{k}={v}" for k, v in extra.items()))
    console.print(table)
