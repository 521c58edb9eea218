"""Call command - perform one gateway request."""

import asyncio
import json
import os
from typing import Any

import typer
from rich.console import Console

from chatrelay.api.cli.context import error_console, load_cli_config
from chatrelay.application.gateway_call import call_gateway
from chatrelay.core.domain.errors import GatewayError
from chatrelay.core.domain.gateway import (
    DEFAULT_TIMEOUT_MS,
    CallGatewayOptions,
    GatewayEnvironment,
)
from chatrelay.infrastructure.gateway.tailnet import pick_primary_tailnet_ipv4

console = Console()


def _parse_params(raw: str | None) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"--params must be valid JSON: {exc}") from exc


def call_method(
    ctx: typer.Context,
    method: str = typer.Argument(..., help="Gateway method name"),
    params: str | None = typer.Option(None, "--params", help="Request params as JSON"),
    url: str | None = typer.Option(None, "--url", help="Gateway websocket URL"),
    token: str | None = typer.Option(None, "--token", help="Gateway token"),
    password: str | None = typer.Option(None, "--password", help="Gateway password"),
    timeout: int = typer.Option(DEFAULT_TIMEOUT_MS, "--timeout", help="Timeout in milliseconds"),
    expect_final: bool = typer.Option(False, "--expect-final", help="Wait for the final response"),
):
    """Call a gateway method and print the JSON result."""
    parsed = _parse_params(params)
    config = load_cli_config(ctx)
    tailnet_ipv4 = None
    if not url and config.gateway.bind in ("tailnet", "auto"):
        tailnet_ipv4 = pick_primary_tailnet_ipv4()

    options = CallGatewayOptions(
        method=method,
        params=parsed,
        expect_final=expect_final,
        url=url,
        token=token,
        password=password,
        timeout_ms=timeout,
    )
    try:
        result = asyncio.run(
            call_gateway(
                options,
                config=config,
                env=GatewayEnvironment.from_mapping(os.environ),
                tailnet_ipv4=tailnet_ipv4,
            )
        )
    except GatewayError as exc:
        error_console.print(f"[red]Gateway error:[/red] {exc.message}")
        raise typer.Exit(1) from exc

    console.print_json(json.dumps(result, ensure_ascii=False))
