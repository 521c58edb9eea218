"""Gateway connection target resolution.

A pure function of (caller options, configuration, environment snapshot,
known tailnet address). Precedence for each value:

- URL: explicit ``url`` > ``gateway.remote.url`` (remote mode) > local URL
- token: explicit > remote token (remote mode) | env > ``gateway.auth.token``
- password: explicit > env > remote/auth password depending on mode
"""

from __future__ import annotations

from chatrelay.core.domain.config_schema import RelayConfig
from chatrelay.core.domain.gateway import (
    DEFAULT_GATEWAY_PORT,
    CallGatewayOptions,
    ConnectionTarget,
    GatewayEnvironment,
)

REMOTE_FALLBACK_NOTE = (
    "Note: gateway.mode=remote but gateway.remote.url is missing; using local URL."
)


def _non_blank(value: str | None) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def resolve_gateway_port(config: RelayConfig, env: GatewayEnvironment) -> int:
    """Port precedence: env override > ``gateway.port`` > default."""
    if env.port:
        try:
            port = int(env.port)
        except ValueError:
            port = 0
        if 0 < port <= 65535:
            return port
    if config.gateway.port:
        return config.gateway.port
    return DEFAULT_GATEWAY_PORT


def resolve_gateway_target(
    options: CallGatewayOptions,
    config: RelayConfig,
    env: GatewayEnvironment,
    *,
    tailnet_ipv4: str | None = None,
) -> ConnectionTarget:
    """Resolve where and how to connect for one gateway call.

    Args:
        options: Caller options; explicit url/token/password always win.
        config: Loaded configuration.
        env: Environment snapshot.
        tailnet_ipv4: Tailnet address of this host, if known.

    Returns:
        The resolved target with a deterministic description of its source.
    """
    gateway = config.gateway
    is_remote = gateway.mode == "remote"
    bind_mode = gateway.bind

    prefer_tailnet = bool(tailnet_ipv4) and bind_mode in ("tailnet", "auto")
    port = resolve_gateway_port(config, env)
    local_url = f"ws://{tailnet_ipv4 if prefer_tailnet else '127.0.0.1'}:{port}"

    url_override = _non_blank(options.url)
    remote_url = _non_blank(gateway.remote.url) if is_remote else None

    if url_override:
        url, source = url_override, "explicit --url"
    elif remote_url:
        url, source = remote_url, "config gateway.remote.url"
    elif prefer_tailnet:
        url, source = local_url, f"local tailnet {tailnet_ipv4}"
    else:
        url, source = local_url, "local loopback"

    if is_remote:
        fallback_token = _non_blank(gateway.remote.token)
        fallback_password = _non_blank(gateway.remote.password)
    else:
        fallback_token = env.token or _non_blank(gateway.auth.token)
        fallback_password = _non_blank(gateway.auth.password)

    token = _non_blank(options.token) or fallback_token
    password = _non_blank(options.password) or env.password or fallback_password

    is_local = not url_override and not remote_url
    return ConnectionTarget(
        url=url,
        source=source,
        token=token,
        password=password,
        bind_mode=bind_mode,
        bind_detail=f"Bind: {bind_mode}" if is_local else None,
        remote_fallback_note=REMOTE_FALLBACK_NOTE if is_remote and is_local else None,
    )
