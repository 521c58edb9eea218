"""Domain models for a single gateway call.

Covers the resolved connection target, the environment snapshot that feeds
target resolution, caller options, and the handshake options handed to the
connection primitive.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

PROTOCOL_VERSION = 3
DEFAULT_GATEWAY_PORT = 18789
DEFAULT_TIMEOUT_MS = 10_000

GATEWAY_TOKEN_ENV = "CHATRELAY_GATEWAY_TOKEN"
GATEWAY_PASSWORD_ENV = "CHATRELAY_GATEWAY_PASSWORD"
GATEWAY_PORT_ENV = "CHATRELAY_GATEWAY_PORT"


class CallState(str, Enum):
    """Lifecycle of one gateway call."""

    CONNECTING = "connecting"
    AWAITING_HANDSHAKE = "awaiting_handshake"
    AWAITING_RESPONSE = "awaiting_response"
    SETTLED_SUCCESS = "settled_success"
    SETTLED_ERROR = "settled_error"

    @property
    def is_settled(self) -> bool:
        return self in (CallState.SETTLED_SUCCESS, CallState.SETTLED_ERROR)


def _clean(value: str | None) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class GatewayEnvironment:
    """Snapshot of the environment variables the resolver consults.

    Attributes:
        token: Override gateway token.
        password: Override gateway password.
        port: Raw port override (validated by the port resolver).
    """

    token: str | None = None
    password: str | None = None
    port: str | None = None

    @classmethod
    def from_mapping(cls, env: Mapping[str, str]) -> "GatewayEnvironment":
        """Capture the relevant variables, treating blanks as unset."""
        return cls(
            token=_clean(env.get(GATEWAY_TOKEN_ENV)),
            password=_clean(env.get(GATEWAY_PASSWORD_ENV)),
            port=_clean(env.get(GATEWAY_PORT_ENV)),
        )


@dataclass(frozen=True)
class ConnectionTarget:
    """Resolved gateway target plus a description of how it was chosen.

    Attributes:
        url: Websocket URL; never empty.
        source: Which branch of the URL precedence chain fired.
        token: Auth token, if any.
        password: Auth password, if any.
        bind_mode: Configured bind mode.
        bind_detail: ``Bind: <mode>`` for locally constructed URLs.
        remote_fallback_note: Set when remote mode had no remote URL.
    """

    url: str
    source: str
    token: str | None = None
    password: str | None = None
    bind_mode: str = "loopback"
    bind_detail: str | None = None
    remote_fallback_note: str | None = None

    @property
    def connection_details(self) -> str:
        lines = [f"Gateway target: {self.url}", f"Source: {self.source}"]
        if self.bind_detail:
            lines.append(self.bind_detail)
        if self.remote_fallback_note:
            lines.append(self.remote_fallback_note)
        return "\n".join(lines)


@dataclass(frozen=True)
class CallGatewayOptions:
    """Caller options for one gateway request.

    Attributes:
        method: Gateway method name.
        params: Request parameters.
        expect_final: Wait for the terminal response only.
        url: Explicit target URL override.
        token: Explicit token override.
        password: Explicit password override.
        timeout_ms: Whole-call timeout in milliseconds.
        client_name: Client name sent on handshake.
        client_version: Client version sent on handshake.
        platform: Client platform sent on handshake.
        mode: Client operating mode sent on handshake.
        instance_id: Connection identity; generated when absent.
        min_protocol: Lowest supported protocol version.
        max_protocol: Highest supported protocol version.
    """

    method: str
    params: Any = None
    expect_final: bool = False
    url: str | None = None
    token: str | None = None
    password: str | None = None
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    client_name: str = "cli"
    client_version: str | None = None
    platform: str | None = None
    mode: str = "cli"
    instance_id: str | None = None
    min_protocol: int = PROTOCOL_VERSION
    max_protocol: int = PROTOCOL_VERSION


HelloOkCallback = Callable[[Any], Awaitable[None]]
CloseCallback = Callable[[int, str], None]


@dataclass(frozen=True)
class GatewayClientOptions:
    """Everything the connection primitive needs for one connection."""

    url: str
    instance_id: str
    client_name: str
    client_version: str
    platform: str
    mode: str
    min_protocol: int
    max_protocol: int
    on_hello_ok: HelloOkCallback
    on_close: CloseCallback
    token: str | None = None
    password: str | None = None
