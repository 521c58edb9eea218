"""Single-request gateway call client.

Opens one connection, waits for the handshake, issues exactly one request
and closes the connection again. Four triggers race to settle the call:
request completion, request failure, an unexpected close, and the timeout
timer. The outcome future is written at most once; the ``ignore_close`` flag
is set synchronously at settlement so a close caused by our own ``stop()``
never turns a success into an error.
"""

from __future__ import annotations

import asyncio
import os
import sys
from typing import Any
from uuid import uuid4

import structlog

from chatrelay import __version__
from chatrelay.application.gateway_target import resolve_gateway_target
from chatrelay.core.domain.config_schema import RelayConfig
from chatrelay.core.domain.errors import GatewayClosedError, GatewayTimeoutError
from chatrelay.core.domain.gateway import (
    CallGatewayOptions,
    CallState,
    ConnectionTarget,
    GatewayClientOptions,
    GatewayEnvironment,
)
from chatrelay.core.interfaces.gateway import (
    GatewayConnectionFactory,
    GatewayConnectionProtocol,
)
from chatrelay.infrastructure.gateway.ws_client import GatewayClient

logger = structlog.get_logger(__name__)

_CLOSE_HINTS = {
    1000: "normal closure",
    1006: "abnormal closure (no close frame)",
}


def random_idempotency_key() -> str:
    """Return a fresh idempotency key for gateway requests."""
    return str(uuid4())


def format_close_error(code: int, reason: str, connection_details: str) -> str:
    reason_text = (reason or "").strip() or "no close reason"
    hint = _CLOSE_HINTS.get(code)
    suffix = f" {hint}" if hint else ""
    return f"gateway closed ({code}{suffix}): {reason_text}\n{connection_details}"


def format_timeout_error(timeout_ms: int, connection_details: str) -> str:
    return f"gateway timeout after {timeout_ms}ms\n{connection_details}"


class GatewayCall:
    """State machine for one gateway call.

    States move ``CONNECTING -> AWAITING_HANDSHAKE -> AWAITING_RESPONSE`` and
    end in ``SETTLED_SUCCESS`` or ``SETTLED_ERROR``. Once settled, nothing
    changes the outcome.

    Must be created inside a running event loop; the connection is built
    here but not started until ``run()``.
    """

    def __init__(
        self,
        options: CallGatewayOptions,
        target: ConnectionTarget,
        connection_factory: GatewayConnectionFactory,
    ) -> None:
        self._options = options
        self._target = target
        self._loop = asyncio.get_running_loop()
        self._outcome: asyncio.Future[Any] = self._loop.create_future()
        self._timer: asyncio.TimerHandle | None = None
        self._ignore_close = False
        self.state = CallState.CONNECTING
        self._connection: GatewayConnectionProtocol = connection_factory(
            GatewayClientOptions(
                url=target.url,
                token=target.token,
                password=target.password,
                instance_id=options.instance_id or uuid4().hex,
                client_name=options.client_name,
                client_version=options.client_version or __version__,
                platform=options.platform or sys.platform,
                mode=options.mode,
                min_protocol=options.min_protocol,
                max_protocol=options.max_protocol,
                on_hello_ok=self._on_hello_ok,
                on_close=self._on_close,
            )
        )

    async def run(self) -> Any:
        """Run the call to completion and return the response payload.

        Raises:
            GatewayRequestError: The gateway rejected the request.
            GatewayClosedError: The connection closed before a response.
            GatewayTimeoutError: Nothing settled within the timeout.
        """
        options = self._options
        timer = self._loop.call_later(options.timeout_ms / 1000, self._on_timeout)
        self._timer = timer

        logger.debug(
            "gateway.call.started",
            method=options.method,
            url=self._target.url,
            source=self._target.source,
            timeout_ms=options.timeout_ms,
        )
        try:
            self._connection.start()
            if not self.state.is_settled:
                self.state = CallState.AWAITING_HANDSHAKE
            return await self._outcome
        finally:
            timer.cancel()
            self._connection.stop()
            await self._connection.wait_closed()

    async def _on_hello_ok(self, hello: Any) -> None:
        if self.state.is_settled:
            return
        self.state = CallState.AWAITING_RESPONSE
        try:
            result = await self._connection.request(
                self._options.method,
                self._options.params,
                expect_final=self._options.expect_final,
            )
        except Exception as exc:
            self._ignore_close = True
            self._connection.stop()
            self._settle(error=exc)
            return
        self._ignore_close = True
        self._settle(value=result)
        self._connection.stop()

    def _on_close(self, code: int, reason: str) -> None:
        if self.state.is_settled or self._ignore_close:
            return
        self._ignore_close = True
        self._connection.stop()
        self._settle(
            error=GatewayClosedError(
                format_close_error(code, reason, self._target.connection_details),
                close_code=code,
                reason=reason,
            )
        )

    def _on_timeout(self) -> None:
        self._ignore_close = True
        self._connection.stop()
        self._settle(
            error=GatewayTimeoutError(
                format_timeout_error(self._options.timeout_ms, self._target.connection_details),
                timeout_ms=self._options.timeout_ms,
            )
        )

    def _settle(self, *, value: Any = None, error: BaseException | None = None) -> None:
        if self._outcome.done():
            return
        if self._timer is not None:
            self._timer.cancel()
        if error is not None:
            self.state = CallState.SETTLED_ERROR
            self._outcome.set_exception(error)
            logger.debug(
                "gateway.call.settled",
                method=self._options.method,
                ok=False,
                error_type=type(error).__name__,
            )
            return
        self.state = CallState.SETTLED_SUCCESS
        self._outcome.set_result(value)
        logger.debug("gateway.call.settled", method=self._options.method, ok=True)


async def call_gateway(
    options: CallGatewayOptions,
    *,
    config: RelayConfig | None = None,
    env: GatewayEnvironment | None = None,
    connection_factory: GatewayConnectionFactory | None = None,
    tailnet_ipv4: str | None = None,
) -> Any:
    """Perform one gateway request and return its response payload.

    Args:
        options: Method, params and overrides for this call.
        config: Loaded configuration; defaults to an empty one.
        env: Environment snapshot; defaults to ``os.environ``.
        connection_factory: Builds the connection; defaults to the aiohttp
            websocket ``GatewayClient``.
        tailnet_ipv4: Tailnet address of this host, if known.

    Returns:
        The gateway's response payload.
    """
    config = config or RelayConfig()
    env = env or GatewayEnvironment.from_mapping(os.environ)
    target = resolve_gateway_target(options, config, env, tailnet_ipv4=tailnet_ipv4)
    call = GatewayCall(options, target, connection_factory or GatewayClient)
    return await call.run()
