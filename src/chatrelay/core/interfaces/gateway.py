"""Protocol definitions for the gateway connection primitive.

The call client orchestrates one connection lifecycle on top of this
contract: ``start`` opens the socket and performs the handshake (reporting
success through ``on_hello_ok``), ``request`` issues a request frame, and
``stop`` closes the connection deliberately.
"""

from __future__ import annotations

from typing import Any, Callable, Protocol

from chatrelay.core.domain.gateway import GatewayClientOptions


class GatewayConnectionProtocol(Protocol):
    """One websocket connection to the gateway."""

    def start(self) -> None:
        """Begin connecting in the background.

        Must return immediately. Handshake success invokes
        ``options.on_hello_ok``; an unrequested close invokes
        ``options.on_close(code, reason)``.
        """
        ...

    def stop(self) -> None:
        """Close the connection deliberately; ``on_close`` is not invoked."""
        ...

    async def wait_closed(self) -> None:
        """Wait until the connection has released its resources."""
        ...

    async def request(
        self,
        method: str,
        params: Any = None,
        *,
        expect_final: bool = False,
    ) -> Any:
        """Send one request and return the response payload.

        Args:
            method: Gateway method name.
            params: JSON-serializable parameters.
            expect_final: Skip intermediate ``accepted`` responses.

        Raises:
            GatewayRequestError: If the gateway answers ``ok: false`` or the
                connection closes while the request is pending.
        """
        ...


GatewayConnectionFactory = Callable[[GatewayClientOptions], GatewayConnectionProtocol]
