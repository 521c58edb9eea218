"""
Core Protocol Interfaces

Contracts for the two external collaborators chatrelay depends on:

    - SendFunction / OutboundSendDeps: per-platform send functions used by
      the outbound dispatcher
    - GatewayConnectionProtocol: the websocket connection primitive used by
      the gateway call client
"""

from chatrelay.core.interfaces.gateway import (
    GatewayConnectionFactory,
    GatewayConnectionProtocol,
)
from chatrelay.core.interfaces.outbound import OutboundSendDeps, SendFunction

__all__ = [
    "GatewayConnectionFactory",
    "GatewayConnectionProtocol",
    "OutboundSendDeps",
    "SendFunction",
]
