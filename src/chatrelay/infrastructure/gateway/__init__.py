"""Gateway connection adapters."""

from chatrelay.infrastructure.gateway.tailnet import pick_primary_tailnet_ipv4
from chatrelay.infrastructure.gateway.ws_client import GatewayClient

__all__ = ["GatewayClient", "pick_primary_tailnet_ipv4"]
