"""Application services: payload normalization, delivery, gateway calls."""

from chatrelay.application.delivery import deliver_outbound_payloads
from chatrelay.application.gateway_call import call_gateway, random_idempotency_key
from chatrelay.application.gateway_target import resolve_gateway_target
from chatrelay.application.payloads import normalize_outbound_payloads

__all__ = [
    "call_gateway",
    "deliver_outbound_payloads",
    "normalize_outbound_payloads",
    "random_idempotency_key",
    "resolve_gateway_target",
]
