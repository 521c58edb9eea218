"""Protocol definitions for outbound delivery.

The dispatcher never talks to a chat platform directly. It calls one
``SendFunction`` per provider, supplied through ``OutboundSendDeps`` at the
composition root (production senders) or by tests (fakes).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol


class SendFunction(Protocol):
    """Send one message (text, optionally with one media URL) to a platform."""

    async def __call__(self, to: str, text: str, **options: Any) -> Mapping[str, Any]:
        """Deliver a message and return the platform's identifiers.

        Args:
            to: Provider-specific destination (chat id, channel id, number).
            text: Message text or media caption; may be empty for media.
            **options: Provider-specific keywords such as ``verbose``,
                ``media_url``, ``token`` or ``max_bytes``.

        Returns:
            Mapping with at least ``message_id`` plus provider-specific keys
            (``chat_id``, ``channel_id``, ``to_jid``, ``timestamp``).

        Raises:
            Exception: Any failure; the dispatcher applies its best-effort
                policy at payload granularity.
        """
        ...


@dataclass(frozen=True)
class OutboundSendDeps:
    """Per-provider send functions injected into the dispatcher."""

    send_whatsapp: SendFunction | None = None
    send_telegram: SendFunction | None = None
    send_discord: SendFunction | None = None
    send_slack: SendFunction | None = None
    send_signal: SendFunction | None = None
    send_imessage: SendFunction | None = None

    def for_provider(self, provider: str) -> SendFunction | None:
        """Return the send function wired for ``provider``, if any."""
        return getattr(self, f"send_{provider}", None)
