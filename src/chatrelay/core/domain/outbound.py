"""Domain models for outbound delivery.

Raw reply payloads come in, normalized payloads flow through the
dispatcher, and one provider-tagged delivery result comes out per
successful send call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, Union


class OutboundProvider(str, Enum):
    """Chat platforms the dispatcher can deliver to."""

    WHATSAPP = "whatsapp"
    TELEGRAM = "telegram"
    DISCORD = "discord"
    SLACK = "slack"
    SIGNAL = "signal"
    IMESSAGE = "imessage"


@dataclass(frozen=True)
class ReplyPayload:
    """Raw reply produced upstream of the dispatcher.

    Attributes:
        text: Optional message text.
        media_url: Optional single attachment URL.
        media_urls: Optional attachment URL list; wins over ``media_url``.
    """

    text: str | None = None
    media_url: str | None = None
    media_urls: list[str] | None = None


@dataclass(frozen=True)
class NormalizedOutboundPayload:
    """Canonical payload: text plus an ordered list of media URLs.

    Never both empty once produced by the normalizer.
    """

    text: str = ""
    media_urls: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class WhatsAppDeliveryResult:
    message_id: str
    to_jid: str
    provider: Literal["whatsapp"] = "whatsapp"


@dataclass(frozen=True)
class TelegramDeliveryResult:
    message_id: str
    chat_id: str
    provider: Literal["telegram"] = "telegram"


@dataclass(frozen=True)
class DiscordDeliveryResult:
    message_id: str
    channel_id: str
    provider: Literal["discord"] = "discord"


@dataclass(frozen=True)
class SlackDeliveryResult:
    message_id: str
    channel_id: str
    provider: Literal["slack"] = "slack"


@dataclass(frozen=True)
class SignalDeliveryResult:
    message_id: str
    timestamp: int | None = None
    provider: Literal["signal"] = "signal"


@dataclass(frozen=True)
class IMessageDeliveryResult:
    message_id: str
    provider: Literal["imessage"] = "imessage"


OutboundDeliveryResult = Union[
    WhatsAppDeliveryResult,
    TelegramDeliveryResult,
    DiscordDeliveryResult,
    SlackDeliveryResult,
    SignalDeliveryResult,
    IMessageDeliveryResult,
]
