"""Communication infrastructure adapters.

Default per-platform send functions for the outbound dispatcher.
"""

from chatrelay.infrastructure.communication.senders import (
    DiscordSender,
    SignalSender,
    SlackSender,
    TelegramSender,
    build_default_send_deps,
    close_send_deps,
)

__all__ = [
    "DiscordSender",
    "SignalSender",
    "SlackSender",
    "TelegramSender",
    "build_default_send_deps",
    "close_send_deps",
]
