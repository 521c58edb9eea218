"""Outbound delivery dispatcher.

Fans normalized reply payloads out to one chat platform. Everything that
depends on the provider (chunker, send options, result shape) is resolved
once per call from ``PROVIDER_HANDLERS``; payloads, chunks and media items
are then sent strictly in sequence so platform ordering matches input order.
"""

from __future__ import annotations

import os
from dataclasses import MISSING, dataclass, fields
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional

import structlog

from chatrelay.application.payloads import RawPayload, normalize_outbound_payloads
from chatrelay.core.domain.chunking import (
    Chunker,
    chunk_markdown_text,
    chunk_text,
    resolve_text_chunk_limit,
)
from chatrelay.core.domain.config_schema import RelayConfig
from chatrelay.core.domain.errors import MissingSenderError
from chatrelay.core.domain.outbound import (
    DiscordDeliveryResult,
    IMessageDeliveryResult,
    NormalizedOutboundPayload,
    OutboundDeliveryResult,
    OutboundProvider,
    SignalDeliveryResult,
    SlackDeliveryResult,
    TelegramDeliveryResult,
    WhatsAppDeliveryResult,
)
from chatrelay.core.interfaces.outbound import OutboundSendDeps

logger = structlog.get_logger(__name__)

MB = 1024 * 1024
TELEGRAM_TOKEN_ENV = "TELEGRAM_BOT_TOKEN"
UNKNOWN_ID = "unknown"

OptionsResolver = Callable[[RelayConfig, Mapping[str, str], Optional[str]], dict[str, Any]]
ErrorCallback = Callable[[Exception, NormalizedOutboundPayload], None]
PayloadCallback = Callable[[NormalizedOutboundPayload], None]


def resolve_telegram_token(
    config: RelayConfig,
    env: Mapping[str, str],
    explicit: str | None = None,
) -> str | None:
    """Resolve the Telegram bot token.

    Precedence: explicit argument, ``TELEGRAM_BOT_TOKEN``, the configured
    token file, then ``telegram.bot_token``. Blank values are skipped.
    """
    if explicit and explicit.strip():
        return explicit.strip()
    env_token = (env.get(TELEGRAM_TOKEN_ENV) or "").strip()
    if env_token:
        return env_token
    token_file = config.telegram.token_file
    if token_file:
        try:
            file_token = Path(token_file).expanduser().read_text(encoding="utf-8").strip()
        except OSError as exc:
            logger.warning("telegram.token_file_unreadable", path=token_file, error=str(exc))
        else:
            if file_token:
                return file_token
    bot_token = (config.telegram.bot_token or "").strip()
    return bot_token or None


def resolve_media_max_bytes(config: RelayConfig, provider: str) -> int | None:
    """Provider media ceiling in bytes, falling back to ``agent.media_max_mb``."""
    provider_mb = getattr(config.provider_section(provider), "media_max_mb", None)
    if provider_mb:
        return int(provider_mb * MB)
    if config.agent.media_max_mb:
        return int(config.agent.media_max_mb * MB)
    return None


def _camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _verbose_options(config: RelayConfig, env: Mapping[str, str], token: str | None) -> dict[str, Any]:
    return {"verbose": False}


def _telegram_options(config: RelayConfig, env: Mapping[str, str], token: str | None) -> dict[str, Any]:
    return {"verbose": False, "token": resolve_telegram_token(config, env, token)}


def _signal_options(config: RelayConfig, env: Mapping[str, str], token: str | None) -> dict[str, Any]:
    return {"max_bytes": resolve_media_max_bytes(config, "signal")}


def _imessage_options(config: RelayConfig, env: Mapping[str, str], token: str | None) -> dict[str, Any]:
    return {"max_bytes": resolve_media_max_bytes(config, "imessage")}


def _no_options(config: RelayConfig, env: Mapping[str, str], token: str | None) -> dict[str, Any]:
    return {}


@dataclass(frozen=True)
class ProviderHandler:
    """Fixed delivery policy for one provider.

    Attributes:
        provider: Provider this entry serves.
        result_type: Dataclass built from each send receipt.
        chunker: Text splitter, or None to send text unchunked.
        resolve_options: Builds the keyword options passed to every send.
    """

    provider: OutboundProvider
    result_type: type
    chunker: Chunker | None = None
    resolve_options: OptionsResolver = _no_options

    def build_result(self, receipt: Mapping[str, Any] | None) -> OutboundDeliveryResult:
        """Build the result for one send receipt.

        Keys are read in snake_case or camelCase. Identifiers the sender did
        not report become ``"unknown"`` and are logged as a warning.
        """
        receipt = receipt or {}
        values: dict[str, Any] = {}
        missing: list[str] = []
        for field in fields(self.result_type):
            if field.name == "provider":
                continue
            camel = _camel_case(field.name)
            if field.name in receipt:
                values[field.name] = receipt[field.name]
            elif camel in receipt:
                values[field.name] = receipt[camel]
            elif field.default is MISSING:
                values[field.name] = UNKNOWN_ID
                missing.append(field.name)
        if missing:
            logger.warning(
                "outbound.receipt.incomplete",
                provider=self.provider.value,
                missing=missing,
            )
        return self.result_type(**values)


PROVIDER_HANDLERS: dict[OutboundProvider, ProviderHandler] = {
    OutboundProvider.TELEGRAM: ProviderHandler(
        OutboundProvider.TELEGRAM, TelegramDeliveryResult, chunk_markdown_text, _telegram_options
    ),
    OutboundProvider.WHATSAPP: ProviderHandler(
        OutboundProvider.WHATSAPP, WhatsAppDeliveryResult, chunk_text, _verbose_options
    ),
    OutboundProvider.SIGNAL: ProviderHandler(
        OutboundProvider.SIGNAL, SignalDeliveryResult, chunk_text, _signal_options
    ),
    OutboundProvider.IMESSAGE: ProviderHandler(
        OutboundProvider.IMESSAGE, IMessageDeliveryResult, chunk_text, _imessage_options
    ),
    OutboundProvider.SLACK: ProviderHandler(OutboundProvider.SLACK, SlackDeliveryResult),
    OutboundProvider.DISCORD: ProviderHandler(
        OutboundProvider.DISCORD, DiscordDeliveryResult, None, _verbose_options
    ),
}


async def deliver_outbound_payloads(
    *,
    config: RelayConfig,
    provider: OutboundProvider | str,
    to: str,
    payloads: Iterable[RawPayload],
    deps: OutboundSendDeps,
    best_effort: bool = False,
    on_error: ErrorCallback | None = None,
    on_payload: PayloadCallback | None = None,
    env: Mapping[str, str] | None = None,
    telegram_token: str | None = None,
) -> list[OutboundDeliveryResult]:
    """Deliver every normalized payload to ``to`` on ``provider``.

    Text-only payloads are split by the provider's chunker (one send per
    chunk). Media payloads send one message per URL; only the first carries
    the payload text as its caption.

    Args:
        config: Loaded configuration.
        provider: Target provider.
        to: Provider-specific destination.
        payloads: Raw reply payloads.
        deps: Injected send functions.
        best_effort: Report payload failures via ``on_error`` and continue.
        on_error: Called with ``(exc, payload)`` for swallowed failures.
        on_payload: Called with each normalized payload before it is sent.
        env: Environment snapshot; defaults to ``os.environ``.
        telegram_token: Explicit Telegram token override.

    Returns:
        One result per successful send, in send order.

    Raises:
        MissingSenderError: If ``deps`` has no send function for the provider.
        Exception: The first payload failure when ``best_effort`` is False.
            Results accumulated so far are not returned and already-sent
            messages are not rolled back.
    """
    handler = PROVIDER_HANDLERS[OutboundProvider(provider)]
    provider_name = handler.provider.value
    send = deps.for_provider(provider_name)
    if send is None:
        raise MissingSenderError(provider_name)

    env = dict(os.environ) if env is None else env
    text_limit = resolve_text_chunk_limit(config, provider_name) if handler.chunker else None
    base_options = handler.resolve_options(config, env, telegram_token)
    results: list[OutboundDeliveryResult] = []

    async def send_one(text: str, media_url: str | None = None) -> None:
        options = dict(base_options)
        if media_url is not None:
            options["media_url"] = media_url
        receipt = await send(to, text, **options)
        results.append(handler.build_result(receipt))

    normalized = normalize_outbound_payloads(payloads)
    logger.debug(
        "outbound.deliver.started",
        provider=provider_name,
        to=to,
        payloads=len(normalized),
        text_limit=text_limit,
    )

    for payload in normalized:
        try:
            if on_payload is not None:
                on_payload(payload)
            if not payload.media_urls:
                if handler.chunker is None or text_limit is None:
                    await send_one(payload.text)
                    continue
                for chunk in handler.chunker(payload.text, text_limit):
                    await send_one(chunk)
                continue

            for index, media_url in enumerate(payload.media_urls):
                caption = payload.text if index == 0 else ""
                await send_one(caption, media_url)
        except Exception as exc:
            if not best_effort:
                raise
            logger.warning(
                "outbound.payload.failed",
                provider=provider_name,
                to=to,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            if on_error is not None:
                on_error(exc, payload)

    logger.info(
        "outbound.deliver.completed",
        provider=provider_name,
        to=to,
        sent=len(results),
    )
    return results
