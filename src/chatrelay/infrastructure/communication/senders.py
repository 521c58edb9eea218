"""Default send functions for the outbound dispatcher.

Each sender wraps one platform HTTP API and is called as
``await sender(to, text, **options)``. Senders share a lazily created
``aiohttp.ClientSession`` that is closed via ``close()``.

WhatsApp and iMessage have no HTTP API reachable from here; callers inject
their own send functions for those providers.
"""

from __future__ import annotations

import mimetypes
from typing import Any, Mapping

import aiohttp
import structlog

from chatrelay.application.delivery import resolve_telegram_token
from chatrelay.core.domain.config_schema import RelayConfig
from chatrelay.core.domain.errors import SendError
from chatrelay.core.interfaces.outbound import OutboundSendDeps

logger = structlog.get_logger(__name__)


def _with_media_link(text: str, media_url: str | None) -> str:
    if not media_url:
        return text
    return f"{text}\n{media_url}" if text else media_url


class _HttpSender:
    """Shared session handling for HTTP-based senders."""

    provider = "unknown"

    def __init__(self, *, timeout: float = 10.0) -> None:
        self._timeout = timeout
        self._session: aiohttp.ClientSession | None = None

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def _post_json(
        self,
        url: str,
        payload: dict[str, Any],
        *,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        session = await self._get_session()
        try:
            async with session.post(url, json=payload, headers=headers) as response:
                if response.status >= 400:
                    body = await response.text()
                    logger.error(
                        f"{self.provider}.send_failed",
                        status=response.status,
                        response=body[:200],
                    )
                    raise SendError(
                        f"{self.provider} API returned HTTP {response.status}",
                        provider=self.provider,
                        status=response.status,
                    )
                data = await response.json(content_type=None)
        except (TimeoutError, aiohttp.ClientError) as exc:
            logger.error(f"{self.provider}.send_error", error=str(exc))
            raise SendError(f"{self.provider} request failed: {exc}", provider=self.provider) from exc
        if not isinstance(data, dict):
            raise SendError(f"{self.provider} API returned an unexpected body", provider=self.provider)
        return data


class TelegramSender(_HttpSender):
    """Send messages via the Telegram Bot API.

    Text goes through ``sendMessage``; media URLs are handed to Telegram as
    ``sendPhoto`` (images) or ``sendDocument`` with the text as caption.
    """

    provider = "telegram"

    def __init__(self, token: str | None = None, *, api_base: str = "https://api.telegram.org", timeout: float = 10.0) -> None:
        super().__init__(timeout=timeout)
        self._token = token
        self._api_base = api_base.rstrip("/")

    async def __call__(
        self,
        to: str,
        text: str,
        *,
        verbose: bool = False,
        token: str | None = None,
        media_url: str | None = None,
    ) -> dict[str, Any]:
        bot_token = token or self._token
        if not bot_token:
            raise SendError("Telegram bot token is not configured", provider=self.provider)

        if media_url:
            mime, _ = mimetypes.guess_type(media_url)
            if mime and mime.startswith("image/"):
                method, payload = "sendPhoto", {"chat_id": to, "photo": media_url}
            else:
                method, payload = "sendDocument", {"chat_id": to, "document": media_url}
            if text:
                payload["caption"] = text
        else:
            method, payload = "sendMessage", {"chat_id": to, "text": text}

        data = await self._post_json(f"{self._api_base}/bot{bot_token}/{method}", payload)
        if not data.get("ok"):
            raise SendError(
                str(data.get("description") or "Telegram rejected the message"),
                provider=self.provider,
                details={"method": method},
            )
        result = data.get("result") or {}
        chat = result.get("chat") or {}
        if verbose:
            logger.info("telegram.sent", chat_id=to, method=method)
        return {
            "message_id": str(result.get("message_id", "unknown")),
            "chat_id": str(chat.get("id", to)),
        }


class DiscordSender(_HttpSender):
    """Send messages to a Discord channel via the REST API (v10)."""

    provider = "discord"

    def __init__(self, token: str, *, api_base: str = "https://discord.com/api/v10", timeout: float = 10.0) -> None:
        super().__init__(timeout=timeout)
        self._token = token
        self._api_base = api_base.rstrip("/")

    async def __call__(
        self,
        to: str,
        text: str,
        *,
        verbose: bool = False,
        media_url: str | None = None,
    ) -> dict[str, Any]:
        data = await self._post_json(
            f"{self._api_base}/channels/{to}/messages",
            {"content": _with_media_link(text, media_url)},
            headers={"Authorization": f"Bot {self._token}"},
        )
        if verbose:
            logger.info("discord.sent", channel_id=to)
        return {
            "message_id": str(data.get("id", "unknown")),
            "channel_id": str(data.get("channel_id", to)),
        }


class SlackSender(_HttpSender):
    """Send messages via Slack ``chat.postMessage``."""

    provider = "slack"

    def __init__(self, bot_token: str, *, api_base: str = "https://slack.com/api", timeout: float = 10.0) -> None:
        super().__init__(timeout=timeout)
        self._bot_token = bot_token
        self._api_base = api_base.rstrip("/")

    async def __call__(self, to: str, text: str, *, media_url: str | None = None) -> dict[str, Any]:
        data = await self._post_json(
            f"{self._api_base}/chat.postMessage",
            {"channel": to, "text": _with_media_link(text, media_url)},
            headers={"Authorization": f"Bearer {self._bot_token}"},
        )
        if not data.get("ok"):
            raise SendError(
                str(data.get("error") or "Slack rejected the message"),
                provider=self.provider,
            )
        return {
            "message_id": str(data.get("ts", "unknown")),
            "channel_id": str(data.get("channel", to)),
        }


class SignalSender(_HttpSender):
    """Send messages through a signal-cli HTTP daemon (JSON-RPC ``send``)."""

    provider = "signal"

    def __init__(self, http_url: str, *, account: str | None = None, timeout: float = 10.0) -> None:
        super().__init__(timeout=timeout)
        self._rpc_url = f"{http_url.rstrip('/')}/api/v1/rpc"
        self._account = account

    async def __call__(
        self,
        to: str,
        text: str,
        *,
        media_url: str | None = None,
        max_bytes: int | None = None,
    ) -> dict[str, Any]:
        if media_url and max_bytes:
            await self._check_media_size(media_url, max_bytes)

        params: dict[str, Any] = {
            "message": _with_media_link(text, media_url),
            "recipient": [to],
        }
        if self._account:
            params["account"] = self._account
        data = await self._post_json(
            self._rpc_url,
            {"jsonrpc": "2.0", "method": "send", "params": params, "id": "chatrelay"},
        )
        if data.get("error"):
            error = data["error"] if isinstance(data["error"], dict) else {}
            raise SendError(
                str(error.get("message") or "signal-cli rejected the message"),
                provider=self.provider,
            )
        result = data.get("result") or {}
        timestamp = result.get("timestamp")
        return {
            "message_id": str(timestamp if timestamp is not None else "unknown"),
            "timestamp": timestamp,
        }

    async def _check_media_size(self, media_url: str, max_bytes: int) -> None:
        session = await self._get_session()
        try:
            async with session.head(media_url, allow_redirects=True) as response:
                length = response.content_length
        except (TimeoutError, aiohttp.ClientError) as exc:
            raise SendError(f"signal media lookup failed: {exc}", provider=self.provider) from exc
        if length is not None and length > max_bytes:
            raise SendError(
                f"signal media exceeds {max_bytes} bytes",
                provider=self.provider,
                details={"media_url": media_url, "content_length": length},
            )


def build_default_send_deps(
    config: RelayConfig,
    env: Mapping[str, str] | None = None,
) -> OutboundSendDeps:
    """Wire the built-in senders that the configuration can support.

    Telegram is always wired (its token is resolved per call by the
    dispatcher); Discord and Slack need their tokens configured; Signal uses
    the configured daemon URL.
    """
    env = env or {}
    telegram_token = resolve_telegram_token(config, env)
    return OutboundSendDeps(
        send_telegram=TelegramSender(telegram_token),
        send_discord=DiscordSender(config.discord.token) if config.discord.token else None,
        send_slack=SlackSender(config.slack.bot_token) if config.slack.bot_token else None,
        send_signal=SignalSender(config.signal.http_url, account=config.signal.account),
    )


async def close_send_deps(deps: OutboundSendDeps) -> None:
    """Close the HTTP sessions of any built-in senders in ``deps``."""
    for sender in (deps.send_telegram, deps.send_discord, deps.send_slack, deps.send_signal):
        if isinstance(sender, _HttpSender):
            await sender.close()
