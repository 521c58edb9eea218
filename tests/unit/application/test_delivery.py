"""Tests for deliver_outbound_payloads."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from chatrelay.application.delivery import (
    MB,
    PROVIDER_HANDLERS,
    deliver_outbound_payloads,
    resolve_media_max_bytes,
    resolve_telegram_token,
)
from chatrelay.core.domain.config_schema import RelayConfig
from chatrelay.core.domain.errors import MissingSenderError
from chatrelay.core.domain.outbound import (
    NormalizedOutboundPayload,
    OutboundProvider,
    SignalDeliveryResult,
    TelegramDeliveryResult,
    WhatsAppDeliveryResult,
)
from chatrelay.core.interfaces.outbound import OutboundSendDeps


class FakeSend:
    """Records every send call and returns queued receipts or raises."""

    def __init__(self, *outcomes: Any) -> None:
        self._outcomes = list(outcomes)
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    async def __call__(self, to: str, text: str, **options: Any) -> dict[str, Any]:
        self.calls.append((to, text, options))
        outcome = self._outcomes.pop(0) if len(self._outcomes) > 1 else self._outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _config(data: dict[str, Any] | None = None) -> RelayConfig:
    return RelayConfig.model_validate(data or {})


@pytest.mark.asyncio
async def test_chunks_telegram_markdown_and_passes_config_token() -> None:
    send_telegram = FakeSend({"message_id": "m1", "chat_id": "c1"})
    config = _config({"telegram": {"bot_token": "tok-1", "text_chunk_limit": 2}})

    results = await deliver_outbound_payloads(
        config=config,
        provider="telegram",
        to="123",
        payloads=[{"text": "abcd"}],
        deps=OutboundSendDeps(send_telegram=send_telegram),
        env={"TELEGRAM_BOT_TOKEN": ""},
    )

    assert len(send_telegram.calls) == 2
    assert [text for _, text, _ in send_telegram.calls] == ["ab", "cd"]
    for _, _, options in send_telegram.calls:
        assert options["token"] == "tok-1"
        assert options["verbose"] is False
    assert len(results) == 2
    assert results[0] == TelegramDeliveryResult(message_id="m1", chat_id="c1")
    assert results[0].provider == "telegram"


@pytest.mark.asyncio
async def test_uses_signal_media_max_bytes_from_config() -> None:
    send_signal = FakeSend({"message_id": "s1", "timestamp": 123})
    config = _config({"signal": {"media_max_mb": 2}})

    results = await deliver_outbound_payloads(
        config=config,
        provider=OutboundProvider.SIGNAL,
        to="+1555",
        payloads=[{"text": "hi", "mediaUrl": "https://x.test/a.jpg"}],
        deps=OutboundSendDeps(send_signal=send_signal),
        env={},
    )

    assert send_signal.calls == [
        ("+1555", "hi", {"media_url": "https://x.test/a.jpg", "max_bytes": 2 * 1024 * 1024})
    ]
    assert results == [SignalDeliveryResult(message_id="s1", timestamp=123)]


@pytest.mark.asyncio
async def test_chunks_whatsapp_text_and_returns_all_results() -> None:
    send_whatsapp = FakeSend(
        {"message_id": "w1", "to_jid": "jid"},
        {"message_id": "w2", "to_jid": "jid"},
    )
    config = _config({"whatsapp": {"text_chunk_limit": 2}})

    results = await deliver_outbound_payloads(
        config=config,
        provider="whatsapp",
        to="+1555",
        payloads=[{"text": "abcd"}],
        deps=OutboundSendDeps(send_whatsapp=send_whatsapp),
        env={},
    )

    assert len(send_whatsapp.calls) == 2
    assert [r.message_id for r in results] == ["w1", "w2"]


@pytest.mark.asyncio
async def test_uses_imessage_media_max_bytes_from_agent_fallback() -> None:
    send_imessage = FakeSend({"message_id": "i1"})
    config = _config({"agent": {"media_max_mb": 3}})

    await deliver_outbound_payloads(
        config=config,
        provider="imessage",
        to="chat_id:42",
        payloads=[{"text": "hello"}],
        deps=OutboundSendDeps(send_imessage=send_imessage),
        env={},
    )

    assert send_imessage.calls == [("chat_id:42", "hello", {"max_bytes": 3 * 1024 * 1024})]


@pytest.mark.asyncio
async def test_only_first_media_item_carries_caption() -> None:
    send_discord = FakeSend({"message_id": "d1", "channel_id": "chan"})
    urls = ["https://x.test/1.jpg", "https://x.test/2.jpg", "https://x.test/3.jpg"]

    results = await deliver_outbound_payloads(
        config=_config(),
        provider="discord",
        to="chan",
        payloads=[{"text": "album", "media_urls": urls}],
        deps=OutboundSendDeps(send_discord=send_discord),
        env={},
    )

    assert [(text, options["media_url"]) for _, text, options in send_discord.calls] == [
        ("album", urls[0]),
        ("", urls[1]),
        ("", urls[2]),
    ]
    assert len(results) == 3


@pytest.mark.asyncio
async def test_unchunked_provider_ignores_configured_limit() -> None:
    send_slack = FakeSend({"message_id": "1700000000.0001", "channel_id": "C1"})
    config = _config({"slack": {"text_chunk_limit": 2}})

    await deliver_outbound_payloads(
        config=config,
        provider="slack",
        to="C1",
        payloads=[{"text": "abcdef"}],
        deps=OutboundSendDeps(send_slack=send_slack),
        env={},
    )

    assert send_slack.calls == [("C1", "abcdef", {})]


@pytest.mark.asyncio
async def test_continues_on_errors_when_best_effort_is_enabled() -> None:
    send_whatsapp = FakeSend(
        RuntimeError("fail"),
        {"message_id": "w2", "to_jid": "jid"},
    )
    on_error = MagicMock()

    results = await deliver_outbound_payloads(
        config=_config(),
        provider="whatsapp",
        to="+1555",
        payloads=[{"text": "a"}, {"text": "b"}],
        deps=OutboundSendDeps(send_whatsapp=send_whatsapp),
        best_effort=True,
        on_error=on_error,
        env={},
    )

    assert len(send_whatsapp.calls) == 2
    on_error.assert_called_once()
    error, payload = on_error.call_args.args
    assert str(error) == "fail"
    assert payload == NormalizedOutboundPayload(text="a", media_urls=[])
    assert results == [WhatsAppDeliveryResult(message_id="w2", to_jid="jid")]


@pytest.mark.asyncio
async def test_failure_without_best_effort_discards_partial_results() -> None:
    send_whatsapp = FakeSend(
        {"message_id": "w1", "to_jid": "jid"},
        RuntimeError("second payload failed"),
        {"message_id": "w3", "to_jid": "jid"},
    )
    on_error = MagicMock()

    with pytest.raises(RuntimeError, match="second payload failed"):
        await deliver_outbound_payloads(
            config=_config(),
            provider="whatsapp",
            to="+1555",
            payloads=[{"text": "a"}, {"text": "b"}, {"text": "c"}],
            deps=OutboundSendDeps(send_whatsapp=send_whatsapp),
            on_error=on_error,
            env={},
        )

    # The first message was really sent but no result list reaches the caller.
    assert [text for _, text, _ in send_whatsapp.calls] == ["a", "b"]
    on_error.assert_not_called()


@pytest.mark.asyncio
async def test_on_payload_runs_before_each_send() -> None:
    events: list[str] = []

    async def send_slack(to: str, text: str, **options: Any) -> dict[str, Any]:
        events.append(f"send:{text}")
        return {"message_id": text, "channel_id": to}

    await deliver_outbound_payloads(
        config=_config(),
        provider="slack",
        to="C1",
        payloads=[{"text": "one"}, {"text": "  "}, {"text": "two"}],
        deps=OutboundSendDeps(send_slack=send_slack),
        on_payload=lambda payload: events.append(f"payload:{payload.text}"),
        env={},
    )

    assert events == ["payload:one", "send:one", "payload:two", "send:two"]


@pytest.mark.asyncio
async def test_missing_sender_raises_before_sending() -> None:
    on_payload = MagicMock()

    with pytest.raises(MissingSenderError) as excinfo:
        await deliver_outbound_payloads(
            config=_config(),
            provider="whatsapp",
            to="+1555",
            payloads=[{"text": "hi"}],
            deps=OutboundSendDeps(),
            best_effort=True,
            on_payload=on_payload,
            env={},
        )

    assert excinfo.value.provider == "whatsapp"
    on_payload.assert_not_called()


@pytest.mark.asyncio
async def test_works_with_async_mock_send_functions() -> None:
    send_telegram = AsyncMock(return_value={"message_id": "m9", "chat_id": "42"})

    results = await deliver_outbound_payloads(
        config=_config(),
        provider="telegram",
        to="42",
        payloads=[{"text": "hello"}],
        deps=OutboundSendDeps(send_telegram=send_telegram),
        env={},
        telegram_token="explicit",
    )

    send_telegram.assert_awaited_once_with("42", "hello", verbose=False, token="explicit")
    assert results == [TelegramDeliveryResult(message_id="m9", chat_id="42")]


@pytest.mark.asyncio
async def test_incomplete_receipt_still_counts_as_delivered() -> None:
    send_whatsapp = FakeSend({"message_id": "w1"})
    on_error = MagicMock()

    results = await deliver_outbound_payloads(
        config=_config(),
        provider="whatsapp",
        to="+1555",
        payloads=[{"text": "hi"}],
        deps=OutboundSendDeps(send_whatsapp=send_whatsapp),
        best_effort=True,
        on_error=on_error,
        env={},
    )

    assert results == [WhatsAppDeliveryResult(message_id="w1", to_jid="unknown")]
    on_error.assert_not_called()


@pytest.mark.asyncio
async def test_camel_case_receipt_keys_are_accepted() -> None:
    send_telegram = FakeSend({"messageId": "m1", "chatId": "c1"})

    results = await deliver_outbound_payloads(
        config=_config(),
        provider="telegram",
        to="c1",
        payloads=[{"text": "hi"}],
        deps=OutboundSendDeps(send_telegram=send_telegram),
        env={},
    )

    assert results == [TelegramDeliveryResult(message_id="m1", chat_id="c1")]


def test_build_result_tolerates_empty_receipt() -> None:
    handler = PROVIDER_HANDLERS[OutboundProvider.SIGNAL]

    assert handler.build_result(None) == SignalDeliveryResult(message_id="unknown", timestamp=None)


def test_every_provider_has_a_handler() -> None:
    assert set(PROVIDER_HANDLERS) == set(OutboundProvider)


class TestResolveTelegramToken:
    def test_explicit_token_wins(self) -> None:
        config = _config({"telegram": {"bot_token": "cfg"}})
        assert resolve_telegram_token(config, {"TELEGRAM_BOT_TOKEN": "env"}, "cli") == "cli"

    def test_env_wins_over_config(self) -> None:
        config = _config({"telegram": {"bot_token": "cfg"}})
        assert resolve_telegram_token(config, {"TELEGRAM_BOT_TOKEN": " env "}) == "env"

    def test_token_file_wins_over_bot_token(self, tmp_path) -> None:
        token_file = tmp_path / "token"
        token_file.write_text("file-token\n", encoding="utf-8")
        config = _config({"telegram": {"bot_token": "cfg", "token_file": str(token_file)}})

        assert resolve_telegram_token(config, {}) == "file-token"

    def test_unreadable_token_file_falls_back(self, tmp_path) -> None:
        config = _config(
            {"telegram": {"bot_token": "cfg", "token_file": str(tmp_path / "missing")}}
        )
        assert resolve_telegram_token(config, {}) == "cfg"

    def test_no_token_anywhere(self) -> None:
        assert resolve_telegram_token(_config(), {}) is None


class TestResolveMediaMaxBytes:
    def test_provider_value_wins(self) -> None:
        config = _config({"signal": {"media_max_mb": 2}, "agent": {"media_max_mb": 9}})
        assert resolve_media_max_bytes(config, "signal") == 2 * MB

    def test_agent_fallback(self) -> None:
        config = _config({"agent": {"media_max_mb": 3}})
        assert resolve_media_max_bytes(config, "imessage") == 3 * MB

    def test_absent_everywhere(self) -> None:
        assert resolve_media_max_bytes(_config(), "signal") is None
