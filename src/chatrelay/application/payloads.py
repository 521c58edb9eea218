"""Reply payload normalization.

Turns raw reply payloads into ``NormalizedOutboundPayload`` entries and
drops the ones with nothing to send.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Union

from chatrelay.core.domain.outbound import NormalizedOutboundPayload, ReplyPayload

RawPayload = Union[ReplyPayload, Mapping[str, Any]]


def _field(payload: RawPayload, snake: str, camel: str) -> Any:
    if isinstance(payload, ReplyPayload):
        return getattr(payload, snake)
    if snake in payload:
        return payload[snake]
    return payload.get(camel)


def normalize_outbound_payload(payload: RawPayload) -> NormalizedOutboundPayload:
    """Normalize a single raw payload without filtering it."""
    text = _field(payload, "text", "text") or ""
    media_urls = _field(payload, "media_urls", "mediaUrls")
    if media_urls is None:
        media_url = _field(payload, "media_url", "mediaUrl")
        media_urls = [media_url] if media_url else []
    return NormalizedOutboundPayload(text=text, media_urls=list(media_urls))


def normalize_outbound_payloads(
    payloads: Iterable[RawPayload],
) -> list[NormalizedOutboundPayload]:
    """Normalize raw payloads, keeping order and dropping empty entries.

    An entry is dropped when its text is blank after stripping and it has
    no media URLs.

    Args:
        payloads: ``ReplyPayload`` instances or mappings using either
            ``media_url``/``media_urls`` or ``mediaUrl``/``mediaUrls`` keys.

    Returns:
        Normalized payloads in input order.
    """
    normalized = (normalize_outbound_payload(payload) for payload in payloads)
    return [item for item in normalized if item.text.strip() or item.media_urls]
