"""
Text chunking for platform message length limits.

Two splitters are provided:

- ``chunk_text``: plain text, prefers newline then whitespace boundaries.
- ``chunk_markdown_text``: same boundaries, but never breaks inside a fenced
  code block unless it has to; a forced break closes the fence at the end of
  the chunk and reopens it at the start of the next one.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable

from chatrelay.core.domain.config_schema import RelayConfig

DEFAULT_CHUNK_LIMIT = 4000

Chunker = Callable[[str, int], list[str]]

_FENCE_RE = re.compile(r"^( {0,3})(`{3,}|~{3,})(.*)$")


def resolve_text_chunk_limit(config: RelayConfig, provider: str) -> int:
    """Return the configured chunk limit for a provider, or the default."""
    limit = config.provider_section(provider).text_chunk_limit
    if limit is not None and limit > 0:
        return limit
    return DEFAULT_CHUNK_LIMIT


def chunk_text(text: str, limit: int) -> list[str]:
    """Split plain text into chunks of at most ``limit`` characters.

    Args:
        text: Text to split.
        limit: Maximum chunk length. Non-positive disables splitting.

    Returns:
        Ordered chunks; empty list for empty text.
    """
    if not text:
        return []
    if limit <= 0 or len(text) <= limit:
        return [text]

    chunks: list[str] = []
    remaining = text
    while len(remaining) > limit:
        window = remaining[:limit]
        break_idx = window.rfind("\n")
        if break_idx <= 0:
            break_idx = _last_whitespace(window)
        if break_idx <= 0:
            break_idx = limit

        chunk = remaining[:break_idx].rstrip()
        if chunk:
            chunks.append(chunk)

        on_separator = break_idx < len(remaining) and remaining[break_idx].isspace()
        next_start = min(len(remaining), break_idx + (1 if on_separator else 0))
        remaining = remaining[next_start:].lstrip()

    if remaining:
        chunks.append(remaining)
    return chunks


@dataclass(frozen=True)
class _FenceSpan:
    start: int
    end: int
    open_line: str
    indent: str
    marker: str

    @property
    def close_line(self) -> str:
        return f"{self.indent}{self.marker}"

    @property
    def body_start(self) -> int:
        return self.start + len(self.open_line) + 1

    def contains(self, index: int) -> bool:
        return self.start < index < self.end


def chunk_markdown_text(text: str, limit: int) -> list[str]:
    """Split markdown into chunks of at most ``limit`` characters.

    Break points inside fenced code blocks are avoided. When a block is
    longer than the limit, the chunk ends with a closing fence and the next
    chunk reopens the block with its original opening line.
    """
    if not text:
        return []
    if limit <= 0 or len(text) <= limit:
        return [text]

    chunks: list[str] = []
    remaining = text
    while len(remaining) > limit:
        spans = _parse_fence_spans(remaining)
        window = remaining[:limit]

        break_idx = _last_safe_break(window, spans, newline_only=True)
        if break_idx <= 0:
            break_idx = _last_safe_break(window, spans, newline_only=False)

        if break_idx > 0:
            chunk = remaining[:break_idx].rstrip()
            if chunk:
                chunks.append(chunk)
            remaining = remaining[break_idx + 1 :].lstrip("\n")
            continue

        span = _span_at(spans, limit)
        reserve = len(span.close_line) + 1 if span else 0
        if span is None or limit - reserve <= span.body_start:
            if span is not None and span.start > 0:
                # Fence opening does not fit: end the chunk before it.
                head = remaining[: span.start].rstrip()
                if head:
                    chunks.append(head)
                remaining = remaining[span.start :]
                continue
            chunks.append(remaining[:limit])
            remaining = remaining[limit:]
            continue

        max_idx = limit - reserve
        break_idx = remaining.rfind("\n", span.body_start, max_idx)
        if break_idx <= span.body_start:
            break_idx = max_idx
        body = remaining[:break_idx].rstrip("\n")
        chunks.append(f"{body}\n{span.close_line}")
        rest = remaining[break_idx:]
        if rest.startswith("\n"):
            rest = rest[1:]
        remaining = f"{span.open_line}\n{rest}"

    if remaining:
        chunks.append(remaining)
    return chunks


def _last_whitespace(window: str) -> int:
    for idx in range(len(window) - 1, -1, -1):
        if window[idx].isspace():
            return idx
    return -1


def _last_safe_break(window: str, spans: list[_FenceSpan], *, newline_only: bool) -> int:
    for idx in range(len(window) - 1, 0, -1):
        char = window[idx]
        if newline_only and char != "\n":
            continue
        if not char.isspace():
            continue
        if any(span.contains(idx) for span in spans):
            continue
        return idx
    return -1


def _span_at(spans: list[_FenceSpan], index: int) -> _FenceSpan | None:
    for span in spans:
        if span.start <= index < span.end:
            return span
    return None


def _parse_fence_spans(text: str) -> list[_FenceSpan]:
    spans: list[_FenceSpan] = []
    open_fence: tuple[int, str, str, str] | None = None
    offset = 0
    for line in text.split("\n"):
        line_end = offset + len(line)
        match = _FENCE_RE.match(line)
        if match:
            indent, marker, info = match.groups()
            if open_fence is None:
                open_fence = (offset, line, indent, marker)
            else:
                _, _, _, open_marker = open_fence
                if marker[0] == open_marker[0] and len(marker) >= len(open_marker) and not info.strip():
                    start, open_line, open_indent, _ = open_fence
                    spans.append(_FenceSpan(start, line_end, open_line, open_indent, open_marker))
                    open_fence = None
        offset = line_end + 1
    if open_fence is not None:
        start, open_line, open_indent, open_marker = open_fence
        spans.append(_FenceSpan(start, len(text), open_line, open_indent, open_marker))
    return spans
