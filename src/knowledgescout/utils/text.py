"""Text helpers including sentence-aware chunking."""

from __future__ import annotations

import re
from typing import Iterable, List

_BREAK_CHARS = (".", "\n")
_WHITESPACE_RE = re.compile(r"\s+")


def split_text(text: str, *, chunk_size: int = 1000, overlap: int = 200) -> List[str]:
    """Split text into chunks, preferring sentence or line boundaries.

    Each window of ``chunk_size`` characters is cut after the last ``.`` or
    newline when that break lies past the window midpoint; the next chunk then
    starts right after the break. Otherwise the window is cut at its raw end
    and the next one re-reads the last ``overlap`` characters. The final window
    runs to the end of the text. Chunks are stripped and empty ones dropped.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if overlap < 0 or overlap >= chunk_size:
        raise ValueError(
            f"overlap must be in [0, chunk_size); got overlap={overlap}, chunk_size={chunk_size}"
        )

    chunks: List[str] = []
    start = 0
    length = len(text)

    while start < length:
        end = min(start + chunk_size, length)
        if end >= length:
            chunks.append(text[start:end])
            break

        window = text[start:end]
        break_at = max(window.rfind(char) for char in _BREAK_CHARS)
        if break_at > chunk_size / 2:
            chunks.append(window[: break_at + 1])
            start += break_at + 1
        else:
            chunks.append(window)
            start = end - overlap

    return [chunk.strip() for chunk in chunks if chunk.strip()]


def normalize_query(query: str) -> str:
    """Strip and collapse internal whitespace."""
    return _WHITESPACE_RE.sub(" ", query).strip()


def truncate(text: str, limit: int, suffix: str = "...") -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + suffix


def normalize_whitespace(lines: Iterable[str]) -> str:
    """Collapse whitespace and join lines."""
    return "\n".join(line.strip() for line in lines if line.strip())
