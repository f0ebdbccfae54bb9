"""Passage construction for the lexical index.

Each item's text is whitespace-collapsed and trimmed, then cut into
windows of ``chunk_size`` characters advancing by ``chunk_size - overlap``
until a window reaches the end of the text.  An item with no text still
yields one empty passage so it stays matchable on title and tags.

Boundaries depend only on the text and the two parameters, so the same
input always produces the same passages.
"""

from __future__ import annotations

import re

from config import settings
from src.knowledge.models import KnowledgeItem, Passage

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def chunk_text(text: str, chunk_size: int, overlap: int) -> list[str]:
    """Split already-normalized text into overlapping windows.

    Returns ``[""]`` for empty text.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if overlap < 0 or overlap >= chunk_size:
        raise ValueError(
            f"overlap must be in [0, chunk_size), got overlap={overlap} chunk_size={chunk_size}"
        )
    if not text:
        return [""]

    step = chunk_size - overlap
    chunks: list[str] = []
    for start in range(0, len(text), step):
        chunks.append(text[start:start + chunk_size])
        if start + chunk_size >= len(text):
            break
    return chunks


def build_passages(
    items: list[KnowledgeItem],
    *,
    chunk_size: int | None = None,
    overlap: int | None = None,
) -> list[Passage]:
    size = settings.passage_chunk_size if chunk_size is None else chunk_size
    lap = settings.passage_overlap if overlap is None else overlap

    passages: list[Passage] = []
    for item in items:
        text = normalize_text(item.text)
        for index, chunk in enumerate(chunk_text(text, size, lap)):
            passages.append(Passage(parent=item, content=chunk, chunk_index=index))
    return passages
