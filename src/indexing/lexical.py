"""Fuzzy multi-field lexical index over passages.

Each passage exposes up to five fields: title, content, tags, and for
FAQ passages the question and answer.  A query is aligned against every
field with ``rapidfuzz.fuzz.partial_ratio`` (best substring alignment,
so position inside a long field does not matter) and converted into a
distance ``1 - ratio / 100``.  Fields within ``SEARCH_THRESHOLD`` count
as matches; the passage score is the weighted geometric combination of
its matching fields' distances::

    score = prod(max(distance, EPS) ** normalized_weight)

Scores live in [0, 1] and lower is better.  Passages with no matching
field are not returned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from rapidfuzz import fuzz, utils

from config import settings
from src.knowledge.models import Passage
from src.retrieval.models import SearchResult

logger = logging.getLogger(__name__)

# A perfect match would otherwise zero out the whole product.
_EPS = 1e-3

_FIELDS = ("title", "content", "tags", "q", "a")


def field_weights() -> dict[str, float]:
    """Configured field weights, normalized to sum to 1."""
    raw = {
        "title": settings.search_weight_title,
        "content": settings.search_weight_content,
        "tags": settings.search_weight_tags,
        "q": settings.search_weight_question,
        "a": settings.search_weight_answer,
    }
    total = sum(raw.values())
    if total <= 0:
        raise ValueError("search field weights must sum to a positive value")
    return {name: weight / total for name, weight in raw.items()}


@dataclass(frozen=True)
class _Entry:
    passage: Passage
    title: str
    content: str
    tags: tuple[str, ...]
    q: str
    a: str


def _prepare(passage: Passage) -> _Entry:
    return _Entry(
        passage=passage,
        title=utils.default_process(passage.title),
        content=utils.default_process(passage.content),
        tags=tuple(utils.default_process(t) for t in passage.tags if t),
        q=utils.default_process(passage.q),
        a=utils.default_process(passage.a),
    )


class LexicalIndex:
    """Immutable search structure built once per knowledge load."""

    def __init__(self, passages: list[Passage]) -> None:
        self._entries = [_prepare(p) for p in passages]
        self._weights = field_weights()
        logger.info("lexical index built: passages=%d", len(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def passages(self) -> list[Passage]:
        return [e.passage for e in self._entries]

    def search(self, query: str, limit: int | None = None) -> list[SearchResult]:
        needle = utils.default_process(query or "")
        if len(needle) < settings.search_min_match_length:
            return []

        scored: list[tuple[float, int, Passage]] = []
        for position, entry in enumerate(self._entries):
            score = self._score(needle, entry)
            if score is not None:
                scored.append((score, position, entry.passage))

        # position breaks ties so repeated searches order identically
        scored.sort(key=lambda row: (row[0], row[1]))
        if limit is not None:
            scored = scored[:limit]
        return [SearchResult(item=passage, score=score) for score, _, passage in scored]

    def _score(self, needle: str, entry: _Entry) -> float | None:
        threshold = settings.search_threshold
        total = 1.0
        matched = False
        for name in _FIELDS:
            distance = self._distance(needle, entry, name)
            if distance is None or distance > threshold:
                continue
            matched = True
            total *= max(distance, _EPS) ** self._weights[name]
        if not matched:
            return None
        return min(max(total, 0.0), 1.0)

    @staticmethod
    def _distance(needle: str, entry: _Entry, name: str) -> float | None:
        if name == "tags":
            if not entry.tags:
                return None
            best = max(fuzz.partial_ratio(needle, tag) for tag in entry.tags)
            return 1.0 - best / 100.0
        haystack = getattr(entry, name)
        if not haystack:
            return None
        return 1.0 - fuzz.partial_ratio(needle, haystack) / 100.0
