from __future__ import annotations

from src.orchestration.models import CacheEntry


class ResponseCache:
    """Session-scoped map of normalized query → rendered remote answer.

    No eviction: a session is short and the cache dies with it.
    """

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}

    @staticmethod
    def normalize(query: str) -> str:
        return query.strip().lower()

    def get(self, query: str) -> CacheEntry | None:
        return self._entries.get(self.normalize(query))

    def set(self, query: str, entry: CacheEntry) -> None:
        self._entries[self.normalize(query)] = entry

    def __contains__(self, query: object) -> bool:
        return isinstance(query, str) and self.normalize(query) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()
