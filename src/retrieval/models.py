from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Literal

from pydantic import BaseModel, ConfigDict, field_validator

from src.knowledge.models import KnowledgeItem, Passage, ProjectItem

if TYPE_CHECKING:
    from src.indexing.lexical import LexicalIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class SearchResult:
    """A passage with its relevance score.

    Scores live in [0, 1] and lower is better.  Results injected by
    heuristics carry an explicit score (0 unless a stage says otherwise).
    """

    item: Passage
    score: float = 0.0


class IntentRule(BaseModel):
    """One entry of the optional intents document.

    ``patterns`` are regex sources matched case-insensitively against the
    raw query.  Sources that fail to compile are dropped at load time.
    """

    model_config = ConfigDict(frozen=True)

    patterns: tuple[re.Pattern[str], ...] = ()
    name: str = ""
    href: str = ""
    answer: str = ""
    tags: tuple[str, ...] = ()
    prompt: str | None = None

    @field_validator("patterns", mode="before")
    @classmethod
    def _compile_patterns(cls, value: Any) -> tuple[re.Pattern[str], ...]:
        if value is None:
            return ()
        if isinstance(value, str):
            value = [value]
        compiled: list[re.Pattern[str]] = []
        for source in value:
            if isinstance(source, re.Pattern):
                compiled.append(source)
                continue
            try:
                compiled.append(re.compile(str(source), re.IGNORECASE))
            except re.error as exc:
                logger.warning("intents: dropping invalid pattern %r (%s)", source, exc)
        return tuple(compiled)

    def matches(self, query: str) -> bool:
        return any(p.search(query) for p in self.patterns)


class ConversationTurn(BaseModel):
    """One chat turn as sent to the remote endpoint."""

    role: Literal["user", "assistant"]
    content: str


@dataclass(frozen=True)
class KnowledgeBase:
    """Everything built once per knowledge load.

    ``degraded`` marks knowledge scraped from the page because the
    document was unavailable.  An empty base (no items, no index) is
    valid and means the assistant runs without retrieval.
    """

    items: tuple[KnowledgeItem, ...] = ()
    passages: tuple[Passage, ...] = ()
    index: LexicalIndex | None = None
    intents: tuple[IntentRule, ...] = ()
    degraded: bool = False

    @property
    def is_ready(self) -> bool:
        return self.index is not None and bool(self.items)

    def search(self, query: str) -> list[SearchResult]:
        if self.index is None:
            return []
        return self.index.search(query)

    def find(self, predicate: Callable[[KnowledgeItem], bool]) -> KnowledgeItem | None:
        return next((item for item in self.items if predicate(item)), None)

    def first_of_type(self, item_type: str) -> KnowledgeItem | None:
        return self.find(lambda item: item.type == item_type)

    def projects(self) -> list[ProjectItem]:
        return [item for item in self.items if isinstance(item, ProjectItem)]
