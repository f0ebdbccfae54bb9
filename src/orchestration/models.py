"""Answer contracts shared across orchestration modules.

Knowledge and retrieval types (KnowledgeItem, SearchResult,
ConversationTurn) are imported from their own layers, never redefined.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

# Where a rendered reply came from.
ReplySource = Literal["job_fit", "cache", "llm", "knowledge_base", "notice"]

ASSISTANT_BADGE = "<small style=\"opacity:.7\">Assistant</small> "


class ComposedAnswer(BaseModel):
    """A locally built answer."""

    html: str
    plain_text: str


class CacheEntry(BaseModel):
    """Previously rendered remote answer for one normalized query."""

    html: str
    plain_text: str


class RemoteAnswer(BaseModel):
    """Outcome of one remote attempt.

    ``ok`` False means the caller must fall back to the local composer;
    ``badge`` is still provided so the fallback keeps the same header.
    """

    ok: bool
    html: str = ""
    plain_text: str = ""
    badge: str = ASSISTANT_BADGE
    streamed: bool = False
    failure: str | None = None  # short reason, for logs


class ChatReply(BaseModel):
    html: str
    plain_text: str
    source: ReplySource
