"""Conversation view contract.

The session talks to whatever displays the conversation only through
``ConversationView``.  ``TranscriptView`` keeps everything in memory and
is what the terminal client and the tests use.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from src.rendering.markup import sanitize_html, strip_tags


class ConversationView(Protocol):
    def add_message(self, html: str, who: str = "bot", source: str = "unknown") -> None: ...

    def start_stream(self) -> None: ...

    def update_stream(self, html: str) -> None: ...

    def finish_stream(self, html: str, source: str = "llm") -> None: ...

    def show_typing(self) -> None: ...

    def hide_typing(self) -> None: ...


@dataclass
class Message:
    who: str
    html: str
    source: str

    @property
    def text(self) -> str:
        return strip_tags(self.html)


@dataclass
class TranscriptView:
    """In-memory view; every stored message is already sanitized."""

    messages: list[Message] = field(default_factory=list)
    typing: bool = False
    live: str | None = None
    stream_updates: int = 0

    def add_message(self, html: str, who: str = "bot", source: str = "unknown") -> None:
        self.messages.append(Message(who=who, html=sanitize_html(html), source=source))

    def start_stream(self) -> None:
        self.typing = False
        self.live = ""

    def update_stream(self, html: str) -> None:
        if self.live is None:
            self.start_stream()
        self.live = sanitize_html(html)
        self.stream_updates += 1

    def finish_stream(self, html: str, source: str = "llm") -> None:
        self.live = None
        self.add_message(html, source=source)

    def show_typing(self) -> None:
        self.typing = True

    def hide_typing(self) -> None:
        self.typing = False

    @property
    def last(self) -> Message | None:
        return self.messages[-1] if self.messages else None
