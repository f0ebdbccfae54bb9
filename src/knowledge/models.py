"""Knowledge item contracts.

Every retrievable unit is one variant of ``KnowledgeItem``, a pydantic
union discriminated on ``type``.  Variants carry only the fields that
apply to them (FAQ entries have ``q``/``a``, projects may have
``media``), so consumers never probe for optional attributes.

Items are frozen: they are built once per session and shared by
passages, search results and context lists, which compare them by
identity.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class Media(BaseModel):
    """Image or video attached to a project."""

    model_config = ConfigDict(frozen=True)

    image: str | None = None
    video: str | None = None
    poster: str | None = None


class _ItemBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str = ""
    content: str = ""
    href: str = ""
    tags: tuple[str, ...] = ()
    # Raw entry the item was built from (document record or scraped node
    # summary).  Informational only.
    source: dict[str, Any] | None = Field(default=None, repr=False)

    @property
    def label(self) -> str:
        """Display title, falling back to the item type."""
        return self.title or self.type  # type: ignore[attr-defined]

    @property
    def text(self) -> str:
        return self.content

    @property
    def is_external(self) -> bool:
        return self.href.startswith("http")

    def mentions(self, needle: str) -> bool:
        """Case-insensitive substring test over title, content and tags."""
        needle = needle.lower()
        return (
            needle in self.title.lower()
            or needle in self.content.lower()
            or needle in " ".join(self.tags).lower()
        )


class SectionItem(_ItemBase):
    type: Literal["section"] = "section"


class ProjectItem(_ItemBase):
    type: Literal["project"] = "project"
    media: Media | None = None


class ContactItem(_ItemBase):
    type: Literal["contact"] = "contact"


class ResumeItem(_ItemBase):
    type: Literal["resume"] = "resume"


class ExperienceItem(_ItemBase):
    type: Literal["experience"] = "experience"


class FaqItem(_ItemBase):
    type: Literal["faq"] = "faq"
    q: str = ""
    a: str = ""

    @property
    def label(self) -> str:
        return self.title or self.q or "FAQ"

    @property
    def text(self) -> str:
        return self.content or self.a


class DomItem(_ItemBase):
    """Auxiliary item scraped from a page section heading + paragraph."""

    type: Literal["dom"] = "dom"


class IntentItem(_ItemBase):
    """Lightweight item synthesized from an intent rule's canned answer."""

    type: Literal["intent"] = "intent"


KnowledgeItem = Annotated[
    Union[
        SectionItem,
        ProjectItem,
        ContactItem,
        ResumeItem,
        ExperienceItem,
        FaqItem,
        DomItem,
        IntentItem,
    ],
    Field(discriminator="type"),
]

ItemType = Literal[
    "section", "project", "contact", "resume", "experience", "faq", "dom", "intent"
]


@dataclass(frozen=True, eq=False)
class Passage:
    """A retrieval-sized slice of one knowledge item.

    Display metadata is read through to ``parent``; the parent itself is
    shared, never copied or mutated.  A plain dataclass (not pydantic) so
    the parent reference is never revalidated into a copy.
    """

    parent: KnowledgeItem
    content: str
    chunk_index: int = 0

    @classmethod
    def whole(cls, item: KnowledgeItem) -> Passage:
        """Wrap a complete item, used when heuristics inject an item directly."""
        return cls(parent=item, content=item.text, chunk_index=0)

    @property
    def type(self) -> str:
        return self.parent.type

    @property
    def title(self) -> str:
        return self.parent.label

    @property
    def href(self) -> str:
        return self.parent.href

    @property
    def tags(self) -> tuple[str, ...]:
        return self.parent.tags

    @property
    def q(self) -> str:
        return self.parent.q if isinstance(self.parent, FaqItem) else ""

    @property
    def a(self) -> str:
        return self.parent.a if isinstance(self.parent, FaqItem) else ""

    @property
    def is_external(self) -> bool:
        return self.parent.is_external
