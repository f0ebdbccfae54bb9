from __future__ import annotations

from pydantic import BaseModel

from config import settings
from src.knowledge.models import KnowledgeItem
from src.rendering.markup import escape_html


class Citation(BaseModel):
    """One numbered entry of a Sources footer."""

    n: int
    title: str
    href: str = ""


def link_target(href: str) -> str:
    return "_blank" if href.startswith("http") else "_self"


def anchor(href: str, inner_html: str) -> str:
    return f"<a href='{href}' target='{link_target(href)}' rel='noopener'>{inner_html}</a>"


def select_citations(
    items: list[KnowledgeItem],
    limit: int | None = None,
    *,
    prioritize_non_faq: bool = True,
) -> list[Citation]:
    """Number up to ``limit`` items, deduplicated by title and href."""
    limit = settings.citation_limit if limit is None else limit
    if prioritize_non_faq:
        items = [it for it in items if it.type != "faq"] + [it for it in items if it.type == "faq"]

    seen: set[tuple[str, str]] = set()
    unique: list[KnowledgeItem] = []
    for item in items:
        key = (item.label, item.href)
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)

    return [
        Citation(n=i, title=item.label or "Item", href=item.href)
        for i, item in enumerate(unique[:limit], start=1)
    ]


def render_footer(citations: list[Citation]) -> str:
    """``<br><small>Sources: [1] … · [2] …</small>``, empty when no citations."""
    if not citations:
        return ""
    parts = []
    for c in citations:
        label = f"[{c.n}] {escape_html(c.title)}"
        parts.append(anchor(c.href, label) if c.href else label)
    return "<br><small>Sources: " + " · ".join(parts) + "</small>"


def citation_footer(items: list[KnowledgeItem], limit: int | None = None) -> str:
    return render_footer(select_citations(items, limit))
