"""Knowledge document / page → uniform ``KnowledgeItem`` list.

Two interchangeable sources implement the same ``load()`` contract:

  ``DocumentSource``: the structured knowledge document (about, skills,
      projects, contact, resume, experience, certifications, faq), plus
      one auxiliary item per page section that exposes a heading and a
      paragraph.
  ``PageSource``: degraded extraction straight from the site's page
      markup when the document is unavailable.

The pipeline downstream never knows which one produced its items.

Malformed records are treated as absent: each record is validated on
its own, so one bad project does not drop the rest of the document.
Inside a record, a wrongly typed value is treated as absent and the
record still produces an item.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol
from urllib.parse import quote

from bs4 import BeautifulSoup
from bs4.element import Tag
from pydantic import BaseModel, ValidationError, field_validator

from config import settings
from src.knowledge.models import (
    ContactItem,
    DomItem,
    FaqItem,
    KnowledgeItem,
    Media,
    ProjectItem,
    ResumeItem,
    SectionItem,
)

logger = logging.getLogger(__name__)

CONTACT_TAGS = (
    "contact", "email", "linkedin", "github", "kaggle", "whatsapp", "upwork", "location",
)

# (document key, label) in rendering order.
_CONTACT_FIELDS = (
    ("email", "Email"),
    ("linkedin", "LinkedIn"),
    ("github", "GitHub"),
    ("kaggle", "Kaggle"),
    ("whatsapp", "WhatsApp"),
    ("upwork", "Upwork"),
)


# Reserved characters left intact when URL-encoding a resume file name,
# matching browser ``encodeURI`` behaviour.
_URI_SAFE = ";,/?:@&=+$-_.!~*'()#"


class KnowledgeSource(Protocol):
    def load(self) -> list[KnowledgeItem]: ...


# ── Document record shapes ────────────────────────────────────


def _text_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]


class _SectionRecord(BaseModel):
    title: str | None = None
    content: str | None = None
    section: str | None = None
    tags: list[str] = []

    @field_validator("title", "content", "section", mode="before")
    @classmethod
    def _strings_only(cls, value: Any) -> str | None:
        return _text_or_none(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _tag_list(cls, value: Any) -> list[str]:
        return _string_list(value)


class _ProjectRecord(BaseModel):
    title: str = ""
    content: str | None = None
    url: str | None = None
    tags: list[str] = []
    media: Media | None = None

    @field_validator("title", mode="before")
    @classmethod
    def _title_or_blank(cls, value: Any) -> str:
        return _text_or_none(value) or ""

    @field_validator("content", "url", mode="before")
    @classmethod
    def _strings_only(cls, value: Any) -> str | None:
        return _text_or_none(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _tag_list(cls, value: Any) -> list[str]:
        return _string_list(value)

    @field_validator("media", mode="before")
    @classmethod
    def _media_urls(cls, value: Any) -> dict[str, str] | None:
        if isinstance(value, Media):
            return value.model_dump(exclude_none=True)
        if not isinstance(value, dict):
            return None
        urls = {key: v for key, v in value.items() if isinstance(v, str)}
        return urls or None


class _ContactRecord(BaseModel):
    email: str | None = None
    linkedin: str | None = None
    github: str | None = None
    kaggle: str | None = None
    whatsapp: str | None = None
    upwork: str | None = None

    @field_validator("*", mode="before")
    @classmethod
    def _strings_only(cls, value: Any) -> str | None:
        return _text_or_none(value)


class _ResumeRecord(BaseModel):
    file: str | None = None
    note: str | None = None

    @field_validator("*", mode="before")
    @classmethod
    def _strings_only(cls, value: Any) -> str | None:
        return _text_or_none(value)


class _FaqRecord(BaseModel):
    q: str
    a: str


def _parse(model: type[BaseModel], raw: Any, key: str) -> Any:
    """Validate one record; malformed records are logged and skipped."""
    if raw is None:
        return None
    if not isinstance(raw, dict):
        logger.warning("knowledge: ignoring %s (expected an object, got %s)", key, type(raw).__name__)
        return None
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        logger.warning("knowledge: ignoring malformed %s: %s", key, exc.errors()[0]["msg"])
        return None


# ── Document source ───────────────────────────────────────────


def normalize_document(
    doc: dict[str, Any],
    *,
    page_html: str | None = None,
) -> list[KnowledgeItem]:
    """Convert a knowledge document into an ordered item list.

    Item order: about, skills, projects, contact, resume, experience,
    certifications, faq, then page sections.
    """
    if not isinstance(doc, dict):
        logger.warning("knowledge: document is not an object, ignoring it")
        doc = {}

    items: list[KnowledgeItem] = []

    about = _parse(_SectionRecord, doc.get("about"), "about")
    if about is not None:
        items.append(_section(about, "About", "#about", raw=doc["about"]))

    skills = _parse(_SectionRecord, doc.get("skills"), "skills")
    if skills is not None:
        items.append(_section(skills, "Skills", "#skills", raw=doc["skills"]))

    projects = doc.get("projects")
    if isinstance(projects, list):
        for i, raw in enumerate(projects):
            project = _parse(_ProjectRecord, raw, f"projects[{i}]")
            if project is None:
                continue
            items.append(
                ProjectItem(
                    title=project.title,
                    content=project.content or "",
                    href=project.url or "",
                    tags=tuple(project.tags),
                    media=project.media,
                    source=raw,
                )
            )

    contact = _parse(_ContactRecord, doc.get("contact"), "contact")
    if contact is not None:
        parts = [
            f"{label}: {value}"
            for key, label in _CONTACT_FIELDS
            if (value := getattr(contact, key))
        ]
        items.append(
            ContactItem(
                title="Contact",
                content=". ".join(parts) + ".",
                href="#contact",
                tags=CONTACT_TAGS,
                source=doc["contact"],
            )
        )

    resume = _parse(_ResumeRecord, doc.get("resume"), "resume")
    if resume is not None:
        file_name = resume.file or settings.resume_default_file
        items.append(
            ResumeItem(
                title="Resume",
                content=resume.note or "Download my resume.",
                href=quote(file_name, safe=_URI_SAFE),
                tags=("resume", "cv", "download"),
                source=doc["resume"],
            )
        )

    experience = _parse(_SectionRecord, doc.get("experience"), "experience")
    if experience is not None:
        items.append(
            _section(
                experience, "Experience", "#experience",
                raw=doc["experience"], extra_tags=("experience",),
            )
        )

    certifications = _parse(_SectionRecord, doc.get("certifications"), "certifications")
    if certifications is not None:
        items.append(
            _section(
                certifications, "Certifications", "#achievements",
                raw=doc["certifications"], extra_tags=("certifications",),
            )
        )

    faq = doc.get("faq")
    if isinstance(faq, list):
        for i, raw in enumerate(faq):
            entry = _parse(_FaqRecord, raw, f"faq[{i}]")
            if entry is None:
                continue
            items.append(
                FaqItem(
                    title="FAQ",
                    q=entry.q,
                    a=entry.a,
                    content=f"{entry.q} {entry.a}",
                    tags=("faq",),
                    source=raw,
                )
            )

    if page_html:
        items.extend(page_sections(page_html))

    return items


def _section(
    record: _SectionRecord,
    default_title: str,
    default_href: str,
    *,
    raw: dict[str, Any],
    extra_tags: tuple[str, ...] = (),
) -> SectionItem:
    return SectionItem(
        title=record.title or default_title,
        content=record.content or "",
        href=record.section or default_href,
        tags=tuple(record.tags) + extra_tags,
        source=raw,
    )


def page_sections(page_html: str) -> list[DomItem]:
    """One auxiliary item per ``<section>`` exposing an ``<h2>`` and a ``<p>``."""
    soup = _soup(page_html)
    out: list[DomItem] = []
    for sec in soup.find_all("section"):
        heading = sec.find("h2")
        para = sec.find("p")
        if heading is None or para is None:
            continue
        out.append(
            DomItem(
                title=heading.get_text(strip=True),
                content=para.get_text(" ", strip=True),
                href="#" + str(sec.get("id") or ""),
                tags=("section",),
            )
        )
    return out


class DocumentSource:
    """Items from a parsed knowledge document (plus page sections)."""

    def __init__(self, doc: dict[str, Any], *, page_html: str | None = None) -> None:
        self._doc = doc
        self._page_html = page_html

    def load(self) -> list[KnowledgeItem]:
        return normalize_document(self._doc, page_html=self._page_html)


# ── Page source (degraded mode) ───────────────────────────────


class PageSource:
    """Items extracted from known page structures.

    Used when the knowledge document cannot be loaded.  Extracts about,
    skills, projects, contact and resume; anything missing is skipped.
    """

    def __init__(self, page_html: str) -> None:
        self._page_html = page_html

    def load(self) -> list[KnowledgeItem]:
        if not self._page_html:
            return []
        soup = _soup(self._page_html)
        items: list[KnowledgeItem] = []

        about = soup.select_one("#about")
        if about is not None:
            heading = about.select_one("h1, h2")
            paras = " ".join(p.get_text(" ", strip=True) for p in about.find_all("p"))
            items.append(
                SectionItem(
                    title=heading.get_text(strip=True) if heading else "About",
                    content=paras,
                    href="#about",
                    tags=("about",),
                )
            )

        skills = soup.select_one("#skills")
        if skills is not None:
            names = ", ".join(s.get_text(strip=True) for s in skills.select(".skills-cloud span"))
            items.append(SectionItem(title="Skills", content=names, href="#skills", tags=("skills",)))

        for node in soup.select(".project-gallery .project-item"):
            anchor = node.find("a")
            title = node.find("h3")
            if anchor is None or title is None:
                continue
            items.append(
                ProjectItem(
                    title=title.get_text(strip=True),
                    content=" ".join(p.get_text(" ", strip=True) for p in node.find_all("p")),
                    href=str(anchor.get("href") or ""),
                    tags=("project",),
                )
            )

        contact = soup.select_one("#contact")
        if contact is not None:
            items.append(_scraped_contact(contact))

        resume_href = _scraped_resume_href(soup)
        if resume_href:
            items.append(
                ResumeItem(
                    title="Resume",
                    content="Download my resume.",
                    href=resume_href,
                    tags=("resume",),
                )
            )

        return items


def _scraped_contact(contact: Tag) -> ContactItem:
    def _href(selector: str) -> str:
        node = contact.select_one(selector)
        return str(node.get("href") or "") if node is not None else ""

    email = _href('a[href^="mailto:"]').removeprefix("mailto:")
    linkedin = _href('a[href*="linkedin.com"]')
    github = _href('a[href*="github.com"]')
    upwork = _href('a[href*="upwork.com"]')
    text = f"Email: {email}. LinkedIn: {linkedin}. GitHub: {github}. Upwork: {upwork}."
    return ContactItem(title="Contact", content=text, href="#contact", tags=("contact",))


def _scraped_resume_href(soup: BeautifulSoup) -> str:
    anchors = soup.find_all("a")
    for a in anchors:
        if "resume" in a.get_text().lower():
            return str(a.get("href") or "")
    for a in anchors:
        href = str(a.get("href") or "")
        if href.lower().endswith(".pdf"):
            return href
    return ""


def _soup(html: str) -> BeautifulSoup:
    try:
        return BeautifulSoup(html, "lxml")
    except Exception:
        return BeautifulSoup(html, "html.parser")
