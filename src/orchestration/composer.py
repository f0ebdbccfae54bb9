"""Local answer composition (no remote model).

``compose_answer`` renders retrieved items as an HTML list, or as
project cards for project-oriented questions.  ``compose_job_fit``
answers hiring/capability questions with a fixed-shape summary built
from skills and matching projects.
"""

from __future__ import annotations

import re

from config import settings
from src.knowledge.models import KnowledgeItem, Passage, ProjectItem
from src.orchestration.models import ASSISTANT_BADGE, ComposedAnswer
from src.rendering.markup import escape_html, strip_tags
from src.retrieval.citations import anchor, render_footer, select_citations
from src.retrieval.models import KnowledgeBase, SearchResult

NO_MATCH_HTML = (
    "I couldn't find an exact match. You can explore: "
    "<a href='#projects'>Projects</a>, <a href='#skills'>Skills</a>, "
    "or ask about the resume or contact."
)

PROJECT_TERMS_RE = re.compile(
    r"(project|projects|build|made|moneyverse|spam|classification|ar-dms|robotic|robotics"
    r"|arm|nurse|face|swapping|recommender|segmentation|historiai|material|estimation)",
    re.I,
)
PROJECT_CARDS_RE = re.compile(r"project|portfolio|work|showcase", re.I)
WANTS_FAQ_RE = re.compile(r"\bfaq\b", re.I)
CONTACT_TERMS = ("contact", "email", "linkedin", "github", "kaggle", "whatsapp", "upwork")

KEYWORD_WEIGHTS = {
    "rag": 5, "llm": 4, "langchain": 4, "chatbot": 3,
    "ai": 2, "ml": 2, "nlp": 3, "computer vision": 3, "cv": 3, "deep learning": 3,
    "tensorflow": 4, "pytorch": 4, "fastapi": 3, "docker": 2, "kubernetes": 2,
}


def wants_faq(query: str) -> bool:
    return bool(WANTS_FAQ_RE.search(query))


def suppress_faq(items: list, query: str) -> list:
    """Drop FAQ entries unless asked for, or unless nothing else is left."""
    if wants_faq(query) or not any(it.type != "faq" for it in items):
        return items
    return [it for it in items if it.type != "faq"]


def asks_resume(query: str) -> bool:
    q = query.lower()
    return "resume" in q or "cv" in q


def asks_contact(query: str) -> bool:
    q = query.lower()
    return any(term in q for term in CONTACT_TERMS)


def project_relevance(item: KnowledgeItem, query: str) -> float:
    """Keyword-overlap score: title hits outrank tag hits outrank content hits."""
    title = item.title.lower()
    content = item.content.lower()
    tags = " ".join(item.tags).lower()
    score = 0.0
    for term in query.lower().split():
        in_title, in_content, in_tags = term in title, term in content, term in tags
        score += 3 * in_title + 1 * in_content + 2 * in_tags
        weight = KEYWORD_WEIGHTS.get(term)
        if weight:
            score += weight * in_title + weight * 0.5 * in_content + weight * 0.8 * in_tags
    return score


def contact_line(contact: KnowledgeItem) -> str:
    return f"<a href='#contact'>Contact section</a> — {escape_html(contact.content)}"


def media_block(project: ProjectItem) -> str:
    media = project.media
    if media is None:
        return ""
    if media.image:
        alt = escape_html(project.title or "project image")
        return f"<p><img src='{escape_html(media.image)}' alt='{alt}' style='max-width:100%;border-radius:8px;'></p>"
    if media.video:
        poster = f" poster='{escape_html(media.poster)}'" if media.poster else ""
        return (
            f"<p><video controls{poster} style='max-width:100%;border-radius:8px;'>"
            f"<source src='{escape_html(media.video)}' type='video/mp4'></video></p>"
        )
    return ""


def _project_cards(projects: list[ProjectItem], query: str) -> str:
    ranked = sorted(projects, key=lambda p: project_relevance(p, query), reverse=True)
    cards = []
    for project in ranked[: settings.project_card_limit]:
        link = (
            f"<a href='{escape_html(project.href)}' target='_blank' rel='noopener' "
            f"class='project-link'>View Project →</a>"
            if project.href
            else ""
        )
        cards.append(
            "<div class='project-card'>"
            f"<h4>{escape_html(project.title or 'Project')}</h4>"
            f"<p>{escape_html(project.content or 'No description available')}</p>"
            f"{link}</div>"
        )
    return (
        "<div class='projects-container'><p>Here are some relevant projects:</p>"
        + "".join(cards)
        + "</div>"
    )


def _project_first(query: str, results: list[SearchResult]) -> list[SearchResult]:
    if results[0].item.type == "project" or not PROJECT_TERMS_RE.search(query):
        return results
    index = next((i for i, r in enumerate(results) if r.item.type == "project"), None)
    if index is None:
        return results
    return [results[index], *results[:index], *results[index + 1:]]


def _list_entry(passage: Passage) -> tuple[str, str]:
    title = escape_html(passage.title)
    raw = passage.content or passage.a
    snippet = raw if "http" in raw else raw[: settings.snippet_length]
    safe = escape_html(snippet)
    if passage.href:
        return title, f"<li>{anchor(passage.href, title)} — {safe}</li>"
    return title, f"<li>{title} — {safe}</li>"


def compose_answer(query: str, results: list[SearchResult], kb: KnowledgeBase) -> str:
    if not results:
        return NO_MATCH_HTML

    results = _project_first(query, results)
    passages = suppress_faq([r.item for r in results[: settings.context_items_limit]], query)

    prefix: list[str] = []
    skip_types: set[str] = set()
    contact = kb.first_of_type("contact") if asks_contact(query) else None
    if contact is not None:
        prefix.append(f"<li>{contact_line(contact)}</li>")
        skip_types.add("contact")
    resume = kb.first_of_type("resume") if asks_resume(query) else None
    if resume is not None:
        prefix.append(f"<li><a href='{resume.href}' download>Download resume</a></li>")
        skip_types.add("resume")

    if PROJECT_CARDS_RE.search(query):
        projects: list[ProjectItem] = []
        for p in passages:
            if isinstance(p.parent, ProjectItem) and not any(p.parent is seen for seen in projects):
                projects.append(p.parent)
        if projects:
            lead = f"<ul>{''.join(prefix)}</ul>" if prefix else ""
            return lead + _project_cards(projects, query)

    lines: list[str] = []
    seen: set[tuple[str, str]] = set()
    for passage in passages:
        if passage.type in skip_types:
            continue
        title, line = _list_entry(passage)
        key = (title, line)
        if key in seen:
            continue
        seen.add(key)
        lines.append(line)

    top_project = next((p.parent for p in passages if isinstance(p.parent, ProjectItem)), None)
    media = media_block(top_project) if top_project is not None else ""
    return f"{media}<ul>{''.join(prefix + lines)}</ul>"


# ── Job fit ───────────────────────────────────────────────────

JOB_QUERY_RE = re.compile(
    r"(job|hiring|role|position|opening|vacancy|we\s+need|can\s+she\s+do|can\s+you\s+do)", re.I
)

# (query pattern, project text pattern, capability bullet)
CAPABILITY_BUCKETS = (
    (
        re.compile(r"(audio|speech|asr|stt|tts|whisper|microphone|voice)", re.I),
        re.compile(r"(whisper|audio|voice|speech|asr|tts)", re.I),
        "Audio/Speech: Whisper, TTS, ASR (from Skills)",
    ),
    (
        re.compile(r"(nlp|language|text|rag|llm)", re.I),
        re.compile(r"(rag|langchain|llm|gpt|sbert|nlp)", re.I),
        "NLP/LLM: RAG, LangChain, GPT/LLaMA, SBERT",
    ),
    (
        re.compile(r"(vision|opencv|image|segmentation|cnn)", re.I),
        re.compile(r"(opencv|segmentation|cnn|image|face)", re.I),
        "Computer Vision: OpenCV, CNNs, Segmentation",
    ),
    (
        re.compile(r"(api|backend|fastapi|docker)", re.I),
        re.compile(r"(fastapi|docker|websocket|api)", re.I),
        "Backend & APIs: FastAPI, Docker, WebSockets",
    ),
)


def is_job_fit_query(query: str) -> bool:
    return bool(JOB_QUERY_RE.search(query))


def compose_job_fit(query: str, kb: KnowledgeBase) -> ComposedAnswer:
    wanted = [bucket for bucket in CAPABILITY_BUCKETS if bucket[0].search(query)]
    wants_audio = bool(wanted) and wanted[0] is CAPABILITY_BUCKETS[0]

    projects = [
        p for p in kb.projects()
        if any(text_re.search(f"{p.title} {p.content}") for _, text_re, _ in wanted)
    ][:3]
    if not projects:
        projects = kb.projects()[:2]

    skills = kb.find(lambda item: item.mentions("skills"))
    contact = kb.first_of_type("contact")

    owner = settings.owner_name
    intro = (
        f"Based on the audio-focused role, here is how {owner} matches and relevant work:"
        if wants_audio
        else f"Here is how {owner} matches this role and related work:"
    )

    parts = [ASSISTANT_BADGE, f"<p>{escape_html(intro)}</p>"]
    if wanted:
        parts.append("<ul>" + "".join(f"<li>{escape_html(b)}</li>" for _, _, b in wanted) + "</ul>")
    if projects:
        entries = []
        for p in projects:
            title = escape_html(p.title or "Project")
            entries.append(f"<li>{anchor(p.href, title)}</li>" if p.href else f"<li>{title}</li>")
        parts.append("<p><strong>Relevant projects:</strong></p><ul>" + "".join(entries) + "</ul>")
    if contact is not None:
        parts.append(f"<p>{contact_line(contact)}</p>")

    evidence: list[KnowledgeItem] = [skills] if skills is not None else []
    evidence.extend(projects)
    parts.append(render_footer(select_citations(evidence, prioritize_non_faq=False)))

    html = "".join(parts)
    return ComposedAnswer(html=html, plain_text=strip_tags(html))
