"""Intent arbitration: heuristic adjustments applied after lexical search.

Pipeline (each stage sees the previous stage's output)::

    keyword_rules            weak top result → replace with items carrying a keyword tag
    external_intents         weak top result → prepend the first matching intent rule's item
    project_name_fragments   weak top result → prepend projects named in the query
    project_first_bias       project mentioned → move that project to the front
    ensure_priority_sections resume/contact/skills/achievements asked → ensure item present

Every stage is a pure function ``(query, results, kb) -> results``.
Prepended items are deduplicated by the identity of their parent item
and the list is capped at ``ARBITRATION_RESULT_LIMIT``.
"""

from __future__ import annotations

import logging
import re
from typing import Callable

from config import settings
from src.knowledge.models import IntentItem, KnowledgeItem, Passage
from src.retrieval.models import IntentRule, KnowledgeBase, SearchResult

logger = logging.getLogger(__name__)

Stage = Callable[[str, list[SearchResult], KnowledgeBase], list[SearchResult]]

# Ordered: the first matching rule wins.
KEYWORD_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(trading|moneyverse)\b"), "trading"),
    (re.compile(r"\b(rag|retrieval|knowledge base)\b"), "rag"),
    (re.compile(r"\b(resume|cv)\b"), "resume"),
    (re.compile(r"\b(contact|email|linkedin|github|kaggle|whatsapp|upwork)\b"), "contact"),
    (re.compile(r"\b(skill|skills|stack|technology|technologies|tools)\b"), "skills"),
    (re.compile(r"\b(project|projects|work)\b"), "projects"),
    (re.compile(r"\b(about|intro|introduction|bio)\b"), "about"),
    (re.compile(r"\b(experience|work\s+experience|exp)\b"), "experience"),
    (re.compile(r"\b(achievement|achievements|awards|recognition)\b"), "achievements"),
)

PROJECT_FRAGMENTS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\bhistori(ai)?\b"), "histori"),
    (re.compile(r"\bfood\s+classification\b"), "food classification"),
    (re.compile(r"\bar[-\s]?dms\b"), "ar-dms"),
    (re.compile(r"\bspam\b"), "spam"),
)

PROJECT_MENTION_RE = re.compile(
    r"\b(ar[-\s]?dms|moneyverse|trading|historiai|material|robotic\s+arm|robotic\s+nurse"
    r"|face\s*swap|linkedin|rewriting|recommendation|segmentation|spam|food|movie)\b",
    re.I,
)
_PROJECT_TITLE_MARKERS = (
    "ar-dms", "moneyverse", "histori", "material", "robotic", "face",
    "rewriting", "recommendation", "segmentation", "spam",
)
_PROJECT_CONTENT_MARKERS = ("ar-dms", "moneyverse", "histori", "material")

RESUME_RE = re.compile(r"\b(resume|cv)\b", re.I)
CONTACT_RE = re.compile(r"\b(contact|email|linkedin|github|kaggle|whatsapp|upwork)\b", re.I)
SKILLS_RE = re.compile(r"\b(skill|skills|stack|technology|technologies|tools)\b", re.I)
ACHIEVEMENTS_RE = re.compile(r"\b(award|awards|achievement|achievements|recognition)\b", re.I)


# ── Helpers ───────────────────────────────────────────────────


def is_weak(results: list[SearchResult], cutoff: float) -> bool:
    return not results or results[0].score > cutoff


def prepend(
    injected: list[SearchResult],
    results: list[SearchResult],
    limit: int | None = None,
) -> list[SearchResult]:
    """Put ``injected`` first, dropping later entries that share a parent item."""
    limit = settings.arbitration_result_limit if limit is None else limit
    out: list[SearchResult] = []
    parents: list[KnowledgeItem] = []
    for result in [*injected, *results]:
        parent = result.item.parent
        if any(parent is seen for seen in parents):
            continue
        parents.append(parent)
        out.append(result)
    return out[:limit]


def _inject(item: KnowledgeItem, score: float = 0.0) -> SearchResult:
    return SearchResult(item=Passage.whole(item), score=score)


# ── Stages ────────────────────────────────────────────────────


def keyword_rules(query: str, results: list[SearchResult], kb: KnowledgeBase) -> list[SearchResult]:
    if not is_weak(results, settings.weak_result_cutoff):
        return results
    lowered = query.lower()
    tag = next((tag for pattern, tag in KEYWORD_RULES if pattern.search(lowered)), None)
    if tag is None:
        return results
    matched = [item for item in kb.items if item.mentions(tag)]
    if not matched:
        return results
    logger.debug("arbitration: keyword rule %r selected %d item(s)", tag, len(matched))
    return [_inject(item, settings.keyword_rule_score) for item in matched]


def resolve_intent(rule: IntentRule, kb: KnowledgeBase) -> KnowledgeItem:
    """Map an intent rule onto an existing item, else synthesize one from its answer."""
    if rule.href:
        href = rule.href.lower()
        found = kb.find(lambda item: item.href.lower() == href)
        if found is not None:
            return found
    if rule.name:
        name = rule.name.lower()
        found = kb.find(lambda item: name in item.title.lower())
        if found is not None:
            return found
    return IntentItem(
        title=rule.name or "Answer",
        content=rule.answer,
        href=rule.href,
        tags=(*rule.tags, "intent"),
    )


def external_intents(query: str, results: list[SearchResult], kb: KnowledgeBase) -> list[SearchResult]:
    if not kb.intents or not is_weak(results, settings.intent_rule_cutoff):
        return results
    rule = next((r for r in kb.intents if r.matches(query)), None)
    if rule is None:
        return results
    item = resolve_intent(rule, kb)
    logger.debug("arbitration: intent %r resolved to %s item %r", rule.name, item.type, item.label)
    return prepend([_inject(item)], results)


def project_name_fragments(query: str, results: list[SearchResult], kb: KnowledgeBase) -> list[SearchResult]:
    if not is_weak(results, settings.weak_result_cutoff):
        return results
    lowered = query.lower()
    picks: list[SearchResult] = []
    for pattern, fragment in PROJECT_FRAGMENTS:
        if not pattern.search(lowered):
            continue
        project = next(
            (p for p in kb.projects()
             if fragment in p.title.lower() or fragment in p.content.lower()),
            None,
        )
        if project is not None:
            picks.append(_inject(project))
    if not picks:
        return results
    logger.debug("arbitration: project fragments injected %d project(s)", len(picks))
    return prepend(picks, results)


def _is_indicated_project(item: KnowledgeItem) -> bool:
    if item.type != "project":
        return False
    title = item.title.lower()
    content = item.content.lower()
    return any(m in title for m in _PROJECT_TITLE_MARKERS) or any(
        m in content for m in _PROJECT_CONTENT_MARKERS
    )


def project_first_bias(query: str, results: list[SearchResult], kb: KnowledgeBase) -> list[SearchResult]:
    if not results or not PROJECT_MENTION_RE.search(query):
        return results
    pick = next((r for r in results if _is_indicated_project(r.item.parent)), None)
    if pick is None:
        return results
    rest = [r for r in results if r is not pick]
    return prepend([SearchResult(item=pick.item, score=0.0)], rest)


def _is_skills(item: KnowledgeItem) -> bool:
    return item.title.lower() == "skills" or item.href == "#skills"


def _is_achievements(item: KnowledgeItem) -> bool:
    return item.title.lower() == "achievements" or item.href == "#achievements"


# (query pattern, item predicate); later groups end up nearer the front.
PRIORITY_SECTIONS: tuple[tuple[re.Pattern[str], Callable[[KnowledgeItem], bool]], ...] = (
    (RESUME_RE, lambda item: item.type == "resume"),
    (CONTACT_RE, lambda item: item.type == "contact"),
    (SKILLS_RE, _is_skills),
    (ACHIEVEMENTS_RE, _is_achievements),
)


def ensure_priority_sections(query: str, results: list[SearchResult], kb: KnowledgeBase) -> list[SearchResult]:
    for pattern, predicate in PRIORITY_SECTIONS:
        if not pattern.search(query):
            continue
        found = kb.find(predicate)
        if found is None:
            continue
        if any(r.item.parent is found for r in results):
            continue
        results = prepend([_inject(found)], results)
    return results


ARBITRATION_STAGES: tuple[Stage, ...] = (
    keyword_rules,
    external_intents,
    project_name_fragments,
    project_first_bias,
    ensure_priority_sections,
)


def arbitrate(
    query: str,
    results: list[SearchResult],
    kb: KnowledgeBase,
    stages: tuple[Stage, ...] = ARBITRATION_STAGES,
) -> list[SearchResult]:
    for stage in stages:
        results = stage(query, results, kb)
    return results
