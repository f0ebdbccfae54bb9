"""Knowledge loading: document first, page scrape as the degraded fallback.

    load_knowledge()
      ├─ read_knowledge_document()   → DocumentSource (+ page sections)
      │     KnowledgeUnavailable ──→ PageSource            (degraded)
      ├─ load_intents()              non-fatal, [] on any problem
      └─ build_knowledge_base()      passages + lexical index

If neither source yields an item, the returned base has no index and
``is_ready`` is False; callers surface the local-mode notice.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from config import settings
from src.indexing.lexical import LexicalIndex
from src.indexing.passages import build_passages
from src.knowledge.models import KnowledgeItem
from src.knowledge.normalizer import DocumentSource, KnowledgeSource, PageSource
from src.retrieval.models import IntentRule, KnowledgeBase

logger = logging.getLogger(__name__)


class KnowledgeUnavailable(Exception):
    """The knowledge document is missing or unreadable."""


def read_knowledge_document(path: str | Path) -> dict[str, Any]:
    """Parse the knowledge document, raising ``KnowledgeUnavailable`` on failure."""
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise KnowledgeUnavailable(f"cannot read {path}: {exc}") from exc
    try:
        doc = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise KnowledgeUnavailable(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(doc, dict):
        raise KnowledgeUnavailable(f"{path} must contain a JSON object")
    return doc


def load_intents(path: str | Path | None) -> list[IntentRule]:
    """Read the optional intents document; absent or malformed means none."""
    if not path:
        return []
    path = Path(path)
    if not path.is_file():
        return []
    try:
        entries = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("intents: ignoring %s (%s)", path, exc)
        return []
    if not isinstance(entries, list):
        logger.warning("intents: ignoring %s (expected a JSON array)", path)
        return []

    rules: list[IntentRule] = []
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            continue
        try:
            rules.append(IntentRule.model_validate(entry))
        except ValidationError as exc:
            logger.warning("intents: skipping entry %d: %s", i, exc.errors()[0]["msg"])
    return rules


def read_page(path: str | Path | None) -> str | None:
    if not path:
        return None
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError:
        return None


def build_knowledge_base(
    items: list[KnowledgeItem],
    *,
    intents: list[IntentRule] | None = None,
    degraded: bool = False,
) -> KnowledgeBase:
    if not items:
        return KnowledgeBase(intents=tuple(intents or ()), degraded=degraded)
    passages = build_passages(items)
    return KnowledgeBase(
        items=tuple(items),
        passages=tuple(passages),
        index=LexicalIndex(passages),
        intents=tuple(intents or ()),
        degraded=degraded,
    )


def load_knowledge(
    knowledge_path: str | Path | None = None,
    *,
    page_html: str | None = None,
    intents_path: str | Path | None = None,
) -> KnowledgeBase:
    knowledge_path = knowledge_path or settings.knowledge_path
    if page_html is None:
        page_html = read_page(settings.site_index_path)
    if intents_path is None:
        intents_path = settings.intents_path

    source: KnowledgeSource
    degraded = False
    try:
        document = read_knowledge_document(knowledge_path)
        source = DocumentSource(document, page_html=page_html)
    except KnowledgeUnavailable as exc:
        logger.warning("knowledge document unavailable, falling back to page content: %s", exc)
        source = PageSource(page_html or "")
        degraded = True

    items = source.load()
    intents = load_intents(intents_path) if not degraded else []
    kb = build_knowledge_base(items, intents=intents, degraded=degraded)
    if kb.is_ready:
        logger.info(
            "knowledge loaded: items=%d passages=%d intents=%d degraded=%s",
            len(kb.items), len(kb.passages), len(kb.intents), degraded,
        )
    else:
        logger.warning("no knowledge could be indexed; running in local mode")
    return kb
