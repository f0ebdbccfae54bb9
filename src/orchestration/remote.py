"""Remote answer orchestration against the chat proxy endpoint.

Flow for one query::

    context items (≤ 6, FAQ suppressed) + last turns
      → POST {endpoint}?stream=1   Accept: text/event-stream
          ├─ event stream: "data: <json string>" fragments until [DONE],
          │    buffer pushed to ``on_update`` as it grows
          └─ JSON body: {"answer": ..., "citations": [...]}, deny guard
      → finalize: canonical profile URLs, markup repair,
        resume/contact prefixes, badge, Sources footer

Every failure (transport error, non-2xx, undecodable body, empty or
knowledge-denying answer) returns ``RemoteAnswer(ok=False)`` so the
session can fall back to the local composer.  Nothing here raises to
the caller for network reasons.
"""

from __future__ import annotations

import inspect
import json
import logging
import re
from typing import Any, Awaitable, Callable

import httpx

from config import settings
from src.knowledge.models import FaqItem, KnowledgeItem
from src.orchestration.composer import PROJECT_TERMS_RE, contact_line, suppress_faq
from src.orchestration.intents import CONTACT_RE, RESUME_RE
from src.orchestration.models import ASSISTANT_BADGE, RemoteAnswer
from src.rendering.markup import canonicalize_profile_urls, sanitize_html, strip_tags, validate_markup
from src.retrieval.citations import citation_footer
from src.retrieval.models import ConversationTurn, KnowledgeBase, SearchResult

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[str], Awaitable[None] | None]

_STREAM_CONTENT_TYPE_RE = re.compile(r"text/(event-stream|plain)", re.I)
DENIES_KNOWLEDGE_RE = re.compile(r"not\s+mentioned|no\s+(?:project|details)\s+(?:mentioned|found)", re.I)
HAS_CONTACT_RE = re.compile(r"linkedin\.com|github\.com|kaggle\.com|wa\.me|upwork\.com|#contact|mailto:", re.I)
DONE_MARKER = "[DONE]"


class RemoteFailure(Exception):
    """Internal signal that the remote attempt must fall back."""


def context_items(query: str, results: list[SearchResult]) -> list[KnowledgeItem]:
    """Distinct parent items of the top results, FAQ entries suppressed."""
    items: list[KnowledgeItem] = []
    for result in results:
        parent = result.item.parent
        if any(parent is seen for seen in items):
            continue
        items.append(parent)
        if len(items) >= settings.context_items_limit:
            break
    return suppress_faq(items, query)


def context_payload(item: KnowledgeItem) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "type": item.type,
        "title": item.label,
        "href": item.href,
        "content": item.text,
    }
    if isinstance(item, FaqItem):
        payload["q"] = item.q
        payload["a"] = item.a
    return payload


def denies_knowledge(query: str, body: str, items: list[KnowledgeItem]) -> bool:
    """True when a project question with project context got a "no info" answer."""
    return (
        bool(PROJECT_TERMS_RE.search(query))
        and any(item.type == "project" for item in items)
        and bool(DENIES_KNOWLEDGE_RE.search(body))
    )


def finalize_answer(
    query: str,
    body: str,
    items: list[KnowledgeItem],
    kb: KnowledgeBase,
) -> tuple[str, str]:
    """Post-process a complete model answer into (html, plain_text)."""
    contact = kb.first_of_type("contact")
    if contact is not None:
        body = canonicalize_profile_urls(body, contact.content)
    body = validate_markup(body).html

    prefix = ""
    resume = kb.first_of_type("resume")
    if RESUME_RE.search(query) and resume is not None and resume.href and resume.href not in body:
        prefix += f"<p><a href='{resume.href}' download>Download resume (PDF)</a></p>"
    if CONTACT_RE.search(query) and contact is not None and not HAS_CONTACT_RE.search(body):
        prefix += f"<p>{contact_line(contact)}</p>"

    html = f"{ASSISTANT_BADGE}{prefix}{body}{citation_footer(items)}"
    return html, strip_tags(html)


class RemoteAnswerOrchestrator:
    """Talks to the chat proxy; owns its HTTP client unless one is injected."""

    def __init__(
        self,
        endpoint_url: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        self._endpoint_url = endpoint_url or settings.chat_endpoint_url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.chat_request_timeout
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def answer(
        self,
        query: str,
        results: list[SearchResult],
        kb: KnowledgeBase,
        history: list[ConversationTurn],
        *,
        on_update: UpdateCallback | None = None,
    ) -> RemoteAnswer:
        items = context_items(query, results)
        window = history[-settings.history_window:] if settings.history_window else []
        payload = {
            "query": query,
            "contextItems": [context_payload(it) for it in items],
            "history": [turn.model_dump() for turn in window],
        }
        logger.info(
            "remote answer: context_items=%d history=%d", len(items), len(window)
        )

        try:
            async with self._client.stream(
                "POST",
                self._endpoint_url,
                params={"stream": "1"},
                json=payload,
                headers={"Accept": "text/event-stream"},
            ) as response:
                if not response.is_success:
                    detail = (await response.aread()).decode("utf-8", "replace")[:300]
                    raise RemoteFailure(f"status {response.status_code}: {detail}")

                content_type = response.headers.get("content-type", "")
                if _STREAM_CONTENT_TYPE_RE.search(content_type):
                    body = await self._read_stream(response, on_update)
                    streamed = True
                else:
                    body = await self._read_json(response)
                    streamed = False
        except RemoteFailure as exc:
            logger.warning("remote answer failed, using local fallback: %s", exc)
            return RemoteAnswer(ok=False, failure=str(exc))
        except (httpx.HTTPError, httpx.StreamError, httpx.InvalidURL) as exc:
            logger.warning("remote answer failed, using local fallback: %s", exc)
            return RemoteAnswer(ok=False, failure=type(exc).__name__)

        if not body.strip():
            logger.warning("remote answer was empty, using local fallback")
            return RemoteAnswer(ok=False, failure="empty answer")
        if not streamed and denies_knowledge(query, body, items):
            logger.warning("remote answer denied supplied project context, using local fallback")
            return RemoteAnswer(ok=False, failure="denied knowledge")

        html, plain = finalize_answer(query, body, items, kb)
        return RemoteAnswer(ok=True, html=html, plain_text=plain, streamed=streamed)

    @staticmethod
    async def _read_stream(response: httpx.Response, on_update: UpdateCallback | None) -> str:
        body = ""
        fragments = 0
        async for line in response.aiter_lines():
            line = line.strip()
            if not line.startswith("data:"):
                continue
            data = line[len("data:"):].strip()
            if data == DONE_MARKER:
                break
            try:
                delta = json.loads(data)
            except ValueError:
                logger.debug("remote stream: skipping undecodable fragment %r", data[:80])
                continue
            if not isinstance(delta, str) or not delta:
                continue
            body += delta
            fragments += 1
            if on_update is not None:
                pending = on_update(sanitize_html(body))
                if inspect.isawaitable(pending):
                    await pending
        logger.debug("remote stream: fragments=%d chars=%d", fragments, len(body))
        return body

    @staticmethod
    async def _read_json(response: httpx.Response) -> str:
        raw = await response.aread()
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise RemoteFailure(f"undecodable JSON body: {exc}") from exc
        if not isinstance(data, dict):
            raise RemoteFailure("JSON body is not an object")
        return str(data.get("answer") or "")
