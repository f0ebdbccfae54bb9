"""Per-visitor chat session: the answer pipeline and its state.

    ask(query)
      ├─ record user turn + recent query
      ├─ knowledge not ready ─────────────→ notice
      ├─ lexical search → arbitrate()
      ├─ job-fit question ────────────────→ compose_job_fit()      source=job_fit
      ├─ cache hit ───────────────────────→ cached answer          source=cache
      ├─ RemoteAnswerOrchestrator.answer() ok → cache + reply      source=llm
      └─ otherwise compose_answer() + term highlighting            source=knowledge_base

The session owns history, cache and client state; nothing is shared
between sessions.  Submissions are handled one at a time: a query that
arrives while another is in flight waits for it to finish.
"""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime

from src.orchestration.cache import ResponseCache
from src.orchestration.composer import compose_answer, compose_job_fit, is_job_fit_query
from src.orchestration.intents import arbitrate
from src.orchestration.models import CacheEntry, ChatReply, ReplySource
from src.orchestration.remote import RemoteAnswerOrchestrator
from src.rendering.greeting import ClientState, build_greeting, build_suggestions
from src.rendering.markup import escape_html, format_response, highlight_terms, strip_tags
from src.rendering.view import ConversationView, TranscriptView
from src.retrieval.models import ConversationTurn, KnowledgeBase

logger = logging.getLogger(__name__)

LOCAL_MODE_NOTICE = (
    "I'm running in local mode and couldn't index content. Try serving the site "
    "via a local server, or keep browsing the sections."
)
DEGRADED_NOTICE = "Tip: Running without knowledge.json. I indexed this page's sections and projects."
NOT_READY_NOTICE = "Knowledge base not ready. Please try again in a moment."


class ChatSession:
    def __init__(
        self,
        kb: KnowledgeBase,
        *,
        orchestrator: RemoteAnswerOrchestrator | None,
        view: ConversationView | None = None,
        cache: ResponseCache | None = None,
        client_state: ClientState | None = None,
    ) -> None:
        self.kb = kb
        self.orchestrator = orchestrator
        self.view: ConversationView = view if view is not None else TranscriptView()
        self.cache = cache if cache is not None else ResponseCache()
        self.client_state = client_state if client_state is not None else ClientState()
        self.history: list[ConversationTurn] = []
        self._lock = asyncio.Lock()

        if not kb.is_ready:
            self.view.add_message(LOCAL_MODE_NOTICE, source="notice")
        elif kb.degraded:
            self.view.add_message(DEGRADED_NOTICE, source="notice")

    def greeting(self, now: datetime | None = None, rng: random.Random | None = None) -> str:
        html = build_greeting(now, self.client_state, rng)
        self.client_state.seen_chat = True
        return html

    def suggestions(self) -> list[str]:
        return build_suggestions(self.client_state, self.kb)

    async def close(self) -> None:
        if self.orchestrator is not None:
            await self.orchestrator.close()

    async def ask(self, query: str) -> ChatReply | None:
        query = (query or "").strip()
        if not query:
            return None
        async with self._lock:
            return await self._answer(query)

    async def _answer(self, query: str) -> ChatReply:
        self.view.add_message(escape_html(query), who="user", source="user")
        # turns sent upstream exclude the question being asked
        prior_turns = list(self.history)
        self.history.append(ConversationTurn(role="user", content=query))
        self.client_state.remember(query)

        if not self.kb.is_ready:
            return self._reply(NOT_READY_NOTICE, NOT_READY_NOTICE, "notice")

        results = arbitrate(query, self.kb.search(query), self.kb)
        self.view.show_typing()

        if is_job_fit_query(query):
            job = compose_job_fit(query, self.kb)
            return self._reply(job.html, job.plain_text, "job_fit")

        cached = self.cache.get(query)
        if cached is not None:
            return self._reply(cached.html, cached.plain_text, "cache")

        badge = ""
        streaming = False
        if self.orchestrator is not None:

            def on_update(html: str) -> None:
                nonlocal streaming
                if not streaming:
                    streaming = True
                    self.view.start_stream()
                self.view.update_stream(html)

            remote = await self.orchestrator.answer(
                query, results, self.kb, prior_turns, on_update=on_update
            )
            if remote.ok:
                self.cache.set(query, CacheEntry(html=remote.html, plain_text=remote.plain_text))
                return self._reply(remote.html, remote.plain_text, "llm", streamed=streaming)
            badge = remote.badge

        fallback = highlight_terms(compose_answer(query, results, self.kb), query)
        html = badge + fallback
        return self._reply(html, strip_tags(fallback), "knowledge_base", streamed=streaming)

    def _reply(
        self,
        html: str,
        plain_text: str,
        source: ReplySource,
        *,
        streamed: bool = False,
    ) -> ChatReply:
        self.view.hide_typing()
        display = format_response(html)
        if streamed:
            self.view.finish_stream(display, source=source)
        else:
            self.view.add_message(display, source=source)
        self.history.append(ConversationTurn(role="assistant", content=plain_text.strip()))
        logger.debug("reply: source=%s chars=%d", source, len(html))
        return ChatReply(html=html, plain_text=plain_text, source=source)
