"""Unit tests for src.orchestration.session.

The remote orchestrator is replaced by a MagicMock whose ``answer`` is an
AsyncMock, so no HTTP is involved.
"""

from __future__ import annotations

import asyncio
import random
from datetime import datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.knowledge.loader import build_knowledge_base
from src.knowledge.normalizer import normalize_document
from src.orchestration.models import ASSISTANT_BADGE, RemoteAnswer
from src.orchestration.session import (
    DEGRADED_NOTICE,
    LOCAL_MODE_NOTICE,
    NOT_READY_NOTICE,
    ChatSession,
)
from src.rendering.view import TranscriptView
from src.retrieval.models import KnowledgeBase


def _remote_ok(text: str = "HistoriAI is a RAG chatbot.") -> RemoteAnswer:
    html = f"{ASSISTANT_BADGE}<p>{text}</p>"
    return RemoteAnswer(ok=True, html=html, plain_text=f"Assistant {text}")


def _make_orchestrator(*results: RemoteAnswer, side_effect: Any = None) -> MagicMock:
    orchestrator = MagicMock()
    if side_effect is not None:
        orchestrator.answer = AsyncMock(side_effect=side_effect)
    else:
        orchestrator.answer = AsyncMock(side_effect=list(results))
    orchestrator.close = AsyncMock()
    return orchestrator


def _make_session(kb: KnowledgeBase, orchestrator: MagicMock | None = None) -> ChatSession:
    return ChatSession(kb, orchestrator=orchestrator, view=TranscriptView())


class TestAsk:
    @pytest.mark.asyncio
    async def test_blank_query_is_ignored(self, kb: KnowledgeBase) -> None:
        orchestrator = _make_orchestrator()
        session = _make_session(kb, orchestrator)
        assert await session.ask("   ") is None
        assert session.history == []
        orchestrator.answer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_job_fit_question_skips_remote(self, kb: KnowledgeBase) -> None:
        orchestrator = _make_orchestrator()
        session = _make_session(kb, orchestrator)
        reply = await session.ask("We are hiring for an NLP role")
        assert reply is not None
        assert reply.source == "job_fit"
        assert "NLP/LLM" in reply.html
        orchestrator.answer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_remote_answer_is_cached(self, kb: KnowledgeBase) -> None:
        orchestrator = _make_orchestrator(_remote_ok())
        session = _make_session(kb, orchestrator)

        first = await session.ask("Tell me about HistoriAI")
        second = await session.ask("  tell me about historiai ")

        assert first is not None and second is not None
        assert first.source == "llm"
        assert second.source == "cache"
        assert second.html == first.html
        assert orchestrator.answer.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_remote_falls_back_without_caching(self, kb: KnowledgeBase) -> None:
        orchestrator = _make_orchestrator(RemoteAnswer(ok=False, failure="ConnectError"))
        session = _make_session(kb, orchestrator)

        reply = await session.ask("tell me about historiai")

        assert reply is not None
        assert reply.source == "knowledge_base"
        assert reply.html.startswith(ASSISTANT_BADGE)
        assert "<mark>" in reply.html
        assert len(session.cache) == 0

    @pytest.mark.asyncio
    async def test_fallback_resume_link_appears_once(self, kb: KnowledgeBase) -> None:
        orchestrator = _make_orchestrator(RemoteAnswer(ok=False, failure="status 502"))
        session = _make_session(kb, orchestrator)
        reply = await session.ask("resume")
        assert reply is not None
        assert reply.html.count("Zinal%20Raval.pdf") == 1

    @pytest.mark.asyncio
    async def test_fallback_keeps_composer_link_markup(self, kb: KnowledgeBase) -> None:
        orchestrator = _make_orchestrator(RemoteAnswer(ok=False, failure="status 502"))
        session = _make_session(kb, orchestrator)
        reply = await session.ask("Tell me about your resume")
        assert reply is not None
        assert "<a href='Zinal%20Raval.pdf' download>Download <mark>resume</mark></a>" in reply.html

    @pytest.mark.asyncio
    async def test_without_remote_answers_locally_without_badge(self, kb: KnowledgeBase) -> None:
        session = _make_session(kb)
        reply = await session.ask("skills")
        assert reply is not None
        assert reply.source == "knowledge_base"
        assert not reply.html.startswith(ASSISTANT_BADGE)
        assert "Skills" in reply.plain_text

    @pytest.mark.asyncio
    async def test_history_records_both_turns_and_prior_turns_go_upstream(self, kb: KnowledgeBase) -> None:
        orchestrator = _make_orchestrator(_remote_ok("one"), _remote_ok("two"))
        session = _make_session(kb, orchestrator)

        await session.ask("first question")
        await session.ask("second question")

        assert [(t.role, t.content) for t in session.history] == [
            ("user", "first question"),
            ("assistant", "Assistant one"),
            ("user", "second question"),
            ("assistant", "Assistant two"),
        ]
        first_call, second_call = orchestrator.answer.await_args_list
        assert first_call.args[3] == []
        assert [t.content for t in second_call.args[3]] == ["first question", "Assistant one"]

    @pytest.mark.asyncio
    async def test_recent_queries_are_remembered(self, kb: KnowledgeBase) -> None:
        session = _make_session(kb)
        await session.ask("skills")
        await session.ask("projects")
        assert session.client_state.recent_queries[:2] == ["projects", "skills"]
        assert session.suggestions()[:2] == ["projects", "skills"]

    @pytest.mark.asyncio
    async def test_user_message_is_escaped_in_view(self, kb: KnowledgeBase) -> None:
        session = _make_session(kb)
        await session.ask("<b>skills</b>")
        user = next(m for m in session.view.messages if m.who == "user")
        assert "<b>" not in user.html
        assert user.text == "<b>skills</b>"


class TestStreaming:
    @pytest.mark.asyncio
    async def test_updates_reach_view_and_finish_once(self, kb: KnowledgeBase) -> None:
        async def fake_answer(query, results, kb, history, *, on_update=None):
            on_update("<p>Hi")
            on_update("<p>Hi there</p>")
            return RemoteAnswer(
                ok=True, html=f"{ASSISTANT_BADGE}<p>Hi there</p>", plain_text="Assistant Hi there", streamed=True
            )

        orchestrator = _make_orchestrator(side_effect=fake_answer)
        session = _make_session(kb, orchestrator)
        reply = await session.ask("say hi")

        view = session.view
        assert reply is not None and reply.source == "llm"
        assert view.stream_updates == 2
        assert view.live is None
        assert view.typing is False
        bot_messages = [m for m in view.messages if m.who == "bot"]
        assert len(bot_messages) == 1
        assert bot_messages[0].source == "llm"
        assert "Hi there" in bot_messages[0].text


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_submissions_are_handled_one_at_a_time(self, kb: KnowledgeBase) -> None:
        events: list[str] = []

        async def fake_answer(query, results, kb, history, *, on_update=None):
            events.append(f"start {query}")
            await asyncio.sleep(0.01)
            events.append(f"end {query}")
            return _remote_ok(query)

        orchestrator = _make_orchestrator(side_effect=fake_answer)
        session = _make_session(kb, orchestrator)

        await asyncio.gather(session.ask("alpha"), session.ask("beta"))

        assert events == ["start alpha", "end alpha", "start beta", "end beta"]
        assert [t.content for t in session.history if t.role == "user"] == ["alpha", "beta"]


class TestNotices:
    def test_empty_knowledge_posts_local_mode_notice(self) -> None:
        session = _make_session(build_knowledge_base([]))
        assert session.view.messages[0].text == LOCAL_MODE_NOTICE

    def test_degraded_knowledge_posts_tip(self, sample_doc: dict[str, Any]) -> None:
        kb = build_knowledge_base(normalize_document(sample_doc), degraded=True)
        session = _make_session(kb)
        assert session.view.messages[0].text == DEGRADED_NOTICE

    def test_ready_knowledge_posts_nothing(self, kb: KnowledgeBase) -> None:
        assert _make_session(kb).view.messages == []

    @pytest.mark.asyncio
    async def test_not_ready_reply(self) -> None:
        orchestrator = _make_orchestrator()
        session = _make_session(build_knowledge_base([]), orchestrator)
        reply = await session.ask("hello")
        assert reply is not None
        assert reply.source == "notice"
        assert reply.plain_text == NOT_READY_NOTICE
        orchestrator.answer.assert_not_awaited()


class TestGreeting:
    def test_greeting_marks_chat_as_seen(self, kb: KnowledgeBase) -> None:
        session = _make_session(kb)
        first = session.greeting(datetime(2024, 1, 3, 9), random.Random(1))
        second = session.greeting(datetime(2024, 1, 3, 9), random.Random(1))
        assert "<div class='suggestions'>" in first
        assert "<div class='suggestions'>" not in second
        assert session.client_state.seen_chat

    @pytest.mark.asyncio
    async def test_close_closes_orchestrator(self, kb: KnowledgeBase) -> None:
        orchestrator = _make_orchestrator()
        await _make_session(kb, orchestrator).close()
        orchestrator.close.assert_awaited_once()
