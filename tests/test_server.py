"""Tests for the chat proxy (src.server).

The OpenAI-compatible client is replaced by a fake whose
``chat.completions.create`` returns an async-iterable stream of chunks
shaped like the SDK's, so no network is involved.
"""

from __future__ import annotations

import json
from pathlib import Path
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock

import httpx
import openai
import pytest
from starlette.testclient import TestClient

from config import Settings, settings
from src.server.app import create_app
from src.server.routes import DONE_EVENT
from src.server.upstream import ChatRequest, ContextItem, build_messages, build_sources


class _FakeStream:
    def __init__(self, deltas: list[str | None], error: Exception | None = None) -> None:
        self._deltas = deltas
        self._error = error
        self.closed = False

    async def __aiter__(self):
        yield SimpleNamespace(choices=[])
        for delta in self._deltas:
            yield SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=delta))])
        if self._error is not None:
            raise self._error

    async def close(self) -> None:
        self.closed = True


def _make_client(*deltas: str | None, error: Exception | None = None, create_error: Exception | None = None) -> SimpleNamespace:
    streams: list[_FakeStream] = []

    async def create(**kwargs: Any) -> _FakeStream:
        if create_error is not None:
            raise create_error
        stream = _FakeStream(list(deltas), error)
        streams.append(stream)
        return stream

    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=AsyncMock(side_effect=create))))
    client.streams = streams
    return client


def _make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {"groq_api_key": "test-key", "site_dir": None}
    values.update(overrides)
    return settings.model_copy(update=values)


def _client_for(llm: Any, **overrides: Any) -> TestClient:
    return TestClient(create_app(_make_settings(**overrides), llm_client=llm))


def _request_error() -> httpx.Request:
    return httpx.Request("POST", "https://api.groq.test/openai/v1/chat/completions")


class TestChatValidation:
    def test_get_is_not_allowed(self) -> None:
        response = _client_for(_make_client()).get("/api/chat")
        assert response.status_code == 405
        assert response.json() == {"error": "Method not allowed"}
        assert response.headers["allow"] == "POST"

    def test_missing_key_is_a_server_error(self) -> None:
        llm = _make_client("x")
        response = _client_for(llm, groq_api_key=None).post("/api/chat", json={"query": "hi"})
        assert response.status_code == 500
        assert response.json() == {"error": "GROQ_API_KEY is not configured on the server."}
        llm.chat.completions.create.assert_not_awaited()

    @pytest.mark.parametrize("body", [{}, {"query": ""}, {"query": 5}, {"contextItems": []}])
    def test_missing_query(self, body: dict[str, Any]) -> None:
        response = _client_for(_make_client()).post("/api/chat", json=body)
        assert response.status_code == 400
        assert response.json() == {"error": "Missing query"}

    def test_unparseable_body(self) -> None:
        response = _client_for(_make_client()).post(
            "/api/chat", content=b"not json", headers={"content-type": "application/json"}
        )
        assert response.status_code == 400

    def test_invalid_history_role(self) -> None:
        body = {"query": "hi", "history": [{"role": "system", "content": "x"}]}
        response = _client_for(_make_client()).post("/api/chat", json=body)
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"


class TestUpstreamFailures:
    def test_connection_error_is_bad_gateway(self) -> None:
        llm = _make_client(create_error=openai.APIConnectionError(request=_request_error()))
        response = _client_for(llm).post("/api/chat", json={"query": "hi"})
        assert response.status_code == 502
        assert response.json()["error"] == "Groq API error"
        assert "detail" in response.json()

    def test_status_error_carries_upstream_text(self) -> None:
        upstream = httpx.Response(401, request=_request_error(), text="invalid api key")
        llm = _make_client(create_error=openai.APIStatusError("unauthorized", response=upstream, body=None))
        response = _client_for(llm).post("/api/chat", json={"query": "hi"})
        assert response.status_code == 502
        assert response.json() == {"error": "Groq API error", "detail": "invalid api key"}

    def test_unexpected_error_is_server_error(self) -> None:
        llm = _make_client(create_error=RuntimeError("boom"))
        response = _client_for(llm).post("/api/chat", json={"query": "hi"})
        assert response.status_code == 500
        assert response.json() == {"error": "Server error"}

    def test_mid_stream_upstream_error_on_json_path(self) -> None:
        llm = _make_client("partial", error=openai.APIConnectionError(request=_request_error()))
        response = _client_for(llm).post("/api/chat", json={"query": "hi"})
        assert response.status_code == 502


class TestStreaming:
    def test_event_stream_body(self) -> None:
        llm = _make_client("<p>Hi", None, "", " there</p>")
        response = _client_for(llm).post("/api/chat?stream=1", json={"query": "hi"})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert response.text == 'data: "<p>Hi"\n\ndata: " there</p>"\n\n' + DONE_EVENT
        assert llm.streams[0].closed

    def test_accept_header_requests_stream(self) -> None:
        llm = _make_client("ok")
        response = _client_for(llm).post(
            "/api/chat", json={"query": "hi"}, headers={"Accept": "text/event-stream"}
        )
        assert response.text == 'data: "ok"\n\n' + DONE_EVENT

    def test_non_ascii_deltas_are_kept(self) -> None:
        llm = _make_client("café ☕")
        response = _client_for(llm).post("/api/chat?stream=1", json={"query": "hi"})
        assert response.text.startswith('data: "café ☕"')

    def test_done_sent_once_after_mid_stream_error(self) -> None:
        llm = _make_client("a", error=RuntimeError("connection reset"))
        response = _client_for(llm).post("/api/chat?stream=1", json={"query": "hi"})
        assert response.status_code == 200
        assert response.text == 'data: "a"\n\n' + DONE_EVENT
        assert response.text.count("[DONE]") == 1
        assert llm.streams[0].closed


class TestJsonAnswer:
    def test_answer_and_citations(self) -> None:
        llm = _make_client("<p>Hello", " world</p>")
        items = [
            {"type": "project", "title": "HistoriAI", "href": "https://github.com/zinal/historiai", "content": "RAG"},
            {"type": "section", "title": "Skills", "href": "#skills", "content": "Python"},
            {"type": "faq", "q": "Freelance?", "a": "Yes."},
            {"type": "contact", "content": "Email: a@b.c."},
            {"type": "resume", "title": "Resume", "href": "cv.pdf"},
        ]
        response = _client_for(llm).post("/api/chat", json={"query": "hi", "contextItems": items})
        assert response.status_code == 200
        assert response.json() == {
            "answer": "<p>Hello world</p>",
            "citations": [
                {"title": "HistoriAI", "href": "https://github.com/zinal/historiai"},
                {"title": "Skills", "href": "#skills"},
                {"title": "Freelance?", "href": ""},
                {"title": "contact", "href": ""},
            ],
        }

    def test_completion_parameters(self) -> None:
        llm = _make_client("ok")
        history = [{"role": "user", "content": "earlier"}, {"role": "assistant", "content": "reply"}]
        _client_for(llm).post("/api/chat", json={"query": "hi", "history": history, "max_tokens": 50})

        kwargs = llm.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == settings.groq_model
        assert kwargs["stream"] is True
        assert kwargs["max_tokens"] == 50
        assert kwargs["temperature"] == settings.groq_temperature
        assert kwargs["top_p"] == settings.groq_top_p
        messages = kwargs["messages"]
        assert messages[0]["role"] == "system"
        assert "Zinal's AI Portfolio Assistant" in messages[0]["content"]
        assert messages[1:3] == history
        assert messages[-1]["content"].startswith("User Question: hi\n\nSources:\n")

    def test_null_lists_are_accepted(self) -> None:
        llm = _make_client("ok")
        response = _client_for(llm).post("/api/chat", json={"query": "hi", "contextItems": None, "history": None})
        assert response.status_code == 200
        assert response.json()["citations"] == []


class TestDataAndPing:
    def test_data_returns_document(self, tmp_path: Path, sample_doc: dict[str, Any]) -> None:
        path = tmp_path / "knowledge.json"
        path.write_text(json.dumps(sample_doc), encoding="utf-8")
        response = _client_for(_make_client(), knowledge_path=str(path)).get("/api/data")
        assert response.status_code == 200
        assert response.json() == sample_doc

    def test_data_missing_document(self, tmp_path: Path) -> None:
        response = _client_for(_make_client(), knowledge_path=str(tmp_path / "missing.json")).get("/api/data")
        assert response.status_code == 404
        assert response.json() == {"error": "knowledge.json not found"}

    @pytest.mark.parametrize("method", ["GET", "POST"])
    def test_ping(self, method: str) -> None:
        response = _client_for(_make_client()).request(method, "/api/ping")
        body = response.json()
        assert response.status_code == 200
        assert body["ok"] is True
        assert body["method"] == method
        assert body["time"].endswith("Z")


class TestPrompt:
    def test_sources_are_numbered(self) -> None:
        items = [ContextItem(title="A", href="#a", content="alpha"), ContextItem(q="Why?", a="Because.")]
        assert build_sources(items) == (
            "#1 Title: A\nURL: #a\nText: alpha\n\n#2 Title: Why?\nURL: \nText: Because."
        )

    def test_sources_are_cut_at_the_token_budget(self) -> None:
        app_settings = _make_settings(upstream_source_token_budget=70)
        items = [
            ContextItem(title="A", href="#a", content="x" * 10),
            ContextItem(title="B", content="y" * 100),
            ContextItem(title="C", content="z"),
        ]
        sources = build_sources(items, app_settings)
        assert sources == "#1 Title: A\nURL: #a\nText: " + "x" * 10 + "\n\n#2 Title: B\nURL: \nText: " + "y" * 10
        assert "#3" not in sources

    def test_entry_without_room_is_dropped(self) -> None:
        app_settings = _make_settings(upstream_source_token_budget=60)
        items = [ContextItem(title="A", href="#a", content="x" * 10), ContextItem(title="B", content="y" * 100)]
        assert build_sources(items, app_settings) == "#1 Title: A\nURL: #a\nText: " + "x" * 10

    def test_only_first_items_become_sources(self) -> None:
        items = [ContextItem(title=f"T{i}", content="c") for i in range(8)]
        sources = build_sources(items)
        assert "#6 Title: T5" in sources
        assert "#7" not in sources

    def test_history_window(self) -> None:
        history = [{"role": "user" if i % 2 == 0 else "assistant", "content": str(i)} for i in range(10)]
        request = ChatRequest.model_validate({"query": "q", "history": history})
        messages = build_messages(request)
        assert [m["content"] for m in messages[1:-1]] == [str(i) for i in range(4, 10)]
