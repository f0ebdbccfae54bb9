"""Request handlers for the chat proxy.

  POST /api/chat   grounded completion, streamed (SSE) or aggregated JSON
  GET  /api/data   raw knowledge document
  GET  /api/ping   liveness probe

Streaming is requested with ``?stream=1`` or ``Accept: text/event-stream``.
The event stream carries one ``data: <json string>`` event per text delta
and always ends with exactly one ``event: done`` / ``data: [DONE]`` pair,
even when the upstream stream breaks part-way.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from typing import Any

import httpx
import openai
from pydantic import ValidationError
from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse

from config import Settings
from src.knowledge.loader import KnowledgeUnavailable, read_knowledge_document
from src.server import errors
from src.server.upstream import ChatRequest, iter_deltas, make_client, open_completion_stream

logger = logging.getLogger(__name__)

DONE_EVENT = "event: done\ndata: [DONE]\n\n"
_EVENT_STREAM_RE = re.compile(r"text/event-stream", re.I)
_UPSTREAM_ERRORS = (openai.APIError, httpx.HTTPError)


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _llm_client(request: Request) -> Any:
    state = request.app.state
    if getattr(state, "llm_client", None) is None:
        state.llm_client = make_client(state.settings)
    return state.llm_client


def wants_stream(request: Request) -> bool:
    return request.query_params.get("stream") == "1" or bool(
        _EVENT_STREAM_RE.search(request.headers.get("accept", ""))
    )


def _upstream_detail(exc: Exception) -> str:
    if isinstance(exc, openai.APIStatusError):
        return exc.response.text or str(exc)
    return str(exc)


def sse_event(delta: str) -> str:
    return f"data: {json.dumps(delta, ensure_ascii=False)}\n\n"


async def relay_events(stream: Any) -> AsyncIterator[str]:
    """Upstream deltas as SSE events, then a single done event."""
    try:
        async for delta in iter_deltas(stream):
            yield sse_event(delta)
    except Exception as exc:
        # the response has started; the client still needs its done event
        logger.warning("upstream stream ended early: %s", exc, exc_info=not isinstance(exc, _UPSTREAM_ERRORS))
    finally:
        close = getattr(stream, "close", None)
        if close is not None:
            await close()
    yield DONE_EVENT


async def chat(request: Request) -> Response:
    app_settings = _settings(request)
    try:
        if not app_settings.groq_api_key:
            return errors.missing_credential()

        try:
            body = await request.json()
        except ValueError:
            body = None
        if not isinstance(body, dict) or not isinstance(body.get("query"), str) or not body["query"]:
            return errors.missing_query()
        try:
            chat_request = ChatRequest.model_validate(body)
        except ValidationError as exc:
            return errors.invalid_request(exc.errors()[0]["msg"])

        try:
            stream = await open_completion_stream(_llm_client(request), chat_request, app_settings)
        except _UPSTREAM_ERRORS as exc:
            logger.warning("upstream request failed: %s", exc)
            return errors.upstream_failure(_upstream_detail(exc))

        if wants_stream(request):
            return StreamingResponse(
                relay_events(stream),
                media_type="text/event-stream",
                headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
            )

        try:
            answer = "".join([delta async for delta in iter_deltas(stream)])
        except _UPSTREAM_ERRORS as exc:
            logger.warning("upstream stream failed: %s", exc)
            return errors.upstream_failure(_upstream_detail(exc))

        limit = app_settings.citation_limit
        citations = [
            {"title": item.label, "href": item.href or ""}
            for item in chat_request.context_items[:limit]
        ]
        return JSONResponse({"answer": answer, "citations": citations})
    except Exception:
        logger.error("chat request failed", exc_info=True)
        return errors.server_error()


async def knowledge_data(request: Request) -> Response:
    try:
        doc = read_knowledge_document(_settings(request).knowledge_path)
    except KnowledgeUnavailable:
        return errors.knowledge_not_found()
    return JSONResponse(doc)


async def ping(request: Request) -> Response:
    return JSONResponse({
        "ok": True,
        "time": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        "method": request.method,
    })


async def method_not_allowed(request: Request, exc: HTTPException) -> Response:
    return errors.method_not_allowed(headers=exc.headers)
