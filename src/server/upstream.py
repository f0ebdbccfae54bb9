"""Grounded prompt construction and the streaming completion call.

The proxy forwards one chat request to an OpenAI-compatible endpoint
(Groq by default).  The model only sees what the client sent as context
items, numbered as Sources so it can cite them inline as [1], [2], ...

The Sources block is budgeted in tokens (tiktoken); an entry that does
not fit is cut at the budget and later entries are dropped.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

import tiktoken
from openai import AsyncOpenAI
from pydantic import BaseModel, ConfigDict, Field, field_validator

from config import Settings, settings
from src.retrieval.models import ConversationTurn

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """\
System: You are {owner}'s AI Portfolio Assistant.

Answer shaping:
- Prioritize clarity, impact, and relevance to the user's ask.
- When summarizing a project, mention the concrete problem, approach, and outcome in 1-2 sentences.
- Prefer action verbs and measurable outcomes where present in Sources (e.g., "achieved", "enabled").
- For questions about capabilities or experience, respond as an assistant, e.g., "Yes, {owner} can work on trading-related projects."

Hard rules (grounding):
- Answer using ONLY the provided Sources. If info is missing, say so and suggest the most relevant section.
- Do not invent facts, acronyms, repositories, or project names.
- Preserve exact names/casing from Sources (e.g., "scikit-learn", "LLaMA", "FAISS").
- Copy emails, URLs, and filenames VERBATIM from Sources. Do not reconstruct or guess. If a href is present, use that exact value.
- Use inline numeric citations like [1], [2] that map to the numbered Sources items.
- Prefer fully qualified external URLs (http/https). Otherwise, use section anchors (e.g., #skills).
- If multiple sources conflict, state the ambiguity briefly and prefer the most specific project/source.

Site structure:
- When linking to on-page sections, use these exact anchors if present in Sources:
  #about, #skills, #projects, #achievements, #experience, #contact.
- If providing a resume link and a local href is present in Sources, use it exactly as provided and do not rename it.
- When referencing a project that has a GitHub URL in Sources, include that URL as the Repository link.

Output format (strict HTML only):
- Start with one concise paragraph: <p>...</p>
- Optionally add up to 3-5 bullets: <ul><li>...</li></ul>
- Allowed tags: p, ul, li, strong, em, a, br, small. No markdown. Close all tags.
- Do NOT output raw HTML attribute text like: a href="..." in plain text. Always render proper <a> elements.
- Keep it concise; prefer complete short sentences over truncation. Never end mid-tag. Answers should generally fit within ~6-10 sentences total.
- Lists MUST be valid: open with <ul>, each item in <li>...</li>, and close </ul>. Do not emit bare "-" bullets.
- Never output stray angle bracket placeholders like "<>" or fragments like "li>". If unsure, prefer a single <p> over a broken list.

Deterministic behaviors:
- Resume: If asked, begin with a single canonical link from the resume Source item: <p><a href='RESUME_HREF' download>Download resume (PDF)</a></p>. Then one short sentence if needed. Do not mention or guess any other filenames.
- Contact: Output email and profile URLs as proper <a> tags, exactly as in Sources. Do not alter characters.
- Terminology: Expand "RAG" as "Retrieval-Augmented Generation". Do NOT call it "Reinforcement". Use exact tech names from Sources.
- Skills: Group into 3-4 compact bullets (AI/ML/NLP, Backend & APIs, Databases, DevOps/Cloud) using items present in Sources.

Citations & omissions:
- If a statement has no support in the provided Sources, omit it or explicitly state it is not available in Sources.
- If any required element (email, URL, resume href) is absent from Sources, say it's not provided and stop rather than guessing.
- Do NOT include FAQ content or wording unless the user explicitly asks for "FAQ" or a specific FAQ question.

Query type guidance:
- Resume/CV: Start with the canonical resume link. Keep it brief.
- Contact: Include email and key profiles as links, copied verbatim. Keep it brief.
- Skills: Grouped bullets as above; no unrelated content.
- Project: Prefer an impact-oriented summary.
- Achievements/Experience: Pull concise items from Sources; avoid repetition.

Output:
- Return ONLY the main HTML answer with inline citations. Do NOT append a "Sources" list; the client will render sources."""


# ── Request shape ─────────────────────────────────────────────


class ContextItem(BaseModel):
    """One grounding item as sent by the client (loosely typed)."""

    model_config = ConfigDict(extra="ignore")

    type: str | None = None
    title: str | None = None
    q: str | None = None
    href: str | None = None
    content: str | None = None
    a: str | None = None

    @property
    def label(self) -> str:
        return self.title or self.q or self.type or "Item"

    @property
    def text(self) -> str:
        return self.content or self.a or ""


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    query: str
    context_items: list[ContextItem] = Field(default_factory=list, alias="contextItems")
    history: list[ConversationTurn] = Field(default_factory=list)
    model: str | None = None
    max_tokens: int | None = None

    @field_validator("context_items", "history", mode="before")
    @classmethod
    def _null_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value


# ── Prompt ────────────────────────────────────────────────────

_encoder: tiktoken.Encoding | None = None


def _get_encoder() -> tiktoken.Encoding:
    global _encoder
    if _encoder is None:
        _encoder = tiktoken.get_encoding(settings.upstream_tokenizer_name)
    return _encoder


def _format_source(n: int, item: ContextItem, text: str) -> str:
    return f"#{n} Title: {item.label}\nURL: {item.href or ''}\nText: {text}"


def build_sources(items: list[ContextItem], app_settings: Settings = settings) -> str:
    encoder = _get_encoder()
    budget = app_settings.upstream_source_token_budget
    entries: list[str] = []
    used = 0
    for n, item in enumerate(items[: app_settings.upstream_context_items], start=1):
        entry = _format_source(n, item, item.text)
        cost = len(encoder.encode(entry))
        if used + cost <= budget:
            entries.append(entry)
            used += cost
            continue
        header_cost = len(encoder.encode(_format_source(n, item, "")))
        room = budget - used - header_cost
        if room > 0:
            clipped = encoder.decode(encoder.encode(item.text)[:room])
            entries.append(_format_source(n, item, clipped))
        logger.info("sources truncated at item %d (budget=%d tokens)", n, budget)
        break
    return "\n\n".join(entries)


def build_messages(request: ChatRequest, app_settings: Settings = settings) -> list[dict[str, str]]:
    system = SYSTEM_PROMPT.format(owner=app_settings.owner_name)
    user = f"User Question: {request.query}\n\nSources:\n{build_sources(request.context_items, app_settings)}"
    turns = app_settings.upstream_history_turns
    history = request.history[-turns:] if turns else []
    return [
        {"role": "system", "content": system},
        *(turn.model_dump() for turn in history),
        {"role": "user", "content": user},
    ]


# ── Completion call ───────────────────────────────────────────


def make_client(app_settings: Settings = settings) -> AsyncOpenAI:
    return AsyncOpenAI(base_url=app_settings.groq_base_url, api_key=app_settings.groq_api_key)


async def open_completion_stream(
    client: AsyncOpenAI,
    request: ChatRequest,
    app_settings: Settings = settings,
) -> Any:
    """Start a streamed chat completion; status errors raise here, before any output."""
    messages = build_messages(request, app_settings)
    logger.info(
        "upstream request: model=%s sources=%d history=%d",
        request.model or app_settings.groq_model,
        min(len(request.context_items), app_settings.upstream_context_items),
        len(messages) - 2,
    )
    return await client.chat.completions.create(
        model=request.model or app_settings.groq_model,
        messages=messages,
        temperature=app_settings.groq_temperature,
        top_p=app_settings.groq_top_p,
        max_tokens=request.max_tokens or app_settings.groq_max_tokens,
        stream=True,
    )


async def iter_deltas(stream: Any) -> AsyncIterator[str]:
    """Text deltas of a completion stream, empty chunks skipped."""
    async for chunk in stream:
        if not chunk.choices:
            continue
        delta = chunk.choices[0].delta.content
        if delta:
            yield delta
