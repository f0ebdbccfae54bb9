"""Greeting text and suggestion chips tailored to the visitor."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime

from config import settings
from src.retrieval.models import KnowledgeBase

TIPS = (
    "Ask me about my latest projects or tech stack!",
    "I can help you find specific skills or experiences.",
    "Looking for my contact info? Just ask!",
    "Check out my open-source contributions on GitHub.",
    "I can explain any project in detail - just ask!",
)

CORE_PROMPTS = (
    "What are your core skills?",
    "Share your resume",
    "How can I contact you?",
)

# (hour upper bound, time of day, greeting, emoji)
_DAY_PARTS = (
    (5, "late night", "Working late", "🌙"),
    (12, "morning", "Good morning", "☀️"),
    (17, "afternoon", "Good afternoon", "🌤️"),
    (22, "evening", "Good evening", "🌆"),
    (24, "night", "Good night", "🌃"),
)

BIRTHDAY = (6, 15)


@dataclass
class ClientState:
    """Non-durable client memory: seen flag and recent queries (newest first)."""

    seen_chat: bool = False
    recent_queries: list[str] = field(default_factory=list)

    def remember(self, query: str) -> None:
        query = query.strip()
        if not query:
            return
        limit = settings.recent_queries_limit
        self.recent_queries = [query, *(q for q in self.recent_queries if q != query)][:limit]


@dataclass(frozen=True)
class TimeContext:
    time_of_day: str
    greeting: str
    emoji: str
    is_weekend: bool
    is_birthday: bool


def time_context(now: datetime) -> TimeContext:
    part = next(p for p in _DAY_PARTS if now.hour < p[0])
    return TimeContext(
        time_of_day=part[1],
        greeting=part[2],
        emoji=part[3],
        is_weekend=now.weekday() >= 5,
        is_birthday=(now.month, now.day) == BIRTHDAY,
    )


def build_greeting(
    now: datetime | None = None,
    state: ClientState | None = None,
    rng: random.Random | None = None,
) -> str:
    ctx = time_context(now or datetime.now())
    state = state or ClientState()
    rng = rng or random.Random()

    if ctx.is_birthday:
        opener = f"🎂 Happy Birthday! {ctx.greeting}! 🎉 "
    else:
        opener = f"{ctx.greeting}! {ctx.emoji} "
        if ctx.is_weekend:
            opener += "Hope you're having a great weekend! " + ("☕" if ctx.time_of_day == "morning" else "😊")

    if not state.seen_chat:
        return (
            f"{opener} I'm {settings.owner_name}'s AI assistant. {rng.choice(TIPS)}<br><br>"
            "<div class='suggestions'><strong>Try asking:</strong><ul>"
            "<li>Tell me about your AI projects</li>"
            "<li>What tech stack do you use?</li>"
            "<li>Show me your work experience</li>"
            "<li>How can we collaborate?</li>"
            "</ul><p>Or type your question below...</p></div>"
        )

    variants = (
        f"{opener} How can I help today? I answer from this site's sources.",
        f"{opener} Ask about a project, skill, resume, or contact — I'll cite sources.",
        f"{opener} Looking for a quick project summary or tech stack? Ask away.",
    )
    return rng.choice(variants)


def build_suggestions(state: ClientState, kb: KnowledgeBase) -> list[str]:
    candidates: list[str] = list(state.recent_queries[:3])
    candidates.extend(f"Tell me about {p.title}" for p in kb.projects()[:2])
    candidates.extend(CORE_PROMPTS)
    candidates.extend(rule.prompt for rule in kb.intents[:3] if rule.prompt)

    out: list[str] = []
    for text in candidates:
        text = text.strip()
        if text and text not in out:
            out.append(text)
    return out[: settings.suggestion_limit]
