from __future__ import annotations

import copy
from typing import Any

import pytest

from src.knowledge.loader import build_knowledge_base
from src.knowledge.normalizer import normalize_document
from src.retrieval.models import IntentRule, KnowledgeBase
from src.server import upstream


SAMPLE_DOC: dict[str, Any] = {
    "about": {
        "title": "About",
        "content": "Zinal is an AI engineer building retrieval systems and LLM apps.",
        "tags": ["about", "bio"],
    },
    "skills": {
        "title": "Skills",
        "content": "Python, PyTorch, TensorFlow, LangChain, FastAPI, Docker, OpenCV, Whisper",
        "tags": ["skills", "stack"],
    },
    "projects": [
        {
            "title": "MoneyVerse Trading Assistant",
            "content": "A trading analytics dashboard with LLM summaries built on FastAPI and Docker.",
            "url": "https://github.com/zinal/moneyverse",
            "tags": ["trading", "llm"],
            "media": {"image": "img/moneyverse.png"},
        },
        {
            "title": "HistoriAI",
            "content": "RAG chatbot over historical archives using LangChain and FAISS.",
            "url": "https://github.com/zinal/historiai",
            "tags": ["rag", "nlp"],
        },
        {
            "title": "AR-DMS Document System",
            "content": "Augmented reality document management with OpenCV segmentation.",
            "tags": ["cv"],
        },
        {
            "title": "Spam Classifier",
            "content": "SMS spam detection with TF-IDF and scikit-learn.",
            "url": "https://github.com/zinal/spam",
            "tags": ["nlp", "ml"],
        },
    ],
    "contact": {
        "email": "zinal@example.com",
        "linkedin": "https://www.linkedin.com/in/zinal-raval",
        "github": "https://github.com/zinal",
    },
    "resume": {"file": "Zinal Raval.pdf", "note": "One-page resume."},
    "experience": {"title": "Experience", "content": "ML intern at Acme building NLP pipelines."},
    "certifications": {"title": "Achievements", "content": "Winner of the campus AI hackathon."},
    "faq": [
        {"q": "Are you open to freelance work?", "a": "Yes, via Upwork or email."},
    ],
}


class _CharEncoder:
    """Offline stand-in for a tiktoken encoding: one token per character."""

    def encode(self, text: str) -> list[int]:
        return [ord(ch) for ch in text]

    def decode(self, tokens: list[int]) -> str:
        return "".join(chr(t) for t in tokens)


@pytest.fixture(autouse=True)
def _offline_tokenizer(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(upstream, "_encoder", _CharEncoder())


@pytest.fixture
def sample_doc() -> dict[str, Any]:
    return copy.deepcopy(SAMPLE_DOC)


@pytest.fixture
def kb(sample_doc: dict[str, Any]) -> KnowledgeBase:
    return build_knowledge_base(normalize_document(sample_doc))


@pytest.fixture
def kb_with_intents(sample_doc: dict[str, Any]) -> KnowledgeBase:
    intents = [
        IntentRule(patterns=["\\bfreelanc"], name="Freelance", answer="Available for freelance work.",
                   tags=["hire"], prompt="Are you available for freelance?"),
        IntentRule(patterns=["\\bhistory\\s+bot\\b"], name="HistoriAI", prompt="Tell me about HistoriAI"),
        IntentRule(patterns=["\\bwhere\\s+to\\s+reach\\b"], href="#CONTACT"),
    ]
    return build_knowledge_base(normalize_document(sample_doc), intents=intents)
