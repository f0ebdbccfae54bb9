from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env relative to this file's directory (the project root),
# not the working directory.
_ENV_FILE = Path(__file__).resolve().parent / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=str(_ENV_FILE), case_sensitive=False)

    # ── Upstream LLM (OpenAI-compatible, Groq by default) ─────────
    groq_api_key: str | None = Field(default=None, validation_alias="GROQ_API_KEY")
    groq_base_url: str = Field(
        default="https://api.groq.com/openai/v1", validation_alias="GROQ_BASE_URL"
    )
    groq_model: str = Field(default="llama-3.1-8b-instant", validation_alias="GROQ_MODEL")
    groq_max_tokens: int = Field(default=900, validation_alias="GROQ_MAX_TOKENS")
    groq_temperature: float = Field(default=0.2, validation_alias="GROQ_TEMPERATURE")
    groq_top_p: float = Field(default=0.1, validation_alias="GROQ_TOP_P")
    # Only the first N context items become numbered Sources in the prompt.
    upstream_context_items: int = Field(default=6, validation_alias="UPSTREAM_CONTEXT_ITEMS")
    upstream_history_turns: int = Field(default=6, validation_alias="UPSTREAM_HISTORY_TURNS")
    # Soft ceiling on the Sources block, counted with the tokenizer below.
    upstream_source_token_budget: int = Field(
        default=3000, validation_alias="UPSTREAM_SOURCE_TOKEN_BUDGET"
    )
    upstream_tokenizer_name: str = Field(
        default="cl100k_base", validation_alias="UPSTREAM_TOKENIZER_NAME"
    )

    # ── Knowledge ─────────────────────────────────────────────────
    knowledge_path: str = Field(default="knowledge.json", validation_alias="KNOWLEDGE_PATH")
    intents_path: str = Field(default="intents.json", validation_alias="INTENTS_PATH")
    # Page used for section scraping and for degraded (no document) mode.
    site_index_path: str = Field(default="index.html", validation_alias="SITE_INDEX_PATH")
    resume_default_file: str = Field(
        default="Zinal_Raval_Resume.pdf", validation_alias="RESUME_DEFAULT_FILE"
    )
    # When set, the proxy also serves the static site from this directory.
    site_dir: str | None = Field(default=None, validation_alias="SITE_DIR")

    # ── Passages / lexical index ──────────────────────────────────
    passage_chunk_size: int = Field(default=420, validation_alias="PASSAGE_CHUNK_SIZE")
    passage_overlap: int = Field(default=60, validation_alias="PASSAGE_OVERLAP")
    # Max field distance (1 - similarity) that still counts as a match.
    # Deliberately loose so short or partial queries surface candidates.
    search_threshold: float = Field(default=0.5, validation_alias="SEARCH_THRESHOLD")
    search_min_match_length: int = Field(default=2, validation_alias="SEARCH_MIN_MATCH_LENGTH")
    search_weight_title: float = Field(default=0.4, validation_alias="SEARCH_WEIGHT_TITLE")
    search_weight_content: float = Field(default=0.9, validation_alias="SEARCH_WEIGHT_CONTENT")
    search_weight_tags: float = Field(default=0.3, validation_alias="SEARCH_WEIGHT_TAGS")
    search_weight_question: float = Field(default=0.9, validation_alias="SEARCH_WEIGHT_QUESTION")
    search_weight_answer: float = Field(default=0.7, validation_alias="SEARCH_WEIGHT_ANSWER")

    # ── Intent arbitration ────────────────────────────────────────
    # A top result scoring worse than this is "weak" for the keyword and
    # project-name stages.
    weak_result_cutoff: float = Field(default=0.6, validation_alias="WEAK_RESULT_CUTOFF")
    # Stricter cutoff for consulting the external intents document.
    intent_rule_cutoff: float = Field(default=0.5, validation_alias="INTENT_RULE_CUTOFF")
    keyword_rule_score: float = Field(default=0.2, validation_alias="KEYWORD_RULE_SCORE")
    arbitration_result_limit: int = Field(default=6, validation_alias="ARBITRATION_RESULT_LIMIT")

    # ── Composition ───────────────────────────────────────────────
    # Name of the portfolio owner, used in greetings and job-fit answers.
    owner_name: str = Field(default="Zinal", validation_alias="OWNER_NAME")
    snippet_length: int = Field(default=180, validation_alias="SNIPPET_LENGTH")
    project_card_limit: int = Field(default=3, validation_alias="PROJECT_CARD_LIMIT")
    citation_limit: int = Field(default=4, validation_alias="CITATION_LIMIT")
    context_items_limit: int = Field(default=6, validation_alias="CONTEXT_ITEMS_LIMIT")
    history_window: int = Field(default=6, validation_alias="HISTORY_WINDOW")

    # ── Client (session → proxy) ──────────────────────────────────
    chat_endpoint_url: str = Field(
        default="http://127.0.0.1:3000/api/chat", validation_alias="CHAT_ENDPOINT_URL"
    )
    chat_request_timeout: float = Field(default=60.0, validation_alias="CHAT_REQUEST_TIMEOUT")
    recent_queries_limit: int = Field(default=5, validation_alias="RECENT_QUERIES_LIMIT")
    suggestion_limit: int = Field(default=6, validation_alias="SUGGESTION_LIMIT")

    # ── Server ────────────────────────────────────────────────────
    host: str = Field(default="127.0.0.1", validation_alias="HOST")
    port: int = Field(default=3000, validation_alias="PORT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")


settings = Settings()
