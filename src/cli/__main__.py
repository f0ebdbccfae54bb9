"""Terminal chat client.

Loads the knowledge base locally, greets, then answers questions typed
on stdin.  Remote answers come from the chat proxy at ``--endpoint``;
when it is unreachable the local composer answers instead.

Usage::

    python -m src.cli
    python -m src.cli --endpoint http://127.0.0.1:3000/api/chat --no-remote
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from config import settings
from src.knowledge.loader import load_knowledge
from src.orchestration.remote import RemoteAnswerOrchestrator
from src.orchestration.session import ChatSession
from src.rendering.markup import strip_tags
from src.rendering.view import TranscriptView
from src.server.server import _configure_logging


class TerminalView(TranscriptView):
    """Transcript that also prints bot output; streamed text appears as it grows."""

    def __init__(self) -> None:
        super().__init__()
        self._printed = 0

    def add_message(self, html: str, who: str = "bot", source: str = "unknown") -> None:
        super().add_message(html, who, source)
        if who == "bot":
            print(f"\n[{source}] {self.messages[-1].text}\n")

    def update_stream(self, html: str) -> None:
        super().update_stream(html)
        text = strip_tags(self.live or "")
        print(text[self._printed:], end="", flush=True)
        self._printed = len(text)

    def finish_stream(self, html: str, source: str = "llm") -> None:
        # the streamed text is already on screen; store without reprinting
        self._printed = 0
        self.live = None
        TranscriptView.add_message(self, html, source=source)
        print()


async def run(endpoint: str | None) -> None:
    kb = load_knowledge(settings.knowledge_path, intents_path=settings.intents_path)
    orchestrator = RemoteAnswerOrchestrator(endpoint) if endpoint else None
    session = ChatSession(kb, orchestrator=orchestrator, view=TerminalView())
    print(strip_tags(session.greeting().replace("<br>", "\n")))
    for suggestion in session.suggestions():
        print(f"  • {suggestion}")
    try:
        while True:
            try:
                query = await asyncio.to_thread(input, "> ")
            except EOFError:
                break
            if query.strip() in {"exit", "quit"}:
                break
            await session.ask(query)
    finally:
        await session.close()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Portfolio assistant terminal client")
    parser.add_argument("--endpoint", default=settings.chat_endpoint_url, help="chat proxy URL")
    parser.add_argument("--no-remote", action="store_true", help="answer from local knowledge only")
    args = parser.parse_args(argv)

    _configure_logging()
    asyncio.run(run(None if args.no_remote else args.endpoint))


main()
