"""Starlette application factory for the chat proxy."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from starlette.applications import Starlette
from starlette.routing import Mount, Route
from starlette.staticfiles import StaticFiles

from config import Settings, settings
from src.server.routes import chat, knowledge_data, method_not_allowed, ping

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: Starlette) -> AsyncIterator[None]:
    """Close the upstream client (created lazily on first chat) at shutdown."""
    try:
        yield
    finally:
        client = getattr(app.state, "llm_client", None)
        if client is not None and getattr(app.state, "owns_llm_client", False):
            await client.close()
            logger.info("upstream client closed")


def create_app(app_settings: Settings | None = None, *, llm_client: Any = None) -> Starlette:
    """Build the proxy app.

    ``llm_client`` replaces the OpenAI-compatible client (tests inject a
    fake); when omitted one is created from settings on first use.
    """
    app_settings = app_settings or settings
    routes: list[Route | Mount] = [
        Route("/api/chat", chat, methods=["POST"]),
        Route("/api/data", knowledge_data, methods=["GET"]),
        Route("/api/ping", ping, methods=["GET", "POST"]),
    ]
    if app_settings.site_dir:
        routes.append(Mount("/", app=StaticFiles(directory=app_settings.site_dir, html=True), name="site"))

    app = Starlette(
        routes=routes,
        exception_handlers={405: method_not_allowed},
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.llm_client = llm_client
    app.state.owns_llm_client = llm_client is None
    return app
