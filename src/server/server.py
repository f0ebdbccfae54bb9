"""Chat proxy entry point.

Usage::

    python -m src.server                       # HOST:PORT from settings
    python -m src.server --host 0.0.0.0 --port 8080

``GROQ_API_KEY`` must be set (environment or ``.env``) for /api/chat to
answer; without it the endpoint responds 500 and clients fall back to
their local answers.
"""

from __future__ import annotations

import argparse
import logging
import sys

import uvicorn

from config import settings
from src.server.app import create_app

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    """Single stderr handler; repeated calls do not add handlers."""
    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())
    if root.handlers:
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root.addHandler(handler)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Portfolio assistant chat proxy")
    parser.add_argument("--host", default=settings.host, help="bind address (default: %(default)s)")
    parser.add_argument("--port", type=int, default=settings.port, help="port (default: %(default)s)")
    args = parser.parse_args(argv)

    _configure_logging()
    if not settings.groq_api_key:
        logger.warning("GROQ_API_KEY is not set; /api/chat will answer 500")

    app = create_app(settings)
    logger.info("Starting chat proxy on %s:%d", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
