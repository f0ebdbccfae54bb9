"""JSON error bodies returned by the chat proxy.

Every error is ``{"error": <message>}`` plus an optional ``detail``.
Clients only branch on the status code; the message is for humans.

  400  missing_query / invalid_request
  404  knowledge_not_found
  405  method_not_allowed
  500  missing_credential / server_error   (not retried by clients)
  502  upstream_failure                    (clients fall back locally)
"""

from __future__ import annotations

from typing import Mapping

from starlette.responses import JSONResponse


def _error(status_code: int, message: str, detail: str | None = None, headers: Mapping[str, str] | None = None) -> JSONResponse:
    body: dict[str, str] = {"error": message}
    if detail is not None:
        body["detail"] = detail
    return JSONResponse(body, status_code=status_code, headers=headers)


def missing_query() -> JSONResponse:
    return _error(400, "Missing query")


def invalid_request(detail: str) -> JSONResponse:
    return _error(400, "Invalid request", detail)


def knowledge_not_found() -> JSONResponse:
    return _error(404, "knowledge.json not found")


def method_not_allowed(headers: Mapping[str, str] | None = None) -> JSONResponse:
    return _error(405, "Method not allowed", headers=headers)


def missing_credential() -> JSONResponse:
    return _error(500, "GROQ_API_KEY is not configured on the server.")


def server_error() -> JSONResponse:
    return _error(500, "Server error")


def upstream_failure(detail: str) -> JSONResponse:
    """The completion API refused or failed; ``detail`` carries its response text."""
    return _error(502, "Groq API error", detail)
