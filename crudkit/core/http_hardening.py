from __future__ import annotations

import logging
import re
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")
_LOG = logging.getLogger("crudkit.http")

# Listings are assembled per request from live rows.
NO_STORE_HEADERS = {
    "Cache-Control": "no-store",
    "Pragma": "no-cache",
    "Expires": "0",
    "X-Content-Type-Options": "nosniff",
}


def _request_id_from_header(raw: str | None) -> str:
    candidate = (raw or "").strip()
    if candidate and _REQUEST_ID_RE.fullmatch(candidate):
        return candidate
    return uuid4().hex


def _finish_response(response: Response, request_id: str) -> None:
    response.headers.update(NO_STORE_HEADERS)
    response.headers[REQUEST_ID_HEADER] = request_id


def _log_request(request: Request, status_code: int, started_at: float) -> None:
    _LOG.info(
        "request method=%s path=%s status=%s elapsed_ms=%.1f request_id=%s",
        request.method,
        request.url.path,
        status_code,
        (perf_counter() - started_at) * 1000.0,
        request.state.request_id,
    )


def install_http_hardening(app: FastAPI) -> None:
    """Tag every request with an id and mark every response as non-cacheable."""

    @app.middleware("http")
    async def _request_context_middleware(request: Request, call_next):
        started_at = perf_counter()
        request.state.request_id = _request_id_from_header(request.headers.get(REQUEST_ID_HEADER))
        response = await call_next(request)
        _finish_response(response, request.state.request_id)
        _log_request(request, response.status_code, started_at)
        return response
