"""FastAPI middleware for request ID injection, access logging and error handling.

Every error response is application/problem+json (RFC 9457) and carries the
request ID so a caller's report can be matched to the server logs.
"""

import time
from collections.abc import Callable
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import structlog
from fastapi import Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from shared.exceptions import ProblemDetailError, ValidationError

logger = structlog.get_logger()

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

PROBLEM_MEDIA_TYPE = "application/problem+json"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Inject a unique request ID into every request and response.

    Header name: X-Request-ID. Default format: UUID v4. A caller-supplied
    ID (e.g. a Whoop delivery retried through a proxy) is kept as-is.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Callable[..., Response]]
    ):
        rid = request.headers.get("X-Request-ID") or str(uuid4())
        request_id_var.set(rid)
        structlog.contextvars.bind_contextvars(
            request_id=rid, method=request.method, path=request.url.path
        )

        start = time.monotonic()
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = rid
            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_ms=round((time.monotonic() - start) * 1000, 1),
            )
            return response
        finally:
            structlog.contextvars.unbind_contextvars("request_id", "method", "path")


def _problem_response(
    request: Request,
    status: int,
    type_uri: str,
    title: str,
    detail: str,
    violations: list[dict] | None = None,
) -> JSONResponse:
    body: dict[str, Any] = {
        "type": type_uri,
        "title": title,
        "status": status,
        "detail": detail,
        "instance": str(request.url.path),
        "request_id": request_id_var.get(""),
    }
    if violations:
        body["violations"] = violations
    return JSONResponse(status_code=status, content=body, media_type=PROBLEM_MEDIA_TYPE)


async def problem_detail_handler(request: Request, exc: ProblemDetailError) -> JSONResponse:
    """Convert ProblemDetailError exceptions into RFC 9457 responses."""
    if exc.status >= 500:
        logger.error("request_failed", status=exc.status, title=exc.title, detail=exc.detail)
    return _problem_response(
        request, exc.status, exc.type_uri, exc.title, exc.detail, exc.violations
    )


def violations_from_errors(errors: list[dict]) -> list[dict]:
    """Flatten Pydantic error dicts into problem-detail violations.

    Request-location prefixes ("body", "query", ...) are dropped so the field
    path reads the same for request bodies and webhook payloads.
    """
    violations = []
    for err in errors:
        loc = err.get("loc", ())
        field = ".".join(
            str(part) for part in loc if part not in ("body", "query", "path", "header")
        )
        violations.append(
            {
                "field": field or "(root)",
                "message": err.get("msg", "Validation error"),
                "constraint": err.get("type", "validation"),
            }
        )
    return violations


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Wrap FastAPI/Pydantic native validation errors in RFC 9457 format.

    All 422 errors use application/problem+json with a violations array,
    not FastAPI's default {detail: [...]}.
    """
    return await problem_detail_handler(
        request, ValidationError(violations_from_errors(list(exc.errors())))
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Convert generic HTTP exceptions (404 route, 405 method) into RFC 9457 format."""
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _problem_response(request, exc.status_code, "about:blank", detail, detail)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort 500. The traceback goes to the log, never to the caller."""
    logger.exception("unhandled_exception", error_type=type(exc).__name__)
    return _problem_response(
        request, 500, "about:blank", "Internal Server Error", "An unexpected error occurred"
    )


def response_meta(api_version: str) -> dict[str, Any]:
    """Envelope metadata attached to read responses."""
    return {
        "request_id": request_id_var.get(""),
        "timestamp": datetime.now(UTC).isoformat(),
        "api_version": api_version,
    }
