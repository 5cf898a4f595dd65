"""FastAPI middleware for request IDs, access logging and problem+json errors."""

import time
from collections.abc import Awaitable, Callable
from contextvars import ContextVar
from uuid import uuid4

import structlog
from fastapi import Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from shared.exceptions import HealthCacheError, ProblemDetailError

logger = structlog.get_logger()

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

PROBLEM_BASE_URI = "https://api.tidepool.org/problems"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag every request with an X-Request-ID and log its outcome.

    A caller-supplied X-Request-ID is echoed back; otherwise a UUID v4 is
    generated. The ID is bound into the structlog context for the request.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        rid = request.headers.get("X-Request-ID") or str(uuid4())
        token = request_id_var.set(rid)
        structlog.contextvars.bind_contextvars(request_id=rid)
        start = time.monotonic()

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = rid
            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round((time.monotonic() - start) * 1000, 2),
            )
            return response
        finally:
            structlog.contextvars.unbind_contextvars("request_id")
            request_id_var.reset(token)


def _problem(request: Request, status: int, body: dict) -> JSONResponse:
    body = {**body, "status": status, "instance": str(request.url.path)}
    rid = request_id_var.get("")
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=status, content=body, media_type="application/problem+json")


async def problem_detail_handler(request: Request, exc: ProblemDetailError) -> JSONResponse:
    """Render a ProblemDetailError as an RFC 9457 response."""
    body: dict = {"type": exc.type_uri, "title": exc.title, "detail": exc.detail}
    if exc.violations:
        body["violations"] = exc.violations
    return _problem(request, exc.status, body)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render FastAPI parameter validation errors as problem+json with violations.

    The location prefix ("query", "path", "body") is dropped from field names.
    """
    violations = []
    for err in exc.errors():
        loc = err.get("loc", ())
        field = ".".join(str(part) for part in loc[1:]) if len(loc) > 1 else ""
        violations.append(
            {
                "field": field or "(root)",
                "message": err.get("msg", "Validation error"),
                "constraint": err.get("type", "validation"),
            }
        )

    return _problem(
        request,
        422,
        {
            "type": f"{PROBLEM_BASE_URI}/validation-error",
            "title": "Validation Error",
            "detail": f"Request contains {len(violations)} invalid parameter(s)",
            "violations": violations,
        },
    )


async def health_cache_error_handler(request: Request, exc: HealthCacheError) -> JSONResponse:
    """A pipeline failure that reached the API, e.g. an unreadable state store."""
    logger.error("cache_operation_failed", path=request.url.path, error=str(exc))
    return _problem(
        request,
        503,
        {
            "type": f"{PROBLEM_BASE_URI}/cache-operation-failed",
            "title": "Cache Operation Failed",
            "detail": str(exc),
        },
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render generic HTTP exceptions (404, 405) as problem+json."""
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _problem(
        request,
        exc.status_code,
        {"type": "about:blank", "title": detail, "detail": detail},
    )
