"""Error taxonomy and structured error response handlers.

Domain code raises the exceptions below. The route layer renders every
error (validation, HTTP, domain, or unexpected) as:

    {
      "error": {
        "code": "DESCRIPTIVE_CODE",
        "message": "Human-readable explanation of what went wrong.",
        "request_id": "abc123...",
        ...extra fields when relevant
      }
    }
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


# ── Exception hierarchy ───────────────────────────────────────────────────────


class RainfallError(Exception):
    """Base class for all domain errors."""

    status_code = 500
    code = "INTERNAL_ERROR"


class ConfigError(RainfallError):
    """Required configuration is missing (e.g. no seed credentials at cold start)."""

    code = "CONFIG_ERROR"


class AuthError(RainfallError):
    """The provider rejected our credentials or the token refresh failed."""

    status_code = 502
    code = "UPSTREAM_AUTH_ERROR"


class ProviderUnavailable(RainfallError):
    """Network error, timeout, or non-2xx response from the measurement provider."""

    status_code = 503
    code = "UPSTREAM_UNAVAILABLE"

    def __init__(self, detail: str, status: int = 0):
        self.status = status
        self.detail = detail
        super().__init__(f"Provider {status}: {detail}" if status else f"Provider: {detail}")


class TokenExpiredSignal(RainfallError):
    """The provider reported an expired access token; refresh and retry once."""

    status_code = 502
    code = "UPSTREAM_TOKEN_EXPIRED"


class NotFound(RainfallError):
    """Unknown resource, e.g. a station id that was never registered."""

    status_code = 404
    code = "NOT_FOUND"


# Failures of a live provider call; the read path converts these to cache reads.
PROVIDER_ERRORS = (ProviderUnavailable, AuthError, TokenExpiredSignal)


_STATUS_CODE_MAP: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    422: "VALIDATION_ERROR",
    502: "UPSTREAM_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        request_id = getattr(request.state, "request_id", None)

        if isinstance(exc.detail, dict):
            body = {"error": {**exc.detail, "request_id": request_id}}
        else:
            body = {
                "error": {
                    "code": _STATUS_CODE_MAP.get(exc.status_code, "ERROR"),
                    "message": str(exc.detail),
                    "request_id": request_id,
                }
            }

        return JSONResponse(
            status_code=exc.status_code,
            content=body,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        request_id = getattr(request.state, "request_id", None)

        fields = []
        for err in exc.errors():
            loc = " -> ".join(str(part) for part in err["loc"])
            fields.append({"field": loc, "message": err["msg"], "type": err["type"]})

        return JSONResponse(
            status_code=422,
            content={
                "error": {
                    "code": "VALIDATION_ERROR",
                    "message": f"{len(fields)} validation error(s) in your request.",
                    "details": fields,
                    "request_id": request_id,
                }
            },
        )

    @app.exception_handler(RainfallError)
    async def domain_error_handler(request: Request, exc: RainfallError) -> JSONResponse:
        request_id = getattr(request.state, "request_id", None)
        if exc.status_code >= 500:
            logger.warning("Request failed with %s (request_id=%s): %s", exc.code, request_id, exc)

        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "code": exc.code,
                    "message": str(exc),
                    "request_id": request_id,
                }
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        request_id = getattr(request.state, "request_id", None)
        logger.exception("Unhandled error (request_id=%s)", request_id)

        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": (
                        "An unexpected error occurred. "
                        "If this persists, check the server logs for the request_id."
                    ),
                    "request_id": request_id,
                }
            },
        )
