"""Application errors and the FastAPI exception handlers that render them.

Every error leaves the API with the same body shape::

    {"error": {"message": "...", "code": "...", "details": {...}}}
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

_DEFAULT_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
}


class AppError(HTTPException):
    """An HTTP error carrying a machine-readable ``code``."""

    def __init__(
        self,
        status_code: int,
        message: str,
        code: str | None = None,
        details: Any = None,
    ):
        super().__init__(status_code=status_code, detail=message)
        self.message = message
        self.code = code or _DEFAULT_CODES.get(status_code, "ERROR")
        self.details = details

    def __repr__(self) -> str:
        return f"AppError({self.status_code}, {self.code!r}, {self.message!r})"

    # ── Constructors ──────────────────────────────────────────────────────

    @classmethod
    def bad_request(cls, message: str, details: Any = None) -> AppError:
        return cls(400, message, "BAD_REQUEST", details)

    @classmethod
    def unauthorized(cls, message: str = "Authentication required") -> AppError:
        return cls(401, message, "UNAUTHORIZED")

    @classmethod
    def forbidden(cls, message: str = "Access denied") -> AppError:
        return cls(403, message, "FORBIDDEN")

    @classmethod
    def not_found(cls, resource: str = "Resource") -> AppError:
        return cls(404, f"{resource} not found", "NOT_FOUND")

    @classmethod
    def conflict(cls, message: str, code: str = "CONFLICT", details: Any = None) -> AppError:
        return cls(409, message, code, details)


def error_body(message: str, code: str, details: Any = None) -> dict:
    error: dict[str, Any] = {"message": message, "code": code}
    if details is not None:
        error["details"] = details
    return {"error": error}


# ── Handlers ──────────────────────────────────────────────────────────────────


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render AppError and plain HTTPExceptions in the uniform error shape."""
    if isinstance(exc, AppError):
        body = error_body(exc.message, exc.code, exc.details)
    else:
        code = _DEFAULT_CODES.get(exc.status_code, "ERROR")
        body = error_body(str(exc.detail), code)

    if exc.status_code >= 500:
        logger.error("%s %s -> %s", request.method, request.url.path, exc.detail)
    else:
        logger.warning(
            "%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.detail
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=body,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Request validation failures are reported as 400 with field details."""
    details = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    logger.warning("%s %s -> validation failed: %s", request.method, request.url.path, details)
    return JSONResponse(
        status_code=400,
        content=error_body("Validation failed", "VALIDATION_ERROR", details),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unexpected failures with an error id the client can quote."""
    error_id = uuid.uuid4().hex[:12]
    logger.error(
        "Unhandled exception [%s] in %s %s: %s",
        error_id,
        request.method,
        request.url.path,
        exc,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content=error_body("Internal server error", "INTERNAL_ERROR", {"error_id": error_id}),
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register the exception handlers on the application."""
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
    logger.debug("Exception handlers registered")
