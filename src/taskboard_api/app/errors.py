"""Error taxonomy and the FastAPI handlers that turn it into HTTP responses.

Domain code raises the exceptions below; it never builds HTTP responses itself.
`register_exception_handlers(app)` maps them (and framework validation errors)
to JSON bodies of the form {"error": ..., "code": ..., "details": {...}}.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class TaskboardError(Exception):
    """Base class for every error surfaced to callers."""

    error_code = "TASKBOARD_ERROR"
    status_code = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message, "code": self.error_code}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(TaskboardError):
    error_code = "NOT_FOUND"
    status_code = 404


class InvalidArgumentError(TaskboardError):
    error_code = "INVALID_ARGUMENT"
    status_code = 400


class ForbiddenError(TaskboardError):
    error_code = "FORBIDDEN"
    status_code = 403


class UpstreamUnavailableError(TaskboardError):
    """Fleet API unreachable, timed out, or answered with a non-2xx status."""

    error_code = "UPSTREAM_UNAVAILABLE"
    status_code = 502


class InvalidSessionError(TaskboardError):
    error_code = "INVALID_SESSION"
    status_code = 404


def task_not_found(task_id: str) -> NotFoundError:
    return NotFoundError("Task not found", details={"task_id": task_id})


def _taskboard_exception_handler(request: Request, exc: TaskboardError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def _validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies are InvalidArgument (400), not FastAPI's default 422."""
    error = InvalidArgumentError(
        "Request validation failed",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def _generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("request event=unhandled_error path=%s", request.url.path)
    debug = bool(getattr(request.app.state, "debug", False))
    message = str(exc) if debug else "Internal server error"
    return JSONResponse(status_code=500, content={"error": message, "code": "INTERNAL_ERROR"})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TaskboardError, _taskboard_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(Exception, _generic_exception_handler)
