"""Custom exceptions and RFC 7807 Problem Detail error handlers."""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

BASE_ERROR_URI = "https://portal.university.edu/errors"

logger = logging.getLogger(__name__)


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all application exceptions → RFC 7807 JSON."""

    def __init__(
        self,
        status_code: int,
        error_type: str,
        title: str,
        detail: str,
        errors: Optional[dict[str, Any]] = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        super().__init__(detail)


class NotFoundException(AppException):
    """404 — entity not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
        )


class ForbiddenException(AppException):
    """403 — insufficient permissions."""

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action.",
    ) -> None:
        super().__init__(
            status_code=403,
            error_type="forbidden",
            title="Forbidden",
            detail=detail,
        )


class ValidationException(AppException):
    """422 — request-body validation failures."""

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__(
            status_code=422,
            error_type="validation-error",
            title="Validation Error",
            detail="One or more fields failed validation.",
            errors=errors,
        )


# ── Leave workflow ──────────────────────────────────────────────────

class InvalidDateRange(AppException):
    """400 — start/end dates rejected by leave policy."""

    def __init__(self, detail: str) -> None:
        super().__init__(
            status_code=400,
            error_type="invalid-date-range",
            title="Invalid Date Range",
            detail=detail,
            errors={"dates": [detail]},
        )


class UnknownLeaveType(AppException):
    """400 — leave type missing or retired."""

    def __init__(self, leave_type_id: Any) -> None:
        super().__init__(
            status_code=400,
            error_type="unknown-leave-type",
            title="Unknown Leave Type",
            detail=f"Leave type '{leave_type_id}' does not exist or is no longer active.",
            errors={"type_id": [f"Unknown leave type '{leave_type_id}'."]},
        )


class InsufficientBalance(AppException):
    """400 — requested days exceed the remaining balance."""

    def __init__(self, available: int, requested: int) -> None:
        self.available = available
        self.requested = requested
        super().__init__(
            status_code=400,
            error_type="insufficient-balance",
            title="Insufficient Balance",
            detail=(
                f"Insufficient leave balance. "
                f"Available: {available}, Requested: {requested}."
            ),
            errors={"balance": [f"Available: {available}, Requested: {requested}."]},
        )


class InvalidTransition(AppException):
    """400 — leave request is already in a terminal state."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            status_code=400,
            error_type="invalid-transition",
            title="Invalid Status Transition",
            detail=f"Leave request is already {current}; cannot move to {target}.",
        )


class ConcurrencyConflict(AppException):
    """409 — concurrent update collided; safe to retry the operation."""

    def __init__(
        self,
        detail: str = "The request conflicted with a concurrent update. Please retry.",
    ) -> None:
        super().__init__(
            status_code=409,
            error_type="concurrency-conflict",
            title="Conflict",
            detail=detail,
        )


class StorageError(AppException):
    """500 — transient storage fault. Never carries internal detail."""

    def __init__(self) -> None:
        super().__init__(
            status_code=500,
            error_type="storage-error",
            title="Server Error",
            detail="Server error. Please try again later.",
        )


# ── RFC 7807 builder ────────────────────────────────────────────────

def _build_problem_detail(exc: AppException, request: Request) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{exc.error_type}",
        "title": exc.title,
        "status": exc.status_code,
        "detail": exc.detail,
        "instance": str(request.url.path),
        # The browser frontend reads ``error`` for its toast messages
        "error": exc.detail,
    }
    if exc.errors:
        body["errors"] = exc.errors
    return body


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_build_problem_detail(exc, request),
        media_type="application/problem+json",
    )


async def _handle_storage_error(
    request: Request,
    exc: SQLAlchemyError,
) -> JSONResponse:
    logger.error(
        "Unhandled database error on %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )
    return await _handle_app_exception(request, StorageError())


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc", ())
        name = (
            ".".join(str(p) for p in loc[1:])
            if len(loc) > 1
            else str(loc[0]) if loc else "unknown"
        )
        field_errors.setdefault(name, []).append(err.get("msg", "Invalid value"))

    return await _handle_app_exception(request, ValidationException(field_errors))


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(SQLAlchemyError, _handle_storage_error)       # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
