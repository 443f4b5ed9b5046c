"""Custom exceptions and RFC 7807 Problem Detail error handlers."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from compliance_engine.common.constants import QueryOutcome

BASE_ERROR_URI = "https://compliance.local/errors"


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all application exceptions → RFC 7807 JSON."""

    outcome: Optional[QueryOutcome] = None

    def __init__(
        self,
        status_code: int,
        error_type: str,
        title: str,
        detail: str,
        errors: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        self.headers = headers
        super().__init__(detail)


class DataIntegrityError(AppException):
    """409 — ingested data cannot form a valid snapshot (cycle, duplicate id, orphan)."""

    def __init__(self, detail: str, errors: Optional[dict[str, Any]] = None) -> None:
        super().__init__(
            status_code=409,
            error_type="data-integrity",
            title="Data Integrity Error",
            detail=detail,
            errors=errors,
        )


class ScopeViolation(AppException):
    """403 — requested scope lies outside the caller's resolved grant."""

    outcome = QueryOutcome.rejected

    def __init__(
        self,
        detail: str = "The requested scope is outside your authorized view.",
    ) -> None:
        super().__init__(
            status_code=403,
            error_type="scope-violation",
            title="Scope Violation",
            detail=detail,
        )


class InvalidQuery(AppException):
    """422 — query rejected before any computation."""

    outcome = QueryOutcome.invalid

    def __init__(self, error_type: str, title: str, field: str, message: str) -> None:
        super().__init__(
            status_code=422,
            error_type=error_type,
            title=title,
            detail=message,
            errors={field: [message]},
        )


class UnknownDimension(InvalidQuery):
    def __init__(self, dimension: Any) -> None:
        super().__init__(
            error_type="unknown-dimension",
            title="Unknown Dimension",
            field="dimension",
            message=f"Dimension '{dimension}' is not supported.",
        )


class InvalidWindow(InvalidQuery):
    def __init__(self, message: str) -> None:
        super().__init__(
            error_type="invalid-window",
            title="Invalid Window",
            field="window",
            message=message,
        )


class StaleSnapshotTimeout(AppException):
    """503 — no complete snapshot is available to serve the query."""

    def __init__(self, retry_after: int) -> None:
        super().__init__(
            status_code=503,
            error_type="snapshot-unavailable",
            title="Snapshot Unavailable",
            detail="No complete compliance snapshot is available yet. Retry later.",
            headers={"Retry-After": str(retry_after)},
        )
        self.retry_after = retry_after


class ForbiddenException(AppException):
    """403 — insufficient role tier for an administrative endpoint."""

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


class NotFoundException(AppException):
    """404 — entity not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
        )


# ── RFC 7807 builder ────────────────────────────────────────────────

def _build_problem_detail(exc: AppException, request: Request) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{exc.error_type}",
        "title": exc.title,
        "status": exc.status_code,
        "detail": exc.detail,
        "instance": str(request.url.path),
    }
    if exc.outcome is not None:
        body["outcome"] = exc.outcome.value
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
        headers=exc.headers,
    )


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

    return JSONResponse(
        status_code=422,
        content={
            "type": f"{BASE_ERROR_URI}/validation-error",
            "title": "Validation Error",
            "status": 422,
            "detail": "Request validation failed.",
            "instance": str(request.url.path),
            "outcome": QueryOutcome.invalid.value,
            "errors": field_errors,
        },
        media_type="application/problem+json",
    )


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
