"""Custom exceptions and RFC 7807 Problem Detail error handlers."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

BASE_ERROR_URI = "https://hrops.local/errors"


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
    """422 — malformed input, rejected before any mutation."""

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__(
            status_code=422,
            error_type="validation-error",
            title="Validation Error",
            detail="One or more fields failed validation.",
            errors=errors,
        )


class InvalidRangeError(ValidationException):
    """End date before start date."""

    def __init__(self, start: Any, end: Any) -> None:
        super().__init__(
            {"date_range": [f"end date {end} is before start date {start}."]}
        )


class ZeroDurationError(ValidationException):
    """Requested range contains no working days."""

    def __init__(self, start: Any, end: Any) -> None:
        super().__init__(
            {"date_range": [f"{start} to {end} contains no working days."]}
        )


# ── State conflicts (409, caller must re-fetch) ─────────────────────

class StateConflictError(AppException):
    """409 — the entity is not in a state that allows the operation."""

    def __init__(self, error_type: str, title: str, detail: str) -> None:
        super().__init__(
            status_code=409,
            error_type=error_type,
            title=title,
            detail=detail,
        )


class InvalidStateError(StateConflictError):
    def __init__(self, entity_type: str, current: str, action: str) -> None:
        super().__init__(
            "invalid-state",
            "Invalid State Transition",
            f"Cannot {action} {entity_type} in status '{current}'.",
        )


class DuplicateSessionError(StateConflictError):
    def __init__(self, employee_id: Any, work_date: Any) -> None:
        super().__init__(
            "duplicate-session",
            "Already Clocked In",
            f"Employee '{employee_id}' already has an attendance session on {work_date}.",
        )


class NoOpenSessionError(StateConflictError):
    def __init__(self, employee_id: Any, work_date: Any) -> None:
        super().__init__(
            "no-open-session",
            "Not Clocked In",
            f"Employee '{employee_id}' has no attendance session on {work_date}.",
        )


class AlreadyClosedError(StateConflictError):
    def __init__(self, employee_id: Any, work_date: Any) -> None:
        super().__init__(
            "already-closed",
            "Already Clocked Out",
            f"Attendance session of '{employee_id}' on {work_date} is already closed.",
        )


class OverlappingLeaveError(StateConflictError):
    def __init__(self, start: Any, end: Any) -> None:
        super().__init__(
            "overlapping-leave",
            "Overlapping Leave Request",
            f"A pending or approved leave request already covers part of {start} to {end}.",
        )


# ── Business-rule rejections (surfaced verbatim to the approver) ────

class BusinessRuleError(AppException):
    """422 — the request is well-formed but violates a ledger rule."""

    def __init__(self, error_type: str, title: str, detail: str) -> None:
        super().__init__(
            status_code=422,
            error_type=error_type,
            title=title,
            detail=detail,
        )


class InsufficientBalanceError(BusinessRuleError):
    def __init__(self, leave_type: str, requested: int, remaining: int) -> None:
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            "insufficient-balance",
            "Insufficient Leave Balance",
            f"Requested {requested} day(s) of {leave_type} leave "
            f"but only {remaining} day(s) remain.",
        )


class NegativeBalanceError(BusinessRuleError):
    def __init__(self, leave_type: str, new_total: int, used: int) -> None:
        super().__init__(
            "negative-balance",
            "Negative Leave Balance",
            f"Cannot set {leave_type} total to {new_total}: "
            f"{used} day(s) are already used.",
        )


class LedgerInvariantError(AppException):
    """500 — a balance row violates remaining == total - used."""

    def __init__(self, balance_id: Any) -> None:
        super().__init__(
            status_code=500,
            error_type="ledger-invariant",
            title="Ledger Invariant Violated",
            detail=f"Leave balance '{balance_id}' is inconsistent.",
        )


# ── Store failures ──────────────────────────────────────────────────

class TransientStoreError(AppException):
    """503 — lock timeout or lost connection; the whole operation may be retried."""

    def __init__(self, detail: str = "The data store is temporarily unavailable.") -> None:
        super().__init__(
            status_code=503,
            error_type="store-unavailable",
            title="Service Unavailable",
            detail=detail,
        )


# serialization_failure, deadlock_detected, lock_not_available
_RETRYABLE_PGCODES = {"40001", "40P01", "55P03"}


def is_transient(exc: BaseException) -> bool:
    """True when ``exc`` is a store failure that a fresh attempt may not hit."""
    if isinstance(exc, (TransientStoreError, OperationalError)):
        return True
    if isinstance(exc, DBAPIError):
        if exc.connection_invalidated:
            return True
        pgcode = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
        return pgcode in _RETRYABLE_PGCODES
    return False


# unique_violation
_UNIQUE_VIOLATION = "23505"


def _constraint_name(orig: Any) -> Optional[str]:
    diag = getattr(orig, "diag", None)
    name = getattr(diag, "constraint_name", None) or getattr(orig, "constraint_name", None)
    if name is None and orig.__cause__ is not None:
        name = getattr(orig.__cause__, "constraint_name", None)
    return name


def is_unique_violation(exc: BaseException, constraint: Optional[str] = None) -> bool:
    """True when ``exc`` is a duplicate-key error, on ``constraint`` if one is named.

    SQLite reports no constraint name, so any UNIQUE failure matches there.
    """
    if not isinstance(exc, IntegrityError):
        return False
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code is not None:
        if code != _UNIQUE_VIOLATION:
            return False
        name = _constraint_name(orig)
        return constraint is None or name is None or name == constraint
    return "UNIQUE constraint failed" in str(orig)


# ── RFC 7807 builder ────────────────────────────────────────────────

def _build_problem_detail(exc: AppException, request: Request) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{exc.error_type}",
        "title": exc.title,
        "status": exc.status_code,
        "detail": exc.detail,
        "instance": str(request.url.path),
    }
    if exc.errors:
        body["errors"] = exc.errors
    return body


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    headers = {"Retry-After": "1"} if isinstance(exc, TransientStoreError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content=_build_problem_detail(exc, request),
        media_type="application/problem+json",
        headers=headers,
    )


async def _handle_store_error(
    request: Request,
    exc: DBAPIError,
) -> JSONResponse:
    if not is_transient(exc):
        raise exc
    return await _handle_app_exception(request, TransientStoreError())


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
            "errors": field_errors,
        },
        media_type="application/problem+json",
    )


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(DBAPIError, _handle_store_error)              # type: ignore[arg-type]
