"""Common module — shared utilities for the HR operations engine."""

from hrops.common.audit import AuditTrail, create_audit_entry
from hrops.common.constants import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    ClosedBy,
    DedupType,
    EmitResult,
    EmployeeStatus,
    LeaveStatus,
    NotificationType,
    TaskStatus,
    UserRole,
)
from hrops.common.exceptions import (
    AppException,
    BusinessRuleError,
    ForbiddenException,
    NotFoundException,
    StateConflictError,
    ValidationException,
    register_exception_handlers,
)
from hrops.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
)

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Constants / Enums
    "ClosedBy",
    "DedupType",
    "EmitResult",
    "EmployeeStatus",
    "LeaveStatus",
    "NotificationType",
    "TaskStatus",
    "UserRole",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Exceptions
    "AppException",
    "BusinessRuleError",
    "ForbiddenException",
    "NotFoundException",
    "StateConflictError",
    "ValidationException",
    "register_exception_handlers",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]
