"""Enums and constants for HR Ops — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Employee / Directory ────────────────────────────────────────────

class EmployeeStatus(str, enum.Enum):
    pending = "pending"
    active = "active"
    inactive = "inactive"


class UserRole(str, enum.Enum):
    employee = "employee"
    teamlead = "teamlead"
    hr = "hr"
    admin = "admin"
    superadmin = "superadmin"


# Roles allowed to decide leave requests and run admin close-outs
APPROVER_ROLES: frozenset[UserRole] = frozenset(
    {UserRole.teamlead, UserRole.hr, UserRole.admin, UserRole.superadmin}
)

# Roles that receive new-registration alerts
REGISTRATION_ALERT_ROLES: frozenset[UserRole] = frozenset(
    {UserRole.hr, UserRole.admin, UserRole.superadmin}
)


# ── Leave ───────────────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


TERMINAL_LEAVE_STATUSES: frozenset[LeaveStatus] = frozenset(
    {LeaveStatus.approved, LeaveStatus.rejected, LeaveStatus.cancelled}
)


# ── Attendance ──────────────────────────────────────────────────────

class ClosedBy(str, enum.Enum):
    self_ = "self"
    system_midnight = "system-midnight"
    manual_admin = "manual-admin"


# ── Tasks ───────────────────────────────────────────────────────────

class TaskStatus(str, enum.Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


# ── Notifications ───────────────────────────────────────────────────

class NotificationType(str, enum.Enum):
    info = "info"
    approval = "approval"
    reminder = "reminder"
    alert = "alert"


class DedupType(str, enum.Enum):
    """Kinds of scheduled notifications guarded by the dedup ledger."""

    checkout_reminder = "checkout_reminder"
    task_due = "task_due"
    registration_alert = "registration_alert"


class EmitResult(str, enum.Enum):
    emitted = "emitted"
    suppressed = "suppressed"


# ── Misc constants ──────────────────────────────────────────────────

WEEKDAY_NAMES: tuple[str, ...] = (
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
)
DEFAULT_WORKING_DAYS: list[str] = ["monday", "tuesday", "wednesday", "thursday", "friday"]
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
