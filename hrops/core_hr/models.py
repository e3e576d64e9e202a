"""Directory ORM model: Employee.

The directory owns identity fields; the engine only reads them, flips
``status`` on activation and maintains the annual-leave summary columns.
"""

from __future__ import annotations

import uuid
from datetime import datetime, time
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hrops.common.constants import DEFAULT_WORKING_DAYS, EmployeeStatus, UserRole
from hrops.database import Base

if TYPE_CHECKING:
    from hrops.leave.models import LeaveBalance, LeaveRequest


# ═════════════════════════════════════════════════════════════════════
# Employee
# ═════════════════════════════════════════════════════════════════════


class Employee(Base):
    """Employee record as seen by the attendance and leave engine."""

    __tablename__ = "employees"

    # ── Primary key ─────────────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # ── Identity (directory-owned) ──────────────────────────────────
    employee_code: Mapped[str] = mapped_column(
        sa.String(20), unique=True, nullable=False,
    )
    full_name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    email: Mapped[str] = mapped_column(
        sa.String(255), unique=True, nullable=False,
    )
    status: Mapped[EmployeeStatus] = mapped_column(
        sa.Enum(EmployeeStatus, name="employee_status", create_type=False),
        nullable=False,
        default=EmployeeStatus.pending,
    )
    role: Mapped[UserRole] = mapped_column(
        sa.Enum(UserRole, name="user_role", create_type=False),
        nullable=False,
        default=UserRole.employee,
    )

    # ── Scheduling ──────────────────────────────────────────────────
    working_days: Mapped[list] = mapped_column(
        JSONB, nullable=False, default=lambda: list(DEFAULT_WORKING_DAYS),
    )
    # NULL → organization threshold
    late_threshold: Mapped[Optional[time]] = mapped_column(sa.Time)

    # ── Annual-leave summary (projection of leave_balances) ─────────
    total_annual_leave: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=0,
    )
    used_annual_leave: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=0,
    )
    remaining_annual_leave: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=0,
    )

    # ── Timestamps ──────────────────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    # ── Relationships ───────────────────────────────────────────────
    leave_balances: Mapped[list["LeaveBalance"]] = relationship(
        back_populates="employee",
    )
    leave_requests: Mapped[list["LeaveRequest"]] = relationship(
        back_populates="employee",
        foreign_keys="LeaveRequest.employee_id",
    )

    @property
    def is_active(self) -> bool:
        return self.status == EmployeeStatus.active

    def __repr__(self) -> str:
        return f"<Employee {self.employee_code} {self.full_name}>"
