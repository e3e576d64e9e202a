"""Attendance ORM model: AttendanceSession (one per employee per work date)."""

from __future__ import annotations

import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hrops.common.constants import ClosedBy
from hrops.database import Base

SESSION_UNIQUE_CONSTRAINT = "uq_attendance_session_emp_date"


class AttendanceSession(Base):
    """Clock-in/clock-out pair for one work date.

    Times are wall-clock times of the organization's timezone on
    ``work_date``. Lateness is computed once at clock-in against
    ``late_threshold_applied`` and never recomputed.
    """

    __tablename__ = "attendance_sessions"
    __table_args__ = (
        sa.UniqueConstraint("employee_id", "work_date", name=SESSION_UNIQUE_CONSTRAINT),
        sa.Index("ix_attendance_sessions_open", "work_date", "clock_out"),
        sa.CheckConstraint("late_minutes >= 0", name="ck_attendance_session_late_minutes"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    work_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    clock_in: Mapped[time] = mapped_column(sa.Time, nullable=False)
    clock_out: Mapped[Optional[time]] = mapped_column(sa.Time)
    is_late: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    late_minutes: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    late_threshold_applied: Mapped[time] = mapped_column(sa.Time, nullable=False)
    hours_worked: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(5, 2))
    closed_by: Mapped[Optional[ClosedBy]] = mapped_column(
        sa.Enum(
            ClosedBy,
            name="session_closed_by",
            create_type=False,
            values_callable=lambda e: [m.value for m in e],
        )
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    employee: Mapped["hrops.core_hr.models.Employee"] = relationship()

    @property
    def is_open(self) -> bool:
        return self.clock_out is None
