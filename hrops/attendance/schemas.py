"""Attendance Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from hrops.common.constants import ClosedBy


# ═════════════════════════════════════════════════════════════════════
# Requests
# ═════════════════════════════════════════════════════════════════════


class ClockRequest(BaseModel):
    """Optional explicit timestamp; defaults to now in the organization timezone."""

    at: Optional[datetime] = Field(
        None, description="Event time; naive values are read as organization-local"
    )


class CloseAllRequest(BaseModel):
    """Admin close-out of every open session on a date."""

    work_date: Optional[date] = None
    at: Optional[time] = Field(None, description="Clock-out time to record (default: now)")


class LateThresholdUpdate(BaseModel):
    threshold: time


# ═════════════════════════════════════════════════════════════════════
# Responses
# ═════════════════════════════════════════════════════════════════════


class AttendanceSessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    work_date: date
    clock_in: time
    clock_out: Optional[time] = None
    is_late: bool
    late_minutes: int
    late_threshold_applied: time
    hours_worked: Optional[Decimal] = None
    closed_by: Optional[ClosedBy] = None


class CloseOutResult(BaseModel):
    """Outcome of a bulk close-out run."""

    closed: int = 0
    failed: list[uuid.UUID] = Field(default_factory=list)
    sessions: list[AttendanceSessionOut] = Field(
        default_factory=list,
        description="Sessions closed by this run, with their final clock-out and hours",
    )
