"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Request  → request bodies (write)
  - *Response / *Out    → response bodies (read)
  - *Brief              → compact embedded representations
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from hrops.common.constants import LeaveStatus


# ═════════════════════════════════════════════════════════════════════
# Leave Balance
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceOut(BaseModel):
    """Balance of one leave type for one year."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    year: int
    leave_type: str
    total_days: int
    used_days: int
    remaining_days: int


class LeaveSummaryOut(BaseModel):
    """Annual-leave summary kept on the employee row."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    total_annual_leave: int
    used_annual_leave: int
    remaining_annual_leave: int


class BalanceResetRequest(BaseModel):
    """Set a new entitlement for one employee."""

    year: int = Field(..., ge=2000, le=2100)
    leave_type: str = Field(..., min_length=1, max_length=20)
    new_total: int = Field(..., ge=0)


class BulkResetRequest(BaseModel):
    """Set a new entitlement for every balance of a year and leave type."""

    year: int = Field(..., ge=2000, le=2100)
    leave_type: str = Field(..., min_length=1, max_length=20)
    new_total: int = Field(..., ge=0)


class BulkResetResult(BaseModel):
    year: int
    leave_type: str
    new_total: int
    reset_count: int = 0
    skipped: list[uuid.UUID] = Field(
        default_factory=list,
        description="Employees whose used days exceed the new total",
    )


class OpenYearRequest(BaseModel):
    """Open a leave year for every active employee."""

    year: int = Field(..., ge=2000, le=2100)


class OpenYearResult(BaseModel):
    year: int
    employees: int = Field(0, description="Employees that received at least one new balance")
    balances_opened: int = 0
    failed: list[uuid.UUID] = Field(default_factory=list)


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Create
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestCreate(BaseModel):
    """Payload for submitting a leave request."""

    leave_type: str = Field(..., min_length=1, max_length=20)
    start_date: date = Field(..., description="Leave start date (inclusive)")
    end_date: date = Field(..., description="Leave end date (inclusive)")
    reason: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def validate_dates(self) -> "LeaveRequestCreate":
        if self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date.")
        return self


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Response
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestOut(BaseModel):
    """Full leave request response."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type: str
    start_date: date
    end_date: date
    computed_days: int
    reason: Optional[str] = None
    status: LeaveStatus
    decided_by: Optional[uuid.UUID] = None
    decided_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ═════════════════════════════════════════════════════════════════════
# Leave Reject
# ═════════════════════════════════════════════════════════════════════


class LeaveRejectRequest(BaseModel):
    """Payload for rejecting a leave request."""

    reason: str = Field(..., min_length=1, max_length=500)
