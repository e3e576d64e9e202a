"""Attendance router — clock in/out, admin close-out, late threshold.

Timestamps are read in the organization's timezone; the work date is the
local calendar date of the event.
"""


import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from hrops.attendance.schemas import (
    AttendanceSessionOut,
    ClockRequest,
    CloseAllRequest,
    CloseOutResult,
    LateThresholdUpdate,
)
from hrops.attendance.service import AttendanceService
from hrops.auth.dependencies import get_current_user, require_role
from hrops.common.constants import APPROVER_ROLES, UserRole
from hrops.common.exceptions import ForbiddenException
from hrops.common.org_settings import (
    get_org_late_threshold,
    org_now,
    org_today,
    set_org_late_threshold,
    to_org_local,
)
from hrops.core_hr.models import Employee
from hrops.database import get_db

router = APIRouter(prefix="", tags=["attendance"])

_attendance_admin = require_role(UserRole.hr, UserRole.admin, UserRole.superadmin)


# ── POST /clock-in ──────────────────────────────────────────────────

@router.post("/clock-in", response_model=AttendanceSessionOut, status_code=201)
async def clock_in(
    body: Optional[ClockRequest] = None,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Open today's session. Lateness is fixed at this point."""
    moment = to_org_local(body.at) if body and body.at else org_now()
    return await AttendanceService.clock_in(db, employee.id, moment.date(), moment.time())


# ── POST /clock-out ─────────────────────────────────────────────────

@router.post("/clock-out", response_model=AttendanceSessionOut)
async def clock_out(
    body: Optional[ClockRequest] = None,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Close today's session and record worked hours."""
    moment = to_org_local(body.at) if body and body.at else org_now()
    return await AttendanceService.clock_out(db, employee.id, moment.date(), moment.time())


# ── GET /today ──────────────────────────────────────────────────────

@router.get("/today", response_model=AttendanceSessionOut)
async def my_session_today(
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await AttendanceService.get_session(db, employee.id, org_today())


# ── GET /open — sessions still missing a clock-out ─────────────────

@router.get("/open", response_model=list[AttendanceSessionOut])
async def open_sessions(
    work_date: Optional[date] = Query(None),
    employee: Employee = Depends(_attendance_admin),
    db: AsyncSession = Depends(get_db),
):
    return await AttendanceService.list_open_sessions(db, work_date or org_today())


# ── POST /close-all — admin close-out ───────────────────────────────

@router.post("/close-all", response_model=CloseOutResult)
async def close_all_open(
    body: CloseAllRequest,
    employee: Employee = Depends(_attendance_admin),
    db: AsyncSession = Depends(get_db),
):
    """Close every open session of a date (default: today, now)."""
    now = org_now()
    return await AttendanceService.close_all_open(
        db,
        body.work_date or now.date(),
        body.at or now.time(),
        employee.id,
    )


# ── Late threshold ──────────────────────────────────────────────────

@router.get("/late-threshold")
async def get_late_threshold(
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    threshold = await get_org_late_threshold(db)
    return {"data": {"threshold": threshold.isoformat(timespec="seconds")}}


@router.put("/late-threshold")
async def update_late_threshold(
    body: LateThresholdUpdate,
    employee: Employee = Depends(
        require_role(UserRole.admin, UserRole.superadmin)
    ),
    db: AsyncSession = Depends(get_db),
):
    """Change the organization threshold; applies to future clock-ins only."""
    setting = await set_org_late_threshold(db, body.threshold, updated_by=employee.id)
    return {"message": "Late threshold updated", "data": setting.value}


# ── GET /{employee_id}/{work_date} ──────────────────────────────────

@router.get("/{employee_id}/{work_date}", response_model=AttendanceSessionOut)
async def get_session(
    employee_id: uuid.UUID,
    work_date: date,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if employee.id != employee_id and employee.role not in APPROVER_ROLES:
        raise ForbiddenException("You can only view your own attendance.")
    return await AttendanceService.get_session(db, employee_id, work_date)
