"""Leave router — submit, decide, cancel, balances, resets.

All endpoints require authentication. Decision and balance-administration
endpoints enforce role checks.
"""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query

from sqlalchemy.ext.asyncio import AsyncSession

from hrops.auth.dependencies import get_current_user, require_role
from hrops.common.constants import APPROVER_ROLES, LeaveStatus, UserRole
from hrops.common.exceptions import ForbiddenException
from hrops.common.org_settings import current_leave_year
from hrops.common.pagination import PaginationParams
from hrops.core_hr.models import Employee
from hrops.database import get_db
from hrops.leave.ledger import LeaveLedger
from hrops.leave.schemas import (
    BalanceResetRequest,
    BulkResetRequest,
    BulkResetResult,
    LeaveBalanceOut,
    LeaveRejectRequest,
    LeaveRequestCreate,
    LeaveRequestOut,
    LeaveSummaryOut,
    OpenYearRequest,
    OpenYearResult,
)
from hrops.leave.service import LeaveService

router = APIRouter(prefix="", tags=["leave"])

_balance_admin = require_role(UserRole.hr, UserRole.admin, UserRole.superadmin)


# ── POST / — submit ─────────────────────────────────────────────────

@router.post("", response_model=LeaveRequestOut, status_code=201)
async def submit_leave(
    body: LeaveRequestCreate,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Submit a leave request for the authenticated employee."""
    return await LeaveService.submit(
        db, employee.id, body.leave_type, body.start_date, body.end_date, body.reason,
    )


# ── GET / — list ────────────────────────────────────────────────────

@router.get("")
async def list_leave_requests(
    status: Optional[LeaveStatus] = Query(None),
    employee_id: Optional[uuid.UUID] = Query(None),
    pagination: PaginationParams = Depends(),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Own requests; approvers may list anyone's (or everyone's)."""
    if employee.role not in APPROVER_ROLES:
        employee_id = employee.id
    return await LeaveService.list_requests(
        db, pagination, employee_id=employee_id, status=status,
    )


# ── Balances ────────────────────────────────────────────────────────
# NOTE: registered before /{request_id} so "balances" is not parsed as a UUID.

@router.get("/balances", response_model=list[LeaveBalanceOut])
async def my_balances(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Balances of the authenticated employee for ``year`` (default: current)."""
    return await LeaveLedger.get_balances(db, employee.id, year or current_leave_year())


@router.post("/balances/bulk-reset", response_model=BulkResetResult)
async def bulk_reset_balances(
    body: BulkResetRequest,
    actor: Employee = Depends(_balance_admin),
    db: AsyncSession = Depends(get_db),
):
    """Reset every balance of a year and leave type."""
    return await LeaveLedger.bulk_reset(
        db, body.year, body.new_total, body.leave_type, actor_id=actor.id,
    )


@router.post("/balances/open-year", response_model=OpenYearResult)
async def open_leave_year(
    body: OpenYearRequest,
    actor: Employee = Depends(_balance_admin),
    db: AsyncSession = Depends(get_db),
):
    """Open ``year`` balances for every active employee from leave-type defaults."""
    return await LeaveLedger.open_year(db, body.year, actor_id=actor.id)


@router.get("/balances/{employee_id}", response_model=list[LeaveBalanceOut])
async def employee_balances(
    employee_id: uuid.UUID,
    year: Optional[int] = Query(None, ge=2000, le=2100),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if employee.id != employee_id and employee.role not in APPROVER_ROLES:
        raise ForbiddenException("You can only view your own leave balances.")
    return await LeaveLedger.get_balances(db, employee_id, year or current_leave_year())


@router.put("/balances/{employee_id}/reset", response_model=LeaveBalanceOut)
async def reset_balance(
    employee_id: uuid.UUID,
    body: BalanceResetRequest,
    actor: Employee = Depends(_balance_admin),
    db: AsyncSession = Depends(get_db),
):
    """Set a new entitlement; rejected if it is below the days already used."""
    return await LeaveLedger.reset(
        db, employee_id, body.year, body.leave_type, body.new_total, actor_id=actor.id,
    )


@router.post("/balances/{employee_id}/resync", response_model=LeaveSummaryOut)
async def resync_summary(
    employee_id: uuid.UUID,
    actor: Employee = Depends(_balance_admin),
    db: AsyncSession = Depends(get_db),
):
    """Recompute the annual-leave summary on the employee row (current leave year)."""
    return await LeaveLedger.resync(db, employee_id)


# ── GET /{id} ───────────────────────────────────────────────────────

@router.get("/{request_id}", response_model=LeaveRequestOut)
async def get_leave_request(
    request_id: uuid.UUID,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    leave_req = await LeaveService.get_request(db, request_id)
    if leave_req.employee_id != employee.id and employee.role not in APPROVER_ROLES:
        raise ForbiddenException("You can only view your own leave requests.")
    return leave_req


# ── POST /{id}/approve ──────────────────────────────────────────────

@router.post("/{request_id}/approve", response_model=LeaveRequestOut)
async def approve_leave(
    request_id: uuid.UUID,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Approve a pending leave request. Debits the balance."""
    return await LeaveService.approve(db, request_id, employee.id)


# ── POST /{id}/reject ───────────────────────────────────────────────

@router.post("/{request_id}/reject", response_model=LeaveRequestOut)
async def reject_leave(
    request_id: uuid.UUID,
    body: LeaveRejectRequest,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Reject a pending leave request with a reason."""
    return await LeaveService.reject(db, request_id, employee.id, body.reason)


# ── POST /{id}/cancel ───────────────────────────────────────────────

@router.post("/{request_id}/cancel", response_model=LeaveRequestOut)
async def cancel_leave(
    request_id: uuid.UUID,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a pending or approved request. Approved days are restored."""
    return await LeaveService.cancel(db, request_id, actor_id=employee.id)
