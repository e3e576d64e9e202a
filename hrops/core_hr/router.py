"""Directory router — employee lookup and activation.

Routes:
    /employees/{id}           — Engine view of an employee
    /employees/{id}/activate  — pending → active, opens leave balances
"""


import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from hrops.auth.dependencies import get_current_user, require_role
from hrops.common.constants import APPROVER_ROLES, UserRole
from hrops.common.exceptions import ForbiddenException
from hrops.core_hr.models import Employee
from hrops.core_hr.schemas import EmployeeActivated, EmployeeBrief
from hrops.core_hr.service import DirectoryService
from hrops.database import get_db

employees_router = APIRouter(prefix="", tags=["employees"])


# ── GET /employees/{id} ─────────────────────────────────────────────

@employees_router.get("/{employee_id}", response_model=EmployeeBrief)
async def get_employee(
    employee_id: uuid.UUID,
    current: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if current.id != employee_id and current.role not in APPROVER_ROLES:
        raise ForbiddenException("You can only view your own record.")
    return await DirectoryService.get_employee(db, employee_id)


# ── POST /employees/{id}/activate ───────────────────────────────────

@employees_router.post("/{employee_id}/activate", response_model=EmployeeActivated)
async def activate_employee(
    employee_id: uuid.UUID,
    current: Employee = Depends(
        require_role(UserRole.hr, UserRole.admin, UserRole.superadmin)
    ),
    db: AsyncSession = Depends(get_db),
):
    """Activate a pending registration and open this year's leave balances."""
    return await DirectoryService.activate_employee(db, employee_id, current.id)
