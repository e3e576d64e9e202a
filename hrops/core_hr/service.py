"""Directory service — the engine's read side of the employee directory plus
the activation hook that opens leave balances.

Uses:
  - ``LeaveLedger.accrue`` from hrops.leave.ledger
  - ``create_audit_entry`` from hrops.common.audit
  - ``NotFoundException / InvalidStateError`` from hrops.common.exceptions
"""

from __future__ import annotations

import logging
import uuid
from typing import Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hrops.common.audit import create_audit_entry
from hrops.common.constants import EmployeeStatus, UserRole
from hrops.common.exceptions import InvalidStateError, NotFoundException
from hrops.common.org_settings import current_leave_year
from hrops.core_hr.models import Employee
from hrops.core_hr.schemas import EmployeeActivated, EmployeeBrief
from hrops.leave.ledger import LeaveLedger

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════
# DirectoryService
# ═════════════════════════════════════════════════════════════════════


class DirectoryService:
    """Read-only employee lookups and the pending → active transition."""

    # ── Lookups ─────────────────────────────────────────────────────

    @staticmethod
    async def load_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> Employee:
        query = select(Employee).where(Employee.id == employee_id)
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        employee = result.scalars().first()
        if employee is None:
            raise NotFoundException("Employee", str(employee_id))
        return employee

    @staticmethod
    async def get_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
    ) -> EmployeeBrief:
        employee = await DirectoryService.load_employee(db, employee_id)
        return EmployeeBrief.model_validate(employee)

    @staticmethod
    async def list_active_with_roles(
        db: AsyncSession,
        roles: Iterable[UserRole],
    ) -> Sequence[Employee]:
        result = await db.execute(
            select(Employee)
            .where(
                Employee.status == EmployeeStatus.active,
                Employee.role.in_(list(roles)),
            )
            .order_by(Employee.employee_code)
        )
        return result.scalars().all()

    @staticmethod
    async def list_pending(db: AsyncSession) -> Sequence[Employee]:
        result = await db.execute(
            select(Employee)
            .where(Employee.status == EmployeeStatus.pending)
            .order_by(Employee.created_at)
        )
        return result.scalars().all()

    # ── Activation ──────────────────────────────────────────────────

    @staticmethod
    async def activate_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
        *,
        year: Optional[int] = None,
    ) -> EmployeeActivated:
        """Move a pending employee to active and open this year's balances
        for every active leave type at its ``default_days``."""
        employee = await DirectoryService.load_employee(db, employee_id, for_update=True)
        if employee.status != EmployeeStatus.pending:
            raise InvalidStateError("employee", employee.status.value, "activate")

        year = year or current_leave_year()
        employee.status = EmployeeStatus.active
        await db.flush()

        await LeaveLedger.accrue(db, employee.id, year, actor_id=actor_id)
        await LeaveLedger.resync(db, employee.id)

        await create_audit_entry(
            db,
            action="activate",
            entity_type="employee",
            entity_id=employee.id,
            actor_id=actor_id,
            old_values={"status": EmployeeStatus.pending.value},
            new_values={"status": EmployeeStatus.active.value, "year": year},
        )
        logger.info("Activated employee %s with %s leave balances", employee.id, year)
        return EmployeeActivated.model_validate(employee)
