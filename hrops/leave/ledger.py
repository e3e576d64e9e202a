"""Leave balance ledger — the only writer of ``leave_balances`` and of the
annual-leave summary columns on ``employees``.

Every operation runs inside the caller's transaction. Rows are locked in a
fixed order (employee, then balance) so concurrent approvals, cancellations
and resets for the same employee serialize instead of deadlocking, and the
summary recomputation at the end of each call always sees committed
sibling rows.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hrops.common.audit import create_audit_entry
from hrops.common.constants import EmployeeStatus
from hrops.common.exceptions import (
    InsufficientBalanceError,
    LedgerInvariantError,
    NegativeBalanceError,
    NotFoundException,
    ValidationException,
    is_transient,
)
from hrops.common.org_settings import current_leave_year
from hrops.config import settings
from hrops.core_hr.models import Employee
from hrops.leave.models import LeaveBalance, LeaveType
from hrops.leave.schemas import BulkResetResult, OpenYearResult

logger = logging.getLogger(__name__)

ANNUAL_LEAVE_CODE = "annual"


def _require_positive(field: str, days: int) -> None:
    if days <= 0:
        raise ValidationException({field: [f"Must be a positive number of days, got {days}."]})


def _verify(balance: LeaveBalance) -> None:
    if not balance.is_consistent():
        raise LedgerInvariantError(balance.id)


# ═════════════════════════════════════════════════════════════════════
# LeaveLedger
# ═════════════════════════════════════════════════════════════════════


class LeaveLedger:
    """Debit / credit / reset of per-year leave balances."""

    # ─────────────────────────────────────────────────────────────────
    # Locking helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _lock_employee(db: AsyncSession, employee_id: uuid.UUID) -> Employee:
        result = await db.execute(
            select(Employee).where(Employee.id == employee_id).with_for_update()
        )
        employee = result.scalars().first()
        if employee is None:
            raise NotFoundException("Employee", str(employee_id))
        return employee

    @staticmethod
    async def _lock_balance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
        leave_type: str,
    ) -> LeaveBalance:
        await LeaveLedger._lock_employee(db, employee_id)
        result = await db.execute(
            select(LeaveBalance)
            .where(
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.year == year,
                LeaveBalance.leave_type == leave_type,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        balance = result.scalars().first()
        if balance is None:
            raise NotFoundException(
                "LeaveBalance", f"{employee_id}/{year}/{leave_type}"
            )
        _verify(balance)
        return balance

    @staticmethod
    async def _finish(
        db: AsyncSession,
        balance: LeaveBalance,
        *,
        action: str,
        before: dict[str, int],
        actor_id: Optional[uuid.UUID],
        extra: Optional[dict] = None,
    ) -> LeaveBalance:
        _verify(balance)
        balance.updated_at = datetime.now(timezone.utc)
        await db.flush()
        await LeaveLedger.resync(db, balance.employee_id)
        await create_audit_entry(
            db,
            action=action,
            entity_type="leave_balance",
            entity_id=balance.id,
            actor_id=actor_id,
            old_values=before,
            new_values={**balance.snapshot(), **(extra or {})},
        )
        return balance

    # ─────────────────────────────────────────────────────────────────
    # Debit / Credit
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def debit(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
        leave_type: str,
        days: int,
        *,
        actor_id: Optional[uuid.UUID] = None,
        request_id: Optional[uuid.UUID] = None,
    ) -> LeaveBalance:
        """Move ``days`` from remaining to used.

        Raises:
            InsufficientBalanceError: ``days`` exceeds the remaining days.
        """
        _require_positive("days", days)
        balance = await LeaveLedger._lock_balance(db, employee_id, year, leave_type)
        if days > balance.remaining_days:
            raise InsufficientBalanceError(leave_type, days, balance.remaining_days)

        before = balance.snapshot()
        balance.used_days += days
        balance.remaining_days = balance.total_days - balance.used_days
        return await LeaveLedger._finish(
            db, balance,
            action="debit",
            before=before,
            actor_id=actor_id,
            extra={"days": days, "leave_request_id": str(request_id) if request_id else None},
        )

    @staticmethod
    async def credit(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
        leave_type: str,
        days: int,
        *,
        actor_id: Optional[uuid.UUID] = None,
        request_id: Optional[uuid.UUID] = None,
    ) -> LeaveBalance:
        """Give ``days`` back; ``used_days`` never drops below zero."""
        _require_positive("days", days)
        balance = await LeaveLedger._lock_balance(db, employee_id, year, leave_type)

        before = balance.snapshot()
        if days > balance.used_days:
            logger.warning(
                "Credit of %d day(s) exceeds used %d on balance %s; clamping at 0",
                days, balance.used_days, balance.id,
            )
        balance.used_days = max(0, balance.used_days - days)
        balance.remaining_days = balance.total_days - balance.used_days
        return await LeaveLedger._finish(
            db, balance,
            action="credit",
            before=before,
            actor_id=actor_id,
            extra={"days": days, "leave_request_id": str(request_id) if request_id else None},
        )

    # ─────────────────────────────────────────────────────────────────
    # Reset
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def reset(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
        leave_type: str,
        new_total: int,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveBalance:
        """Set a new entitlement, keeping ``used_days``.

        Raises:
            NegativeBalanceError: ``new_total`` is below the days already used.
        """
        if new_total < 0:
            raise ValidationException({"new_total": ["Must not be negative."]})
        balance = await LeaveLedger._lock_balance(db, employee_id, year, leave_type)
        if new_total < balance.used_days:
            raise NegativeBalanceError(leave_type, new_total, balance.used_days)

        before = balance.snapshot()
        balance.total_days = new_total
        balance.remaining_days = new_total - balance.used_days
        return await LeaveLedger._finish(
            db, balance, action="reset", before=before, actor_id=actor_id,
        )

    @staticmethod
    async def bulk_reset(
        db: AsyncSession,
        year: int,
        new_total: int,
        leave_type: str,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> BulkResetResult:
        """Reset every balance of ``year``/``leave_type`` to ``new_total``.

        Each row runs in its own savepoint; rows whose used days exceed
        ``new_total`` are skipped and reported.
        """
        result = await db.execute(
            select(LeaveBalance.employee_id)
            .where(LeaveBalance.year == year, LeaveBalance.leave_type == leave_type)
            .order_by(LeaveBalance.employee_id)
        )
        employee_ids = list(result.scalars().all())

        report = BulkResetResult(year=year, leave_type=leave_type, new_total=new_total)
        for employee_id in employee_ids:
            try:
                async with db.begin_nested():
                    await LeaveLedger.reset(
                        db, employee_id, year, leave_type, new_total, actor_id=actor_id,
                    )
            except NegativeBalanceError as exc:
                logger.warning("Skipping reset for employee %s: %s", employee_id, exc.detail)
                report.skipped.append(employee_id)
            else:
                report.reset_count += 1

        logger.info(
            "Bulk reset %s/%s to %d: %d reset, %d skipped",
            year, leave_type, new_total, report.reset_count, len(report.skipped),
        )
        return report

    # ─────────────────────────────────────────────────────────────────
    # Opening balances
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def open_balance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
        leave_type: str,
        total: int,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveBalance:
        """Create the balance row if missing; an existing row is returned untouched."""
        if total < 0:
            raise ValidationException({"total": ["Must not be negative."]})
        await LeaveLedger._lock_employee(db, employee_id)
        result = await db.execute(
            select(LeaveBalance).where(
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.year == year,
                LeaveBalance.leave_type == leave_type,
            )
        )
        balance = result.scalars().first()
        if balance is not None:
            return balance

        balance = LeaveBalance(
            employee_id=employee_id,
            year=year,
            leave_type=leave_type,
            total_days=total,
            used_days=0,
            remaining_days=total,
        )
        db.add(balance)
        await db.flush()
        await LeaveLedger.resync(db, employee_id)
        await create_audit_entry(
            db,
            action="open",
            entity_type="leave_balance",
            entity_id=balance.id,
            actor_id=actor_id,
            new_values=balance.snapshot(),
        )
        return balance

    # ─────────────────────────────────────────────────────────────────
    # Accrual — opening a year's balances from leave-type defaults
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def active_leave_types(db: AsyncSession) -> Sequence[LeaveType]:
        """Active leave types; creates ``annual`` when none is configured."""
        result = await db.execute(
            select(LeaveType).where(LeaveType.is_active.is_(True)).order_by(LeaveType.code)
        )
        leave_types = result.scalars().all()
        if leave_types:
            return leave_types

        logger.warning(
            "No active leave types configured; creating %r with %d day(s)",
            ANNUAL_LEAVE_CODE, settings.DEFAULT_ANNUAL_LEAVE_DAYS,
        )
        annual = LeaveType(
            code=ANNUAL_LEAVE_CODE,
            name="Annual Leave",
            default_days=settings.DEFAULT_ANNUAL_LEAVE_DAYS,
            is_active=True,
        )
        db.add(annual)
        await db.flush()
        return [annual]

    @staticmethod
    async def accrue(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
        leave_types: Optional[Sequence[LeaveType]] = None,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> list[LeaveBalance]:
        """Open the ``year`` balance of each leave type at its ``default_days``.

        Rows that already exist are left alone. Returns the rows created.
        """
        if leave_types is None:
            leave_types = await LeaveLedger.active_leave_types(db)
        result = await db.execute(
            select(LeaveBalance.leave_type).where(
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.year == year,
            )
        )
        existing = set(result.scalars().all())

        opened: list[LeaveBalance] = []
        for leave_type in leave_types:
            if leave_type.code in existing:
                continue
            opened.append(
                await LeaveLedger.open_balance(
                    db, employee_id, year, leave_type.code, leave_type.default_days,
                    actor_id=actor_id,
                )
            )
        return opened

    @staticmethod
    async def open_year(
        db: AsyncSession,
        year: int,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> OpenYearResult:
        """Accrue ``year`` for every active employee, one savepoint each.

        Safe to run repeatedly; a second run opens nothing.
        """
        leave_types = await LeaveLedger.active_leave_types(db)
        result = await db.execute(
            select(Employee.id)
            .where(Employee.status == EmployeeStatus.active)
            .order_by(Employee.employee_code)
        )
        employee_ids = list(result.scalars().all())

        report = OpenYearResult(year=year)
        for employee_id in employee_ids:
            try:
                async with db.begin_nested():
                    opened = await LeaveLedger.accrue(
                        db, employee_id, year, leave_types, actor_id=actor_id,
                    )
            except SQLAlchemyError as exc:
                if is_transient(exc):
                    raise
                logger.exception("Failed to open leave year %s for employee %s", year, employee_id)
                report.failed.append(employee_id)
                continue
            if opened:
                report.employees += 1
                report.balances_opened += len(opened)

        logger.info(
            "Opened leave year %s: %d balance(s) for %d employee(s), %d failed",
            year, report.balances_opened, report.employees, len(report.failed),
        )
        return report

    # ─────────────────────────────────────────────────────────────────
    # Summary projection
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def resync(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: Optional[int] = None,
    ) -> Employee:
        """Recompute the employee's annual-leave summary from the balance rows
        of the current leave year.

        Every mutation resyncs, whatever year it touched, so the summary
        never drifts to a past or future year.

        Raises:
            ValidationException: ``year`` is given and is not the current leave year.
        """
        summary_year = current_leave_year()
        if year is not None and year != summary_year:
            raise ValidationException(
                {"year": [f"The summary tracks leave year {summary_year}, not {year}."]}
            )
        year = summary_year
        employee = await LeaveLedger._lock_employee(db, employee_id)
        result = await db.execute(
            select(
                func.coalesce(func.sum(LeaveBalance.total_days), 0),
                func.coalesce(func.sum(LeaveBalance.used_days), 0),
                func.coalesce(func.sum(LeaveBalance.remaining_days), 0),
            ).where(
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.year == year,
            )
        )
        total, used, remaining = result.one()
        employee.total_annual_leave = int(total)
        employee.used_annual_leave = int(used)
        employee.remaining_annual_leave = int(remaining)
        await db.flush()
        return employee

    # ─────────────────────────────────────────────────────────────────
    # Read side
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_balances(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
    ) -> Sequence[LeaveBalance]:
        result = await db.execute(
            select(LeaveBalance)
            .where(LeaveBalance.employee_id == employee_id, LeaveBalance.year == year)
            .order_by(LeaveBalance.leave_type)
        )
        return result.scalars().all()
