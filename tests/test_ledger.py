"""Leave ledger tests — debit/credit/reset, bulk reset, summary resync,
accrual and year opening.

Runs against SQLite via the shared conftest.py fixtures.
"""

from __future__ import annotations

import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hrops.common.audit import AuditTrail
from hrops.common.constants import EmployeeStatus
from hrops.common.exceptions import (
    InsufficientBalanceError,
    LedgerInvariantError,
    NegativeBalanceError,
    NotFoundException,
    ValidationException,
)
from hrops.core_hr.models import Employee
from hrops.leave.ledger import LeaveLedger, _verify
from hrops.leave.models import LeaveBalance
from tests.conftest import seed_balance, seed_employee, seed_leave_type

YEAR = 2025


async def _employee(db: AsyncSession, emp_id: uuid.UUID) -> Employee:
    return (await db.execute(select(Employee).where(Employee.id == emp_id))).scalars().one()


# ═════════════════════════════════════════════════════════════════════
# Debit
# ═════════════════════════════════════════════════════════════════════


class TestDebit:

    async def test_debit_moves_days_to_used(self, db, test_employee, annual_leave):
        await seed_balance(db, test_employee["id"], year=YEAR, total=10)

        balance = await LeaveLedger.debit(db, test_employee["id"], YEAR, "annual", 7)

        assert balance.used_days == 7
        assert balance.remaining_days == 3
        assert balance.is_consistent()

    async def test_debit_resyncs_summary(self, db, test_employee, annual_leave):
        await seed_balance(db, test_employee["id"], year=YEAR, total=10)

        await LeaveLedger.debit(db, test_employee["id"], YEAR, "annual", 4)

        emp = await _employee(db, test_employee["id"])
        assert emp.total_annual_leave == 10
        assert emp.used_annual_leave == 4
        assert emp.remaining_annual_leave == 6

    async def test_insufficient_balance_leaves_row_untouched(self, db, test_employee, annual_leave):
        await seed_balance(db, test_employee["id"], year=YEAR, total=5, used=3)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await LeaveLedger.debit(db, test_employee["id"], YEAR, "annual", 3)
        assert exc_info.value.remaining == 2
        assert exc_info.value.status_code == 422

        balance = (await LeaveLedger.get_balances(db, test_employee["id"], YEAR))[0]
        assert (balance.used_days, balance.remaining_days) == (3, 2)

    async def test_debit_exactly_remaining(self, db, test_employee, annual_leave):
        await seed_balance(db, test_employee["id"], year=YEAR, total=5, used=3)
        balance = await LeaveLedger.debit(db, test_employee["id"], YEAR, "annual", 2)
        assert balance.remaining_days == 0

    async def test_non_positive_days_rejected(self, db, test_employee, annual_leave):
        await seed_balance(db, test_employee["id"], year=YEAR)
        with pytest.raises(ValidationException):
            await LeaveLedger.debit(db, test_employee["id"], YEAR, "annual", 0)
        with pytest.raises(ValidationException):
            await LeaveLedger.credit(db, test_employee["id"], YEAR, "annual", -1)

    async def test_missing_balance(self, db, test_employee, annual_leave):
        with pytest.raises(NotFoundException):
            await LeaveLedger.debit(db, test_employee["id"], YEAR, "annual", 1)

    async def test_inconsistent_row_is_refused(self, db, test_employee, annual_leave):
        balance = await seed_balance(db, test_employee["id"], year=YEAR, total=10)
        balance.remaining_days = 9
        assert not balance.is_consistent()
        with pytest.raises(LedgerInvariantError):
            _verify(balance)
        balance.remaining_days = 10


# ═════════════════════════════════════════════════════════════════════
# Credit
# ═════════════════════════════════════════════════════════════════════


class TestCredit:

    async def test_credit_restores_days(self, db, test_employee, annual_leave):
        await seed_balance(db, test_employee["id"], year=YEAR, total=10, used=7)

        balance = await LeaveLedger.credit(db, test_employee["id"], YEAR, "annual", 7)

        assert (balance.used_days, balance.remaining_days) == (0, 10)
        emp = await _employee(db, test_employee["id"])
        assert emp.remaining_annual_leave == 10

    async def test_credit_clamps_at_zero(self, db, test_employee, annual_leave):
        await seed_balance(db, test_employee["id"], year=YEAR, total=10, used=2)

        balance = await LeaveLedger.credit(db, test_employee["id"], YEAR, "annual", 5)

        assert balance.used_days == 0
        assert balance.remaining_days == 10

    async def test_debit_then_credit_round_trip(self, db, test_employee, annual_leave):
        await seed_balance(db, test_employee["id"], year=YEAR, total=12, used=1)

        await LeaveLedger.debit(db, test_employee["id"], YEAR, "annual", 4)
        balance = await LeaveLedger.credit(db, test_employee["id"], YEAR, "annual", 4)

        assert balance.snapshot() == {"total_days": 12, "used_days": 1, "remaining_days": 11}


# ═════════════════════════════════════════════════════════════════════
# Reset
# ═════════════════════════════════════════════════════════════════════


class TestReset:

    async def test_reset_keeps_used(self, db, test_employee, annual_leave):
        await seed_balance(db, test_employee["id"], year=YEAR, total=10, used=4)

        balance = await LeaveLedger.reset(db, test_employee["id"], YEAR, "annual", 15)

        assert balance.snapshot() == {"total_days": 15, "used_days": 4, "remaining_days": 11}
        emp = await _employee(db, test_employee["id"])
        assert emp.total_annual_leave == 15

    async def test_reset_below_used_rejected(self, db, test_employee, annual_leave):
        await seed_balance(db, test_employee["id"], year=YEAR, total=10, used=8)

        with pytest.raises(NegativeBalanceError):
            await LeaveLedger.reset(db, test_employee["id"], YEAR, "annual", 5)

    async def test_reset_to_exactly_used(self, db, test_employee, annual_leave):
        await seed_balance(db, test_employee["id"], year=YEAR, total=10, used=8)
        balance = await LeaveLedger.reset(db, test_employee["id"], YEAR, "annual", 8)
        assert balance.remaining_days == 0

    async def test_negative_total_rejected(self, db, test_employee, annual_leave):
        await seed_balance(db, test_employee["id"], year=YEAR)
        with pytest.raises(ValidationException):
            await LeaveLedger.reset(db, test_employee["id"], YEAR, "annual", -1)

    async def test_reset_writes_audit_entry(self, db, test_employee, approver, annual_leave):
        balance = await seed_balance(db, test_employee["id"], year=YEAR, total=10, used=2)

        await LeaveLedger.reset(
            db, test_employee["id"], YEAR, "annual", 12, actor_id=approver["id"],
        )

        entries = (
            await db.execute(
                select(AuditTrail).where(
                    AuditTrail.entity_id == balance.id, AuditTrail.action == "reset",
                )
            )
        ).scalars().all()
        assert len(entries) == 1
        assert entries[0].actor_id == approver["id"]
        assert entries[0].old_values["total_days"] == 10
        assert entries[0].new_values["total_days"] == 12


class TestBulkReset:

    async def test_skips_rows_that_would_go_negative(self, db, annual_leave):
        light = await seed_employee(db, full_name="Light User")
        heavy = await seed_employee(db, full_name="Heavy User")
        await seed_balance(db, light["id"], year=YEAR, total=10, used=2)
        await seed_balance(db, heavy["id"], year=YEAR, total=10, used=8)

        report = await LeaveLedger.bulk_reset(db, YEAR, 5, "annual")

        assert report.reset_count == 1
        assert report.skipped == [heavy["id"]]

        rows = {
            b.employee_id: b
            for b in (await db.execute(select(LeaveBalance))).scalars().all()
        }
        assert rows[light["id"]].snapshot() == {"total_days": 5, "used_days": 2, "remaining_days": 3}
        assert rows[heavy["id"]].snapshot() == {"total_days": 10, "used_days": 8, "remaining_days": 2}

    async def test_other_years_untouched(self, db, test_employee, annual_leave):
        await seed_balance(db, test_employee["id"], year=YEAR - 1, total=10)
        await seed_balance(db, test_employee["id"], year=YEAR, total=10)

        report = await LeaveLedger.bulk_reset(db, YEAR, 20, "annual")

        assert report.reset_count == 1
        previous = await LeaveLedger.get_balances(db, test_employee["id"], YEAR - 1)
        assert previous[0].total_days == 10


# ═════════════════════════════════════════════════════════════════════
# Opening balances / summary
# ═════════════════════════════════════════════════════════════════════


class TestOpenBalanceAndResync:

    async def test_open_balance_is_idempotent(self, db, test_employee, annual_leave):
        first = await LeaveLedger.open_balance(db, test_employee["id"], YEAR, "annual", 10)
        await LeaveLedger.debit(db, test_employee["id"], YEAR, "annual", 3)
        second = await LeaveLedger.open_balance(db, test_employee["id"], YEAR, "annual", 25)

        assert second.id == first.id
        assert second.total_days == 10
        assert second.used_days == 3

    async def test_resync_sums_every_leave_type_of_the_year(self, db, test_employee, annual_leave):
        await seed_leave_type(db, code="sick", name="Sick Leave", default_days=5)
        await seed_balance(db, test_employee["id"], year=YEAR, leave_type="annual", total=10, used=4)
        await seed_balance(db, test_employee["id"], year=YEAR, leave_type="sick", total=5, used=1)
        await seed_balance(db, test_employee["id"], year=YEAR + 1, leave_type="annual", total=30)

        emp = await LeaveLedger.resync(db, test_employee["id"], YEAR)

        assert (emp.total_annual_leave, emp.used_annual_leave, emp.remaining_annual_leave) == (15, 5, 10)

    async def test_resync_without_rows_zeroes_summary(self, db, test_employee):
        emp = await LeaveLedger.resync(db, test_employee["id"], YEAR)
        assert (emp.total_annual_leave, emp.used_annual_leave, emp.remaining_annual_leave) == (0, 0, 0)

    async def test_resync_of_another_year_rejected(self, db, test_employee):
        with pytest.raises(ValidationException):
            await LeaveLedger.resync(db, test_employee["id"], YEAR - 1)


class TestSummaryYear:

    async def test_past_year_reset_leaves_summary_alone(self, db, test_employee, annual_leave):
        await seed_balance(db, test_employee["id"], year=YEAR, total=10)
        await seed_balance(db, test_employee["id"], year=YEAR - 1, total=10, used=2)
        await LeaveLedger.resync(db, test_employee["id"])

        await LeaveLedger.reset(db, test_employee["id"], YEAR - 1, "annual", 3)

        emp = await _employee(db, test_employee["id"])
        assert (emp.total_annual_leave, emp.used_annual_leave, emp.remaining_annual_leave) == (10, 0, 10)
        previous = await LeaveLedger.get_balances(db, test_employee["id"], YEAR - 1)
        assert previous[0].snapshot() == {"total_days": 3, "used_days": 2, "remaining_days": 1}

    async def test_next_year_debit_leaves_summary_alone(self, db, test_employee, annual_leave):
        await seed_balance(db, test_employee["id"], year=YEAR, total=10, used=1)
        await seed_balance(db, test_employee["id"], year=YEAR + 1, total=10)

        await LeaveLedger.debit(db, test_employee["id"], YEAR + 1, "annual", 4)

        emp = await _employee(db, test_employee["id"])
        assert (emp.total_annual_leave, emp.used_annual_leave, emp.remaining_annual_leave) == (10, 1, 9)

    async def test_bulk_reset_of_past_year_keeps_current_summary(self, db, test_employee, annual_leave):
        await seed_balance(db, test_employee["id"], year=YEAR, total=10, used=4)
        await seed_balance(db, test_employee["id"], year=YEAR - 1, total=10)

        await LeaveLedger.bulk_reset(db, YEAR - 1, 20, "annual")

        emp = await _employee(db, test_employee["id"])
        assert (emp.total_annual_leave, emp.used_annual_leave, emp.remaining_annual_leave) == (10, 4, 6)


# ═════════════════════════════════════════════════════════════════════
# Accrual
# ═════════════════════════════════════════════════════════════════════


class TestAccrual:

    async def test_accrue_opens_missing_types_at_default(self, db, test_employee, annual_leave):
        await seed_leave_type(db, code="sick", name="Sick Leave", default_days=5)
        await seed_balance(db, test_employee["id"], year=YEAR + 1, leave_type="annual", total=30, used=2)

        opened = await LeaveLedger.accrue(db, test_employee["id"], YEAR + 1)

        assert [(b.leave_type, b.total_days) for b in opened] == [("sick", 5)]
        balances = await LeaveLedger.get_balances(db, test_employee["id"], YEAR + 1)
        assert {b.leave_type: b.total_days for b in balances} == {"annual": 30, "sick": 5}

    async def test_open_year_covers_active_employees_once(self, db, test_employee, annual_leave):
        colleague = await seed_employee(db, full_name="Colleague")
        leaver = await seed_employee(db, full_name="Leaver", status=EmployeeStatus.inactive)
        await seed_balance(db, colleague["id"], year=YEAR + 1, total=10)

        first = await LeaveLedger.open_year(db, YEAR + 1)
        second = await LeaveLedger.open_year(db, YEAR + 1)

        assert (first.employees, first.balances_opened, first.failed) == (1, 1, [])
        assert (second.employees, second.balances_opened) == (0, 0)
        assert len(await LeaveLedger.get_balances(db, test_employee["id"], YEAR + 1)) == 1
        assert await LeaveLedger.get_balances(db, leaver["id"], YEAR + 1) == []

    async def test_open_year_does_not_move_summary(self, db, test_employee, annual_leave):
        await seed_balance(db, test_employee["id"], year=YEAR, total=10, used=3)
        await LeaveLedger.resync(db, test_employee["id"])

        await LeaveLedger.open_year(db, YEAR + 1)

        emp = await _employee(db, test_employee["id"])
        assert (emp.total_annual_leave, emp.used_annual_leave, emp.remaining_annual_leave) == (10, 3, 7)
