"""Leave module test suite — submission rules, approve/reject/cancel against
the ledger, decision notifications and the HTTP endpoints.

Tests run against SQLite via the shared conftest.py fixtures.
"""

from __future__ import annotations

import uuid
from datetime import date

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hrops.common.constants import EmployeeStatus, LeaveStatus, UserRole
from hrops.common.exceptions import (
    ForbiddenException,
    InsufficientBalanceError,
    InvalidRangeError,
    InvalidStateError,
    NotFoundException,
    OverlappingLeaveError,
    ValidationException,
    ZeroDurationError,
)
from hrops.core_hr.models import Employee
from hrops.leave.ledger import LeaveLedger
from hrops.leave.service import LeaveService
from hrops.notifications.models import Notification
from tests.conftest import bearer, create_access_token, seed_balance, seed_employee

YEAR = 2025
# Sun 16 Nov → Tue 25 Nov 2025: 7 working days
NOV_START, NOV_END = date(2025, 11, 16), date(2025, 11, 25)


class _FailingDelivery:
    """Delivery channel that always raises."""

    def __init__(self) -> None:
        self.calls = 0

    async def deliver(self, db, recipient_id, channel, payload) -> bool:
        self.calls += 1
        raise RuntimeError("push gateway down")


async def _balance(db: AsyncSession, emp_id: uuid.UUID):
    rows = await LeaveLedger.get_balances(db, emp_id, YEAR)
    return rows[0]


async def _inbox(db: AsyncSession, emp_id: uuid.UUID) -> list[Notification]:
    result = await db.execute(select(Notification).where(Notification.recipient_id == emp_id))
    return list(result.scalars().all())


# ═════════════════════════════════════════════════════════════════════
# Submit
# ═════════════════════════════════════════════════════════════════════


class TestSubmit:

    async def test_counts_working_days_only(self, db, test_employee, annual_leave):
        await seed_balance(db, test_employee["id"], year=YEAR, total=10)

        req = await LeaveService.submit(db, test_employee["id"], "annual", NOV_START, NOV_END)

        assert req.computed_days == 7
        assert req.status == LeaveStatus.pending
        # Nothing is reserved until approval
        balance = await _balance(db, test_employee["id"])
        assert balance.used_days == 0

    async def test_uses_employee_schedule(self, db, annual_leave):
        part_timer = await seed_employee(db, working_days=["tuesday", "thursday"])

        req = await LeaveService.submit(db, part_timer["id"], "annual", NOV_START, NOV_END)

        # Tue 18, Thu 20, Tue 25
        assert req.computed_days == 3

    async def test_weekend_only_range_rejected(self, db, test_employee, annual_leave):
        with pytest.raises(ZeroDurationError):
            await LeaveService.submit(
                db, test_employee["id"], "annual", date(2025, 11, 15), date(2025, 11, 16),
            )

    async def test_reversed_range_rejected(self, db, test_employee, annual_leave):
        with pytest.raises(InvalidRangeError):
            await LeaveService.submit(db, test_employee["id"], "annual", NOV_END, NOV_START)

    async def test_cross_year_rejected(self, db, test_employee, annual_leave):
        with pytest.raises(ValidationException):
            await LeaveService.submit(
                db, test_employee["id"], "annual", date(2025, 12, 29), date(2026, 1, 2),
            )

    async def test_unknown_leave_type(self, db, test_employee, annual_leave):
        with pytest.raises(NotFoundException):
            await LeaveService.submit(db, test_employee["id"], "sabbatical", NOV_START, NOV_END)

    async def test_pending_employee_cannot_submit(self, db, annual_leave):
        newcomer = await seed_employee(db, status=EmployeeStatus.pending)
        with pytest.raises(InvalidStateError):
            await LeaveService.submit(db, newcomer["id"], "annual", NOV_START, NOV_END)

    async def test_overlap_with_pending_request(self, db, test_employee, annual_leave):
        await LeaveService.submit(db, test_employee["id"], "annual", NOV_START, NOV_END)
        with pytest.raises(OverlappingLeaveError):
            await LeaveService.submit(
                db, test_employee["id"], "annual", date(2025, 11, 25), date(2025, 11, 27),
            )

    async def test_rejected_request_does_not_block(self, db, test_employee, approver, annual_leave):
        first = await LeaveService.submit(db, test_employee["id"], "annual", NOV_START, NOV_END)
        await LeaveService.reject(db, first.id, approver["id"], "Team offsite")

        again = await LeaveService.submit(db, test_employee["id"], "annual", NOV_START, NOV_END)
        assert again.status == LeaveStatus.pending


# ═════════════════════════════════════════════════════════════════════
# Approve
# ═════════════════════════════════════════════════════════════════════


class TestApprove:

    async def test_approve_debits_once(self, db, test_employee, approver, annual_leave):
        await seed_balance(db, test_employee["id"], year=YEAR, total=10)
        req = await LeaveService.submit(db, test_employee["id"], "annual", NOV_START, NOV_END)

        approved = await LeaveService.approve(db, req.id, approver["id"])

        assert approved.status == LeaveStatus.approved
        assert approved.decided_by == approver["id"]
        balance = await _balance(db, test_employee["id"])
        assert (balance.used_days, balance.remaining_days) == (7, 3)
        emp = await db.get(Employee, test_employee["id"])
        assert emp.remaining_annual_leave == 3

        with pytest.raises(InvalidStateError):
            await LeaveService.approve(db, req.id, approver["id"])
        balance = await _balance(db, test_employee["id"])
        assert balance.used_days == 7

    async def test_approve_notifies_requester(self, db, test_employee, approver, annual_leave):
        await seed_balance(db, test_employee["id"], year=YEAR, total=10)
        req = await LeaveService.submit(db, test_employee["id"], "annual", NOV_START, NOV_END)

        await LeaveService.approve(db, req.id, approver["id"])

        inbox = await _inbox(db, test_employee["id"])
        assert [n.title for n in inbox] == ["Leave Request Approved"]
        assert inbox[0].entity_id == req.id

    async def test_insufficient_balance_keeps_request_pending(
        self, db, test_employee, approver, annual_leave,
    ):
        await seed_balance(db, test_employee["id"], year=YEAR, total=5)
        req = await LeaveService.submit(db, test_employee["id"], "annual", NOV_START, NOV_END)

        with pytest.raises(InsufficientBalanceError):
            await LeaveService.approve(db, req.id, approver["id"])

        current = await LeaveService.get_request(db, req.id)
        assert current.status == LeaveStatus.pending
        balance = await _balance(db, test_employee["id"])
        assert balance.used_days == 0

    async def test_plain_employee_cannot_approve(self, db, test_employee, annual_leave):
        colleague = await seed_employee(db, full_name="Colleague")
        await seed_balance(db, test_employee["id"], year=YEAR, total=10)
        req = await LeaveService.submit(db, test_employee["id"], "annual", NOV_START, NOV_END)

        with pytest.raises(ForbiddenException):
            await LeaveService.approve(db, req.id, colleague["id"])

    async def test_delivery_failure_does_not_undo_approval(
        self, db, test_employee, approver, annual_leave,
    ):
        await seed_balance(db, test_employee["id"], year=YEAR, total=10)
        req = await LeaveService.submit(db, test_employee["id"], "annual", NOV_START, NOV_END)
        delivery = _FailingDelivery()

        approved = await LeaveService.approve(db, req.id, approver["id"], delivery=delivery)

        assert delivery.calls == 1
        assert approved.status == LeaveStatus.approved
        balance = await _balance(db, test_employee["id"])
        assert balance.used_days == 7

    async def test_first_request_of_next_year_opens_its_balance(
        self, db, test_employee, approver, annual_leave,
    ):
        await seed_balance(db, test_employee["id"], year=YEAR, total=10, used=1)
        # Mon 5 → Tue 6 Jan 2026
        req = await LeaveService.submit(
            db, test_employee["id"], "annual", date(2026, 1, 5), date(2026, 1, 6),
        )

        approved = await LeaveService.approve(db, req.id, approver["id"])

        assert approved.status == LeaveStatus.approved
        next_year = await LeaveLedger.get_balances(db, test_employee["id"], YEAR + 1)
        assert [b.snapshot() for b in next_year] == [
            {"total_days": 10, "used_days": 2, "remaining_days": 8},
        ]
        emp = await db.get(Employee, test_employee["id"])
        assert (emp.total_annual_leave, emp.used_annual_leave, emp.remaining_annual_leave) == (10, 1, 9)


# ═════════════════════════════════════════════════════════════════════
# Reject / Cancel
# ═════════════════════════════════════════════════════════════════════


class TestRejectAndCancel:

    async def test_reject_leaves_balance_alone(self, db, test_employee, approver, annual_leave):
        await seed_balance(db, test_employee["id"], year=YEAR, total=10)
        req = await LeaveService.submit(db, test_employee["id"], "annual", NOV_START, NOV_END)

        rejected = await LeaveService.reject(db, req.id, approver["id"], "  Busy season ")

        assert rejected.status == LeaveStatus.rejected
        assert rejected.rejection_reason == "Busy season"
        balance = await _balance(db, test_employee["id"])
        assert balance.used_days == 0
        inbox = await _inbox(db, test_employee["id"])
        assert "Busy season" in inbox[0].message

    async def test_reject_requires_reason(self, db, test_employee, approver, annual_leave):
        req = await LeaveService.submit(db, test_employee["id"], "annual", NOV_START, NOV_END)
        with pytest.raises(ValidationException):
            await LeaveService.reject(db, req.id, approver["id"], "   ")

    async def test_cancel_approved_restores_balance(self, db, test_employee, approver, annual_leave):
        await seed_balance(db, test_employee["id"], year=YEAR, total=10, used=1)
        req = await LeaveService.submit(db, test_employee["id"], "annual", NOV_START, NOV_END)
        await LeaveService.approve(db, req.id, approver["id"])

        cancelled = await LeaveService.cancel(db, req.id, actor_id=test_employee["id"])

        assert cancelled.status == LeaveStatus.cancelled
        assert cancelled.cancelled_at is not None
        balance = await _balance(db, test_employee["id"])
        assert balance.snapshot() == {"total_days": 10, "used_days": 1, "remaining_days": 9}

    async def test_cancel_pending_touches_nothing(self, db, test_employee, annual_leave):
        await seed_balance(db, test_employee["id"], year=YEAR, total=10)
        req = await LeaveService.submit(db, test_employee["id"], "annual", NOV_START, NOV_END)

        await LeaveService.cancel(db, req.id, actor_id=test_employee["id"])

        balance = await _balance(db, test_employee["id"])
        assert balance.used_days == 0

    async def test_cancel_twice_rejected(self, db, test_employee, annual_leave):
        req = await LeaveService.submit(db, test_employee["id"], "annual", NOV_START, NOV_END)
        await LeaveService.cancel(db, req.id)
        with pytest.raises(InvalidStateError):
            await LeaveService.cancel(db, req.id)

    async def test_cancel_rejected_request(self, db, test_employee, approver, annual_leave):
        req = await LeaveService.submit(db, test_employee["id"], "annual", NOV_START, NOV_END)
        await LeaveService.reject(db, req.id, approver["id"], "No cover")
        with pytest.raises(InvalidStateError):
            await LeaveService.cancel(db, req.id, actor_id=test_employee["id"])

    async def test_other_employee_cannot_cancel(self, db, test_employee, annual_leave):
        colleague = await seed_employee(db, full_name="Colleague")
        req = await LeaveService.submit(db, test_employee["id"], "annual", NOV_START, NOV_END)
        with pytest.raises(ForbiddenException):
            await LeaveService.cancel(db, req.id, actor_id=colleague["id"])


# ═════════════════════════════════════════════════════════════════════
# API endpoints
# ═════════════════════════════════════════════════════════════════════


class TestLeaveAPI:

    async def test_submit_and_approve_flow(
        self, client, db, test_employee, approver, auth_headers, approver_headers, annual_leave,
    ):
        await seed_balance(db, test_employee["id"], year=YEAR, total=10)
        await db.commit()

        resp = await client.post(
            "/api/v1/leave",
            json={"leave_type": "annual", "start_date": "2025-11-16", "end_date": "2025-11-25"},
            headers=auth_headers,
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["computed_days"] == 7
        assert body["status"] == "pending"

        resp = await client.post(f"/api/v1/leave/{body['id']}/approve", headers=approver_headers)
        assert resp.status_code == 200
        assert resp.json()["status"] == "approved"

        resp = await client.get(
            f"/api/v1/leave/balances/{test_employee['id']}",
            params={"year": YEAR},
            headers=auth_headers,
        )
        assert resp.status_code == 200
        assert resp.json()[0]["remaining_days"] == 3

    async def test_employee_cannot_approve_via_api(
        self, client, db, test_employee, auth_headers, annual_leave,
    ):
        req = await LeaveService.submit(db, test_employee["id"], "annual", NOV_START, NOV_END)
        await db.commit()

        resp = await client.post(f"/api/v1/leave/{req.id}/approve", headers=auth_headers)
        assert resp.status_code == 403
        assert resp.headers["content-type"].startswith("application/problem+json")

    async def test_insufficient_balance_problem_detail(
        self, client, db, test_employee, approver_headers, annual_leave,
    ):
        await seed_balance(db, test_employee["id"], year=YEAR, total=2)
        req = await LeaveService.submit(db, test_employee["id"], "annual", NOV_START, NOV_END)
        await db.commit()

        resp = await client.post(f"/api/v1/leave/{req.id}/approve", headers=approver_headers)

        assert resp.status_code == 422
        problem = resp.json()
        assert problem["type"].endswith("/insufficient-balance")
        assert "only 2 day(s) remain" in problem["detail"]

    async def test_invalid_range_is_422(self, client, auth_headers, annual_leave):
        resp = await client.post(
            "/api/v1/leave",
            json={"leave_type": "annual", "start_date": "2025-11-25", "end_date": "2025-11-16"},
            headers=auth_headers,
        )
        assert resp.status_code == 422

    async def test_list_is_scoped_to_caller(
        self, client, db, test_employee, auth_headers, annual_leave,
    ):
        colleague = await seed_employee(db, full_name="Colleague")
        await LeaveService.submit(db, test_employee["id"], "annual", NOV_START, NOV_END)
        await LeaveService.submit(db, colleague["id"], "annual", NOV_START, NOV_END)
        await db.commit()

        resp = await client.get(
            "/api/v1/leave", params={"employee_id": str(colleague["id"])}, headers=auth_headers,
        )

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert len(data) == 1
        assert data[0]["employee_id"] == str(test_employee["id"])

    async def test_bulk_reset_requires_hr(self, client, auth_headers):
        resp = await client.post(
            "/api/v1/leave/balances/bulk-reset",
            json={"year": YEAR, "leave_type": "annual", "new_total": 12},
            headers=auth_headers,
        )
        assert resp.status_code == 403

    async def test_bulk_reset_via_api(self, client, db, test_employee, approver_headers, annual_leave):
        await seed_balance(db, test_employee["id"], year=YEAR, total=10, used=3)
        await db.commit()

        resp = await client.post(
            "/api/v1/leave/balances/bulk-reset",
            json={"year": YEAR, "leave_type": "annual", "new_total": 12},
            headers=approver_headers,
        )

        assert resp.status_code == 200
        assert resp.json()["reset_count"] == 1

    async def test_open_year_requires_hr(self, client, auth_headers):
        resp = await client.post(
            "/api/v1/leave/balances/open-year", json={"year": YEAR + 1}, headers=auth_headers,
        )
        assert resp.status_code == 403

    async def test_open_year_via_api(self, client, db, test_employee, approver_headers, annual_leave):
        await db.commit()

        resp = await client.post(
            "/api/v1/leave/balances/open-year", json={"year": YEAR + 1}, headers=approver_headers,
        )

        assert resp.status_code == 200
        body = resp.json()
        # test_employee and the approver
        assert (body["employees"], body["balances_opened"], body["failed"]) == (2, 2, [])

    async def test_missing_token(self, client):
        resp = await client.get("/api/v1/leave")
        assert resp.status_code == 401

    async def test_expired_token(self, client, test_employee):
        token = create_access_token(test_employee["id"], expired=True)
        resp = await client.get("/api/v1/leave", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    async def test_role_comes_from_directory_not_token(self, client, db, test_employee):
        await db.commit()
        token = create_access_token(test_employee["id"], role=UserRole.superadmin)
        resp = await client.post(
            "/api/v1/leave/balances/bulk-reset",
            json={"year": YEAR, "leave_type": "annual", "new_total": 12},
            headers={"Authorization": f"Bearer {token}"},
        )
        assert resp.status_code == 403
