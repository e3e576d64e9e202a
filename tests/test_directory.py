"""Directory tests — employee lookup and the activation hook that opens
leave balances.
"""

from __future__ import annotations

import uuid

import pytest
from sqlalchemy import select

from hrops.common.constants import EmployeeStatus
from hrops.common.exceptions import InvalidStateError, NotFoundException
from hrops.config import settings
from hrops.core_hr.service import DirectoryService
from hrops.leave.ledger import ANNUAL_LEAVE_CODE, LeaveLedger
from hrops.leave.models import LeaveType
from tests.conftest import bearer, seed_employee, seed_leave_type

YEAR = 2025


class TestActivation:

    async def test_opens_balances_for_active_leave_types(self, db, approver, annual_leave):
        await seed_leave_type(db, code="sick", name="Sick Leave", default_days=5)
        await seed_leave_type(db, code="study", name="Study Leave", default_days=3, is_active=False)
        newcomer = await seed_employee(db, status=EmployeeStatus.pending)

        result = await DirectoryService.activate_employee(
            db, newcomer["id"], approver["id"], year=YEAR,
        )

        assert result.status == EmployeeStatus.active
        assert (result.total_annual_leave, result.used_annual_leave, result.remaining_annual_leave) == (15, 0, 15)
        balances = await LeaveLedger.get_balances(db, newcomer["id"], YEAR)
        assert {(b.leave_type, b.total_days) for b in balances} == {("annual", 10), ("sick", 5)}

    async def test_creates_default_leave_type_when_none_configured(self, db):
        newcomer = await seed_employee(db, status=EmployeeStatus.pending)

        result = await DirectoryService.activate_employee(db, newcomer["id"], year=YEAR)

        created = (await db.execute(select(LeaveType))).scalars().one()
        assert created.code == ANNUAL_LEAVE_CODE
        assert created.default_days == settings.DEFAULT_ANNUAL_LEAVE_DAYS
        assert result.remaining_annual_leave == settings.DEFAULT_ANNUAL_LEAVE_DAYS

    async def test_only_pending_can_be_activated(self, db, test_employee, annual_leave):
        with pytest.raises(InvalidStateError):
            await DirectoryService.activate_employee(db, test_employee["id"], year=YEAR)

    async def test_unknown_employee(self, db):
        with pytest.raises(NotFoundException):
            await DirectoryService.activate_employee(db, uuid.uuid4(), year=YEAR)


class TestLookups:

    async def test_get_employee(self, db, test_employee):
        brief = await DirectoryService.get_employee(db, test_employee["id"])
        assert brief.email == test_employee["email"]
        assert brief.working_days == test_employee["working_days"]

    async def test_list_pending(self, db, test_employee):
        newcomer = await seed_employee(db, status=EmployeeStatus.pending)
        pending = await DirectoryService.list_pending(db)
        assert [e.id for e in pending] == [newcomer["id"]]


class TestEmployeesAPI:

    async def test_hr_activates_pending_employee(self, client, db, approver, annual_leave):
        newcomer = await seed_employee(db, status=EmployeeStatus.pending)
        await db.commit()

        resp = await client.post(
            f"/api/v1/employees/{newcomer['id']}/activate", headers=bearer(approver),
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "active"
        assert body["total_annual_leave"] == 10

    async def test_employee_cannot_activate(self, client, db, auth_headers):
        newcomer = await seed_employee(db, status=EmployeeStatus.pending)
        await db.commit()

        resp = await client.post(
            f"/api/v1/employees/{newcomer['id']}/activate", headers=auth_headers,
        )
        assert resp.status_code == 403

    async def test_pending_employee_token_rejected(self, client, db):
        newcomer = await seed_employee(db, status=EmployeeStatus.pending)
        await db.commit()

        resp = await client.get(f"/api/v1/employees/{newcomer['id']}", headers=bearer(newcomer))
        assert resp.status_code == 401

    async def test_view_self_and_others(self, client, db, test_employee, approver):
        colleague = await seed_employee(db, full_name="Colleague")
        await db.commit()

        resp = await client.get(f"/api/v1/employees/{test_employee['id']}", headers=bearer(test_employee))
        assert resp.status_code == 200

        resp = await client.get(f"/api/v1/employees/{test_employee['id']}", headers=bearer(approver))
        assert resp.status_code == 200

        resp = await client.get(f"/api/v1/employees/{test_employee['id']}", headers=bearer(colleague))
        assert resp.status_code == 403


class TestHealth:

    async def test_health_needs_no_auth(self, client):
        resp = await client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"
