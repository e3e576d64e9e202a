"""Leave service layer — request lifecycle on top of the balance ledger.

Business logic:
  - Submission: working-day count on the employee's schedule, overlap and
    year-boundary checks; nothing is reserved until approval
  - Approval debits the ledger exactly once; a failed debit leaves the
    request pending
  - Cancelling an approved request credits the same days back
  - Decision notifications through the delivery channel
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hrops.common.audit import create_audit_entry
from hrops.common.calendar import parse_working_days, weekday_count
from hrops.common.constants import APPROVER_ROLES, EmployeeStatus, LeaveStatus
from hrops.common.exceptions import (
    ForbiddenException,
    InvalidStateError,
    NotFoundException,
    OverlappingLeaveError,
    ValidationException,
    ZeroDurationError,
)
from hrops.common.pagination import PaginatedResponse, PaginationParams, paginate
from hrops.core_hr.models import Employee
from hrops.core_hr.service import DirectoryService
from hrops.leave.ledger import LeaveLedger
from hrops.leave.models import LeaveRequest, LeaveType
from hrops.leave.schemas import LeaveRequestOut
from hrops.notifications.delivery import IN_APP, NotificationDelivery, default_delivery
from hrops.notifications.schemas import NotificationPayload
from hrops.notifications.service import leave_approved_payload, leave_rejected_payload

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:
    """Async leave request operations: submit, approve, reject, cancel."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _lock_request(db: AsyncSession, request_id: uuid.UUID) -> LeaveRequest:
        result = await db.execute(
            select(LeaveRequest)
            .where(LeaveRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        leave_req = result.scalars().first()
        if leave_req is None:
            raise NotFoundException("LeaveRequest", str(request_id))
        return leave_req

    @staticmethod
    async def _require_approver(db: AsyncSession, approver_id: uuid.UUID) -> Employee:
        approver = await DirectoryService.load_employee(db, approver_id)
        if approver.status != EmployeeStatus.active or approver.role not in APPROVER_ROLES:
            raise ForbiddenException(
                "You are not authorized to decide leave requests."
            )
        return approver

    @staticmethod
    async def _notify(
        db: AsyncSession,
        delivery: Optional[NotificationDelivery],
        recipient_id: uuid.UUID,
        payload: NotificationPayload,
    ) -> None:
        channel = delivery or default_delivery
        try:
            delivered = await channel.deliver(db, recipient_id, IN_APP, payload)
        except Exception:
            logger.exception("Delivery of %r to %s raised", payload.title, recipient_id)
            return
        if not delivered:
            logger.warning("Delivery of %r to %s failed", payload.title, recipient_id)

    # ─────────────────────────────────────────────────────────────────
    # Submit
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def submit(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: str,
        start: date,
        end: date,
        reason: Optional[str] = None,
    ) -> LeaveRequestOut:
        """Create a pending request for ``start``–``end`` (inclusive).

        The day count uses the employee's working days and is fixed at
        submission; the balance is only touched on approval.
        """
        employee = await DirectoryService.load_employee(db, employee_id)
        if employee.status != EmployeeStatus.active:
            raise InvalidStateError("employee", employee.status.value, "submit leave for")

        days = weekday_count(start, end, parse_working_days(employee.working_days))

        if start.year != end.year:
            raise ValidationException(
                {"date_range": ["A leave request cannot cross a calendar year; split it in two."]}
            )

        lt_result = await db.execute(
            select(LeaveType).where(
                LeaveType.code == leave_type,
                LeaveType.is_active.is_(True),
            )
        )
        if lt_result.scalars().first() is None:
            raise NotFoundException("LeaveType", leave_type)

        if days == 0:
            raise ZeroDurationError(start, end)

        overlap = await db.execute(
            select(LeaveRequest.id).where(
                LeaveRequest.employee_id == employee_id,
                LeaveRequest.status.in_([LeaveStatus.pending, LeaveStatus.approved]),
                LeaveRequest.start_date <= end,
                LeaveRequest.end_date >= start,
            )
        )
        if overlap.first() is not None:
            raise OverlappingLeaveError(start, end)

        leave_req = LeaveRequest(
            employee_id=employee_id,
            leave_type=leave_type,
            start_date=start,
            end_date=end,
            computed_days=days,
            reason=reason,
            status=LeaveStatus.pending,
        )
        db.add(leave_req)
        await db.flush()

        await create_audit_entry(
            db,
            action="submit",
            entity_type="leave_request",
            entity_id=leave_req.id,
            actor_id=employee_id,
            new_values={
                "leave_type": leave_type,
                "start_date": start.isoformat(),
                "end_date": end.isoformat(),
                "computed_days": days,
            },
        )
        return LeaveRequestOut.model_validate(leave_req)

    # ─────────────────────────────────────────────────────────────────
    # Approve
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def approve(
        db: AsyncSession,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        *,
        delivery: Optional[NotificationDelivery] = None,
    ) -> LeaveRequestOut:
        """Approve a pending request and debit its days.

        Raises:
            InsufficientBalanceError: the request stays pending.
        """
        leave_req = await LeaveService._lock_request(db, request_id)
        if leave_req.status != LeaveStatus.pending:
            raise InvalidStateError("leave request", leave_req.status.value, "approve")
        await LeaveService._require_approver(db, approver_id)

        # First request of a year not yet opened accrues that year's balance
        lt_result = await db.execute(
            select(LeaveType).where(LeaveType.code == leave_req.leave_type)
        )
        leave_type = lt_result.scalars().first()
        if leave_type is not None:
            await LeaveLedger.accrue(
                db, leave_req.employee_id, leave_req.year, [leave_type], actor_id=approver_id,
            )

        await LeaveLedger.debit(
            db,
            leave_req.employee_id,
            leave_req.year,
            leave_req.leave_type,
            leave_req.computed_days,
            actor_id=approver_id,
            request_id=leave_req.id,
        )

        now = datetime.now(timezone.utc)
        leave_req.status = LeaveStatus.approved
        leave_req.decided_by = approver_id
        leave_req.decided_at = now
        leave_req.updated_at = now
        await db.flush()

        await create_audit_entry(
            db,
            action="approve",
            entity_type="leave_request",
            entity_id=leave_req.id,
            actor_id=approver_id,
            old_values={"status": LeaveStatus.pending.value},
            new_values={"status": LeaveStatus.approved.value, "days": leave_req.computed_days},
        )

        await LeaveService._notify(
            db, delivery, leave_req.employee_id, leave_approved_payload(leave_req),
        )
        return LeaveRequestOut.model_validate(leave_req)

    # ─────────────────────────────────────────────────────────────────
    # Reject
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def reject(
        db: AsyncSession,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        reason: str,
        *,
        delivery: Optional[NotificationDelivery] = None,
    ) -> LeaveRequestOut:
        """Reject a pending request. The balance is not touched."""
        if not reason or not reason.strip():
            raise ValidationException({"reason": ["A rejection reason is required."]})

        leave_req = await LeaveService._lock_request(db, request_id)
        if leave_req.status != LeaveStatus.pending:
            raise InvalidStateError("leave request", leave_req.status.value, "reject")
        await LeaveService._require_approver(db, approver_id)

        now = datetime.now(timezone.utc)
        leave_req.status = LeaveStatus.rejected
        leave_req.decided_by = approver_id
        leave_req.decided_at = now
        leave_req.rejection_reason = reason.strip()
        leave_req.updated_at = now
        await db.flush()

        await create_audit_entry(
            db,
            action="reject",
            entity_type="leave_request",
            entity_id=leave_req.id,
            actor_id=approver_id,
            old_values={"status": LeaveStatus.pending.value},
            new_values={"status": LeaveStatus.rejected.value, "reason": leave_req.rejection_reason},
        )

        await LeaveService._notify(
            db, delivery, leave_req.employee_id,
            leave_rejected_payload(leave_req, leave_req.rejection_reason),
        )
        return LeaveRequestOut.model_validate(leave_req)

    # ─────────────────────────────────────────────────────────────────
    # Cancel
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def cancel(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveRequestOut:
        """Cancel a pending or approved request; approved days are credited back.

        When ``actor_id`` is given it must be the requester or an approver.
        """
        leave_req = await LeaveService._lock_request(db, request_id)

        if actor_id is not None and actor_id != leave_req.employee_id:
            await LeaveService._require_approver(db, actor_id)

        if leave_req.status not in (LeaveStatus.pending, LeaveStatus.approved):
            raise InvalidStateError("leave request", leave_req.status.value, "cancel")

        old_status = leave_req.status
        if old_status == LeaveStatus.approved:
            await LeaveLedger.credit(
                db,
                leave_req.employee_id,
                leave_req.year,
                leave_req.leave_type,
                leave_req.computed_days,
                actor_id=actor_id,
                request_id=leave_req.id,
            )

        now = datetime.now(timezone.utc)
        leave_req.status = LeaveStatus.cancelled
        leave_req.cancelled_at = now
        leave_req.updated_at = now
        await db.flush()

        await create_audit_entry(
            db,
            action="cancel",
            entity_type="leave_request",
            entity_id=leave_req.id,
            actor_id=actor_id,
            old_values={"status": old_status.value},
            new_values={"status": LeaveStatus.cancelled.value},
        )
        return LeaveRequestOut.model_validate(leave_req)

    # ─────────────────────────────────────────────────────────────────
    # Read side
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_request(db: AsyncSession, request_id: uuid.UUID) -> LeaveRequestOut:
        result = await db.execute(select(LeaveRequest).where(LeaveRequest.id == request_id))
        leave_req = result.scalars().first()
        if leave_req is None:
            raise NotFoundException("LeaveRequest", str(request_id))
        return LeaveRequestOut.model_validate(leave_req)

    @staticmethod
    async def list_requests(
        db: AsyncSession,
        pagination: PaginationParams,
        *,
        employee_id: Optional[uuid.UUID] = None,
        status: Optional[LeaveStatus] = None,
    ) -> PaginatedResponse:
        """List leave requests, newest first."""
        query = select(LeaveRequest).order_by(LeaveRequest.created_at.desc())
        if employee_id:
            query = query.where(LeaveRequest.employee_id == employee_id)
        if status:
            query = query.where(LeaveRequest.status == status)

        page = await paginate(db, query, pagination, model=LeaveRequest)
        return PaginatedResponse(
            data=[LeaveRequestOut.model_validate(r) for r in page.data],
            meta=page.meta,
        )
