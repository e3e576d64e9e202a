"""Attendance service layer — clock in/out and day-boundary close-out.

Business logic:
  - One session per employee per work date (unique constraint backs the check)
  - Lateness against the threshold in force at clock-in, snapshotted on the row
  - Worked hours on close, whoever closes the session
  - Midnight auto-close that is safe to run concurrently and repeatedly
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, time, timezone
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hrops.attendance.models import SESSION_UNIQUE_CONSTRAINT, AttendanceSession
from hrops.attendance.schemas import AttendanceSessionOut, CloseOutResult
from hrops.common.audit import create_audit_entry
from hrops.common.calendar import END_OF_DAY, compute_lateness, hours_between
from hrops.common.constants import ClosedBy, EmployeeStatus
from hrops.common.exceptions import (
    AlreadyClosedError,
    DuplicateSessionError,
    InvalidStateError,
    NoOpenSessionError,
    NotFoundException,
    ValidationException,
    is_transient,
    is_unique_violation,
)
from hrops.common.org_settings import resolve_late_threshold
from hrops.core_hr.models import Employee
from hrops.core_hr.service import DirectoryService

logger = logging.getLogger(__name__)


def _as_time(value: time) -> time:
    # TIME columns carry no tz or sub-second part
    return value.replace(tzinfo=None, microsecond=0)


# ═════════════════════════════════════════════════════════════════════
# AttendanceService
# ═════════════════════════════════════════════════════════════════════


class AttendanceService:
    """Async attendance session operations."""

    # ── Clock in ────────────────────────────────────────────────────

    @staticmethod
    async def clock_in(
        db: AsyncSession,
        employee_id: uuid.UUID,
        work_date: date,
        at: time,
    ) -> AttendanceSessionOut:
        """Open the employee's session for ``work_date``.

        Raises:
            DuplicateSessionError: a session already exists for that date.
        """
        at = _as_time(at)
        employee = await DirectoryService.load_employee(db, employee_id)
        if employee.status != EmployeeStatus.active:
            raise InvalidStateError("employee", employee.status.value, "clock in")

        existing = await db.execute(
            select(AttendanceSession.id).where(
                AttendanceSession.employee_id == employee_id,
                AttendanceSession.work_date == work_date,
            )
        )
        if existing.first() is not None:
            raise DuplicateSessionError(employee_id, work_date)

        threshold = await resolve_late_threshold(db, employee.late_threshold)
        lateness = compute_lateness(at, threshold)

        session = AttendanceSession(
            employee_id=employee_id,
            work_date=work_date,
            clock_in=at,
            is_late=lateness.is_late,
            late_minutes=lateness.late_minutes,
            late_threshold_applied=threshold,
        )
        try:
            async with db.begin_nested():
                db.add(session)
                await db.flush()
        except IntegrityError as exc:
            # Lost the race against a concurrent clock-in for the same date
            if is_unique_violation(exc, SESSION_UNIQUE_CONSTRAINT):
                raise DuplicateSessionError(employee_id, work_date) from exc
            raise

        await create_audit_entry(
            db,
            action="clock_in",
            entity_type="attendance_session",
            entity_id=session.id,
            actor_id=employee_id,
            new_values={
                "work_date": work_date.isoformat(),
                "clock_in": at.isoformat(),
                "is_late": lateness.is_late,
                "late_minutes": lateness.late_minutes,
                "late_threshold_applied": threshold.isoformat(),
            },
        )
        return AttendanceSessionOut.model_validate(session)

    # ── Clock out ───────────────────────────────────────────────────

    @staticmethod
    async def clock_out(
        db: AsyncSession,
        employee_id: uuid.UUID,
        work_date: date,
        at: time,
    ) -> AttendanceSessionOut:
        """Close the employee's own session for ``work_date``."""
        at = _as_time(at)
        result = await db.execute(
            select(AttendanceSession)
            .where(
                AttendanceSession.employee_id == employee_id,
                AttendanceSession.work_date == work_date,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        session = result.scalars().first()
        if session is None:
            raise NoOpenSessionError(employee_id, work_date)
        if session.clock_out is not None:
            raise AlreadyClosedError(employee_id, work_date)
        if at < session.clock_in:
            raise ValidationException(
                {"clock_out": [f"Clock-out {at} is before clock-in {session.clock_in}."]}
            )

        session.clock_out = at
        session.closed_by = ClosedBy.self_
        session.hours_worked = hours_between(session.clock_in, at)
        session.updated_at = datetime.now(timezone.utc)
        await db.flush()

        await create_audit_entry(
            db,
            action="clock_out",
            entity_type="attendance_session",
            entity_id=session.id,
            actor_id=employee_id,
            new_values={
                "clock_out": at.isoformat(),
                "hours_worked": str(session.hours_worked),
            },
        )
        return AttendanceSessionOut.model_validate(session)

    # ── Bulk close-out ──────────────────────────────────────────────

    @staticmethod
    async def _close_open_sessions(
        db: AsyncSession,
        candidates: Sequence[tuple[uuid.UUID, time]],
        *,
        clock_out: time,
        closed_by: ClosedBy,
        actor_id: Optional[uuid.UUID] = None,
    ) -> CloseOutResult:
        report = CloseOutResult()
        closed_ids: list[uuid.UUID] = []
        for session_id, clock_in in candidates:
            out_at = max(clock_out, clock_in)
            try:
                async with db.begin_nested():
                    # clock_out IS NULL is re-checked here so a concurrent
                    # closer (or the employee) wins without a double close
                    result = await db.execute(
                        update(AttendanceSession)
                        .where(
                            AttendanceSession.id == session_id,
                            AttendanceSession.clock_out.is_(None),
                        )
                        .values(
                            clock_out=out_at,
                            closed_by=closed_by,
                            hours_worked=hours_between(clock_in, out_at),
                            updated_at=datetime.now(timezone.utc),
                        )
                    )
                    if result.rowcount != 1:
                        continue
                    await create_audit_entry(
                        db,
                        action="auto_close" if closed_by == ClosedBy.system_midnight else "close",
                        entity_type="attendance_session",
                        entity_id=session_id,
                        actor_id=actor_id,
                        new_values={"clock_out": out_at.isoformat(), "closed_by": closed_by.value},
                    )
            except SQLAlchemyError as exc:
                if is_transient(exc):
                    raise
                logger.exception("Failed to close attendance session %s", session_id)
                report.failed.append(session_id)
            else:
                closed_ids.append(session_id)

        if closed_ids:
            result = await db.execute(
                select(AttendanceSession)
                .where(AttendanceSession.id.in_(closed_ids))
                .execution_options(populate_existing=True)
            )
            by_id = {s.id: s for s in result.scalars().all()}
            report.sessions = [
                AttendanceSessionOut.model_validate(by_id[sid]) for sid in closed_ids
            ]
        report.closed = len(closed_ids)
        return report

    @staticmethod
    async def auto_close_stale(
        db: AsyncSession,
        cutoff_date: date,
    ) -> CloseOutResult:
        """Close every session before ``cutoff_date`` still missing a clock-out
        at 23:59:59 of its own work date. Running it again closes nothing."""
        result = await db.execute(
            select(AttendanceSession.id, AttendanceSession.clock_in)
            .where(
                AttendanceSession.work_date < cutoff_date,
                AttendanceSession.clock_out.is_(None),
            )
            .order_by(AttendanceSession.work_date, AttendanceSession.id)
        )
        candidates = [(row.id, row.clock_in) for row in result.all()]
        report = await AttendanceService._close_open_sessions(
            db, candidates, clock_out=END_OF_DAY, closed_by=ClosedBy.system_midnight,
        )
        logger.info(
            "Auto-closed %d stale session(s) before %s (%d failed)",
            report.closed, cutoff_date, len(report.failed),
        )
        return report

    @staticmethod
    async def close_all_open(
        db: AsyncSession,
        work_date: date,
        at: time,
        admin_id: uuid.UUID,
    ) -> CloseOutResult:
        """Admin close-out of every open session on ``work_date`` at ``at``."""
        result = await db.execute(
            select(AttendanceSession.id, AttendanceSession.clock_in)
            .where(
                AttendanceSession.work_date == work_date,
                AttendanceSession.clock_out.is_(None),
            )
            .order_by(AttendanceSession.id)
        )
        candidates = [(row.id, row.clock_in) for row in result.all()]
        report = await AttendanceService._close_open_sessions(
            db, candidates,
            clock_out=_as_time(at),
            closed_by=ClosedBy.manual_admin,
            actor_id=admin_id,
        )
        logger.info(
            "Admin %s closed %d open session(s) on %s", admin_id, report.closed, work_date,
        )
        return report

    # ── Read side ───────────────────────────────────────────────────

    @staticmethod
    async def get_session(
        db: AsyncSession,
        employee_id: uuid.UUID,
        work_date: date,
    ) -> AttendanceSessionOut:
        result = await db.execute(
            select(AttendanceSession).where(
                AttendanceSession.employee_id == employee_id,
                AttendanceSession.work_date == work_date,
            )
        )
        session = result.scalars().first()
        if session is None:
            raise NotFoundException("AttendanceSession", f"{employee_id}/{work_date}")
        return AttendanceSessionOut.model_validate(session)

    @staticmethod
    async def list_open_sessions(
        db: AsyncSession,
        work_date: date,
        *,
        active_only: bool = False,
    ) -> Sequence[AttendanceSession]:
        query = (
            select(AttendanceSession)
            .where(
                AttendanceSession.work_date == work_date,
                AttendanceSession.clock_out.is_(None),
            )
            .order_by(AttendanceSession.clock_in)
        )
        if active_only:
            query = query.join(Employee, Employee.id == AttendanceSession.employee_id).where(
                Employee.status == EmployeeStatus.active
            )
        result = await db.execute(query)
        return result.scalars().all()
