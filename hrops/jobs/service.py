"""Scheduled reconciliation jobs.

Triggered from outside (cron hitting the HTTP endpoint, or the CLI in
``scripts/run_job.py``); nothing here schedules itself. Every ``run_*``
entry point owns one transaction and is retried as a whole on transient
store failures. Work on a single entity that fails is logged, recorded in
the report and skipped.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hrops.attendance.schemas import AttendanceSessionOut
from hrops.attendance.service import AttendanceService
from hrops.common.calendar import parse_time
from hrops.common.constants import REGISTRATION_ALERT_ROLES, DedupType, EmitResult, TaskStatus
from hrops.common.exceptions import is_transient
from hrops.common.org_settings import org_now, org_today, to_org_local
from hrops.common.retry import run_in_transaction
from hrops.config import settings
from hrops.core_hr.service import DirectoryService
from hrops.database import async_session_factory
from hrops.leave.ledger import LeaveLedger
from hrops.notifications.dedup import NotificationDeduplicator
from hrops.notifications.schemas import NotificationPayload
from hrops.notifications.service import (
    NotificationService,
    checkout_reminder_payload,
    registration_alert_payload,
    task_due_payload,
)
from hrops.tasks.models import Task

logger = logging.getLogger(__name__)

MIDNIGHT_CLOSEOUT = "midnight-closeout"
REMINDER_SWEEP = "reminder-sweep"
NOTIFICATION_CLEANUP = "notification-cleanup"
LEAVE_YEAR_OPEN = "leave-year-open"


class JobReport(BaseModel):
    """Outcome of one job run."""

    job: str
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    counts: dict[str, int] = Field(default_factory=dict)
    failures: list[str] = Field(default_factory=list)
    sessions: list[AttendanceSessionOut] = Field(
        default_factory=list,
        description="Attendance sessions the run closed",
    )

    def bump(self, key: str, by: int = 1) -> None:
        self.counts[key] = self.counts.get(key, 0) + by

    def finish(self) -> "JobReport":
        self.finished_at = datetime.now(timezone.utc)
        logger.info("Job %s finished: %s (%d failure(s))", self.job, self.counts, len(self.failures))
        return self


# ═════════════════════════════════════════════════════════════════════
# JobService — job bodies, run inside a caller-provided session
# ═════════════════════════════════════════════════════════════════════


class JobService:
    """Job bodies. Each takes an open session and flushes, never commits."""

    # ── Midnight close-out ──────────────────────────────────────────

    @staticmethod
    async def midnight_closeout(
        db: AsyncSession,
        cutoff_date: Optional[date] = None,
    ) -> JobReport:
        report = JobReport(job=MIDNIGHT_CLOSEOUT)
        cutoff = cutoff_date or org_today()
        result = await AttendanceService.auto_close_stale(db, cutoff)
        report.bump("sessions_closed", result.closed)
        report.failures.extend(f"attendance_session:{sid}" for sid in result.failed)
        report.sessions = result.sessions
        return report.finish()

    # ── Leave year opening ──────────────────────────────────────────

    @staticmethod
    async def leave_year_open(
        db: AsyncSession,
        year: Optional[int] = None,
    ) -> JobReport:
        """Accrue ``year`` (default: the current calendar year) for every active employee."""
        report = JobReport(job=LEAVE_YEAR_OPEN)
        result = await LeaveLedger.open_year(db, year or org_today().year)
        report.bump("employees", result.employees)
        report.bump("balances_opened", result.balances_opened)
        report.failures.extend(f"employee:{eid}" for eid in result.failed)
        return report.finish()

    # ── Reminder sweep ──────────────────────────────────────────────

    @staticmethod
    async def _emit(
        db: AsyncSession,
        report: JobReport,
        deduplicator: NotificationDeduplicator,
        *,
        kind: DedupType,
        recipient_id,
        subject_key: str,
        payload: NotificationPayload,
        today: date,
    ) -> None:
        try:
            outcome = await deduplicator.try_emit(
                db, recipient_id, kind, subject_key, payload, today=today,
            )
        except SQLAlchemyError as exc:
            if is_transient(exc):
                raise
            logger.exception("Failed to emit %s to %s", kind.value, recipient_id)
            report.failures.append(f"{kind.value}:{subject_key}:{recipient_id}")
            return
        suffix = "emitted" if outcome == EmitResult.emitted else "suppressed"
        report.bump(f"{kind.value}_{suffix}")

    @staticmethod
    async def reminder_sweep(
        db: AsyncSession,
        now: Optional[datetime] = None,
        *,
        deduplicator: Optional[NotificationDeduplicator] = None,
    ) -> JobReport:
        """Checkout reminders, task-due alerts and registration alerts."""
        report = JobReport(job=REMINDER_SWEEP)
        deduplicator = deduplicator or NotificationDeduplicator()
        local_now = to_org_local(now) if now else org_now()
        today = local_now.date()

        # Checkout reminders: weekdays, from the reminder time on
        reminder_at = parse_time(settings.CHECKOUT_REMINDER_TIME)
        if today.weekday() < 5 and local_now.time() >= reminder_at:
            for session in await AttendanceService.list_open_sessions(db, today, active_only=True):
                await JobService._emit(
                    db, report, deduplicator,
                    kind=DedupType.checkout_reminder,
                    recipient_id=session.employee_id,
                    subject_key=str(session.id),
                    payload=checkout_reminder_payload(session),
                    today=today,
                )
        else:
            logger.debug("Checkout reminders not due at %s", local_now)

        # Task-due alerts: open tasks due within the window
        now_utc = local_now.astimezone(timezone.utc)
        window_end = now_utc + timedelta(minutes=settings.TASK_DUE_WINDOW_MINUTES)
        tasks = (
            await db.execute(
                select(Task)
                .where(
                    Task.status.notin_([TaskStatus.completed, TaskStatus.cancelled]),
                    Task.due_at.is_not(None),
                    Task.due_at > now_utc,
                    Task.due_at <= window_end,
                )
                .order_by(Task.due_at)
            )
        ).scalars().all()
        for task in tasks:
            payload = task_due_payload(task)
            for recipient_id in task.recipients():
                await JobService._emit(
                    db, report, deduplicator,
                    kind=DedupType.task_due,
                    recipient_id=recipient_id,
                    subject_key=str(task.id),
                    payload=payload,
                    today=today,
                )

        # Registration alerts: every pending employee to every active admin/HR
        pending = await DirectoryService.list_pending(db)
        if pending:
            admins = await DirectoryService.list_active_with_roles(db, REGISTRATION_ALERT_ROLES)
            if not admins:
                logger.warning("%d pending registration(s) but no active admin/HR to alert", len(pending))
            for newcomer in pending:
                payload = registration_alert_payload(newcomer)
                for admin in admins:
                    await JobService._emit(
                        db, report, deduplicator,
                        kind=DedupType.registration_alert,
                        recipient_id=admin.id,
                        subject_key=str(newcomer.id),
                        payload=payload,
                        today=today,
                    )

        return report.finish()

    # ── Notification cleanup ────────────────────────────────────────

    @staticmethod
    async def notification_cleanup(
        db: AsyncSession,
        now: Optional[datetime] = None,
    ) -> JobReport:
        report = JobReport(job=NOTIFICATION_CLEANUP)
        moment = to_org_local(now) if now else org_now()
        cutoff = moment.astimezone(timezone.utc) - timedelta(days=settings.NOTIFICATION_RETENTION_DAYS)
        inbox, records = await NotificationService.purge_older_than(db, cutoff)
        report.bump("notifications_deleted", inbox)
        report.bump("records_deleted", records)
        return report.finish()


# ═════════════════════════════════════════════════════════════════════
# Entry points — one transaction each, retried on transient failures
# ═════════════════════════════════════════════════════════════════════


SessionFactory = async_sessionmaker[AsyncSession]


async def run_midnight_closeout(
    cutoff_date: Optional[date] = None,
    *,
    session_factory: Optional[SessionFactory] = None,
) -> JobReport:
    return await run_in_transaction(
        session_factory or async_session_factory,
        lambda db: JobService.midnight_closeout(db, cutoff_date),
    )


async def run_reminder_sweep(
    now: Optional[datetime] = None,
    *,
    session_factory: Optional[SessionFactory] = None,
) -> JobReport:
    return await run_in_transaction(
        session_factory or async_session_factory,
        lambda db: JobService.reminder_sweep(db, now),
    )


async def run_notification_cleanup(
    now: Optional[datetime] = None,
    *,
    session_factory: Optional[SessionFactory] = None,
) -> JobReport:
    return await run_in_transaction(
        session_factory or async_session_factory,
        lambda db: JobService.notification_cleanup(db, now),
    )



async def run_leave_year_open(
    year: Optional[int] = None,
    *,
    session_factory: Optional[SessionFactory] = None,
) -> JobReport:
    return await run_in_transaction(
        session_factory or async_session_factory,
        lambda db: JobService.leave_year_open(db, year),
    )


JOBS: dict[str, Callable[..., Awaitable[JobReport]]] = {
    MIDNIGHT_CLOSEOUT: run_midnight_closeout,
    REMINDER_SWEEP: run_reminder_sweep,
    NOTIFICATION_CLEANUP: run_notification_cleanup,
    LEAVE_YEAR_OPEN: run_leave_year_open,
}
