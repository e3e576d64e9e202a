"""Notification service — inbox CRUD, retention purge and payload builders."""

from __future__ import annotations

import math
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hrops.common.constants import NotificationType
from hrops.common.exceptions import ForbiddenException, NotFoundException
from hrops.common.pagination import PaginationParams
from hrops.notifications.models import Notification, NotificationRecord
from hrops.notifications.schemas import (
    NotificationListMeta,
    NotificationListResponse,
    NotificationPayload,
    NotificationResponse,
)


# ── Core service ────────────────────────────────────────────────────


class NotificationService:
    """Async notification operations."""

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        *,
        recipient_id: uuid.UUID,
        type: NotificationType = NotificationType.info,
        title: str,
        message: str,
        action_url: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[uuid.UUID] = None,
    ) -> Notification:
        """Create a new notification and flush to DB."""
        notification = Notification(
            recipient_id=recipient_id,
            type=type,
            title=title,
            message=message,
            action_url=action_url,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.add(notification)
        await db.flush()
        return notification

    @staticmethod
    async def get_notifications(
        db: AsyncSession,
        employee_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        is_read: Optional[bool] = None,
        notification_type: Optional[NotificationType] = None,
    ) -> NotificationListResponse:
        """Return paginated notifications for an employee, newest first."""
        query = (
            select(Notification)
            .where(Notification.recipient_id == employee_id)
            .order_by(Notification.created_at.desc())
        )

        if is_read is not None:
            query = query.where(Notification.is_read == is_read)
        if notification_type is not None:
            query = query.where(Notification.type == notification_type)

        # Total count (with filters applied)
        count_q = query.with_only_columns(func.count()).order_by(None)
        total: int = (await db.execute(count_q)).scalar_one()

        # Paginated rows
        rows = (
            await db.execute(
                query.offset(pagination.offset).limit(pagination.page_size)
            )
        ).scalars().all()

        total_pages = math.ceil(total / pagination.page_size) if total else 0

        # Unread count (always unfiltered — for the badge)
        unread = await NotificationService.get_unread_count(db, employee_id)

        return NotificationListResponse(
            data=[NotificationResponse.model_validate(n) for n in rows],
            meta=NotificationListMeta(
                page=pagination.page,
                page_size=pagination.page_size,
                total=total,
                total_pages=total_pages,
                has_next=pagination.page < total_pages,
                has_prev=pagination.page > 1,
                unread=unread,
            ),
        )

    @staticmethod
    async def mark_read(
        db: AsyncSession,
        notification_id: uuid.UUID,
        employee_id: uuid.UUID,
    ) -> Notification:
        """Mark a single notification as read. Verifies ownership."""
        result = await db.execute(
            select(Notification).where(Notification.id == notification_id)
        )
        notification = result.scalars().first()

        if notification is None:
            raise NotFoundException("Notification", notification_id)

        if notification.recipient_id != employee_id:
            raise ForbiddenException("You can only mark your own notifications as read.")

        notification.is_read = True
        notification.read_at = datetime.now(timezone.utc)
        await db.flush()
        return notification

    @staticmethod
    async def mark_all_read(
        db: AsyncSession,
        employee_id: uuid.UUID,
    ) -> int:
        """Bulk-mark all unread notifications as read. Returns count updated."""
        now = datetime.now(timezone.utc)
        result = await db.execute(
            update(Notification)
            .where(
                Notification.recipient_id == employee_id,
                Notification.is_read.is_(False),
            )
            .values(is_read=True, read_at=now)
        )
        await db.flush()
        return result.rowcount  # type: ignore[return-value]

    @staticmethod
    async def get_unread_count(
        db: AsyncSession,
        employee_id: uuid.UUID,
    ) -> int:
        """Return the number of unread notifications for an employee."""
        result = await db.execute(
            select(func.count())
            .select_from(Notification)
            .where(
                Notification.recipient_id == employee_id,
                Notification.is_read.is_(False),
            )
        )
        return result.scalar_one()

    @staticmethod
    async def purge_older_than(
        db: AsyncSession,
        cutoff: datetime,
    ) -> tuple[int, int]:
        """Delete inbox rows and dedup records created before ``cutoff``.

        Returns (notifications deleted, records deleted).
        """
        inbox = await db.execute(
            delete(Notification).where(Notification.created_at < cutoff)
        )
        records = await db.execute(
            delete(NotificationRecord).where(NotificationRecord.created_at < cutoff)
        )
        await db.flush()
        return inbox.rowcount or 0, records.rowcount or 0


# ── Payload builders ────────────────────────────────────────────────
# Accept the ORM object directly to avoid tight schema coupling.


def leave_approved_payload(leave_request) -> NotificationPayload:
    return NotificationPayload(
        type=NotificationType.approval,
        title="Leave Request Approved",
        message=(
            f"Your leave request from {leave_request.start_date} to "
            f"{leave_request.end_date} ({leave_request.computed_days} day(s)) "
            f"has been approved."
        ),
        action_url=f"/leave/requests/{leave_request.id}",
        entity_type="leave_request",
        entity_id=leave_request.id,
    )


def leave_rejected_payload(leave_request, reason: str) -> NotificationPayload:
    return NotificationPayload(
        type=NotificationType.alert,
        title="Leave Request Rejected",
        message=(
            f"Your leave request from {leave_request.start_date} to "
            f"{leave_request.end_date} was rejected. Reason: {reason}"
        ),
        action_url=f"/leave/requests/{leave_request.id}",
        entity_type="leave_request",
        entity_id=leave_request.id,
    )


def checkout_reminder_payload(session) -> NotificationPayload:
    return NotificationPayload(
        type=NotificationType.reminder,
        title="Don't forget to clock out",
        message=(
            f"You clocked in at {session.clock_in:%H:%M} on {session.work_date} "
            f"and have not clocked out yet."
        ),
        action_url="/attendance",
        entity_type="attendance_session",
        entity_id=session.id,
    )


def task_due_payload(task) -> NotificationPayload:
    return NotificationPayload(
        type=NotificationType.reminder,
        title="Task due soon",
        message=f"Task '{task.title}' is due at {task.due_at:%Y-%m-%d %H:%M}.",
        action_url=f"/tasks/{task.id}",
        entity_type="task",
        entity_id=task.id,
    )


def registration_alert_payload(employee) -> NotificationPayload:
    return NotificationPayload(
        type=NotificationType.alert,
        title="New employee registration",
        message=(
            f"{employee.full_name} ({employee.email}) registered and is "
            f"waiting for activation."
        ),
        action_url=f"/employees/{employee.id}",
        entity_type="employee",
        entity_id=employee.id,
    )
