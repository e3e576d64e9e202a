"""Notification delivery channels.

The engine decides *whether* a notification goes out; a delivery channel
only puts it in front of the recipient. The default channel writes an inbox
row. Push or e-mail transports plug in by implementing ``NotificationDelivery``.
"""

from __future__ import annotations

import logging
import uuid
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hrops.notifications.schemas import NotificationPayload
from hrops.notifications.service import NotificationService

logger = logging.getLogger(__name__)

IN_APP = "in_app"


class NotificationDelivery(Protocol):
    async def deliver(
        self,
        db: AsyncSession,
        recipient_id: uuid.UUID,
        channel: str,
        payload: NotificationPayload,
    ) -> bool:
        """Return True when the notification was handed over."""
        ...


class InAppDelivery:
    """Writes an inbox ``Notification`` row inside its own savepoint."""

    async def deliver(
        self,
        db: AsyncSession,
        recipient_id: uuid.UUID,
        channel: str,
        payload: NotificationPayload,
    ) -> bool:
        if channel != IN_APP:
            logger.warning("InAppDelivery cannot deliver on channel %r", channel)
            return False
        try:
            async with db.begin_nested():
                await NotificationService.create_notification(
                    db,
                    recipient_id=recipient_id,
                    **payload.model_dump(),
                )
        except SQLAlchemyError:
            logger.exception(
                "In-app delivery of %r to %s failed", payload.title, recipient_id,
            )
            return False
        return True


default_delivery: NotificationDelivery = InAppDelivery()
