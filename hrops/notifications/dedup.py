"""Exactly-once emission of scheduled notifications.

A notification is identified by (recipient, type, subject, emission date).
The first caller to insert that key into ``notification_records`` wins and
hands the payload to the delivery channel; every later caller, including a
concurrent job run, hits the unique constraint and is suppressed. Any other
integrity failure (an unknown recipient, say) propagates.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hrops.common.constants import DedupType, EmitResult
from hrops.common.exceptions import is_unique_violation
from hrops.common.org_settings import org_today
from hrops.notifications.delivery import IN_APP, NotificationDelivery, default_delivery
from hrops.notifications.models import EMISSION_UNIQUE_CONSTRAINT, NotificationRecord
from hrops.notifications.schemas import NotificationPayload

logger = logging.getLogger(__name__)


class NotificationDeduplicator:
    """Records each emission once, then forwards it to a delivery channel."""

    def __init__(
        self,
        delivery: Optional[NotificationDelivery] = None,
        channel: str = IN_APP,
    ) -> None:
        self.delivery = delivery or default_delivery
        self.channel = channel

    async def try_emit(
        self,
        db: AsyncSession,
        recipient_id: uuid.UUID,
        type: DedupType,
        subject_key: str,
        payload: NotificationPayload,
        *,
        today: Optional[date] = None,
    ) -> EmitResult:
        """Emit at most once per (recipient, type, subject, day).

        Delivery failures are logged; the record stays, so the notification
        is not retried later the same day.
        """
        emission_date = today or org_today()
        try:
            async with db.begin_nested():
                db.add(
                    NotificationRecord(
                        recipient_id=recipient_id,
                        type=type,
                        subject_key=str(subject_key),
                        emission_date=emission_date,
                    )
                )
                await db.flush()
        except IntegrityError as exc:
            if not is_unique_violation(exc, EMISSION_UNIQUE_CONSTRAINT):
                raise
            logger.debug(
                "Suppressed %s for %s (subject %s, %s)",
                type.value, recipient_id, subject_key, emission_date,
            )
            return EmitResult.suppressed

        try:
            delivered = await self.delivery.deliver(db, recipient_id, self.channel, payload)
        except Exception:
            logger.exception(
                "Delivery of %s to %s raised; emission stays recorded",
                type.value, recipient_id,
            )
        else:
            if not delivered:
                logger.warning(
                    "Delivery of %s to %s failed; emission stays recorded",
                    type.value, recipient_id,
                )
        return EmitResult.emitted
