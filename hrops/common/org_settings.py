"""Organization-level configuration read at call time (late threshold, timezone)."""

from __future__ import annotations

import uuid
from datetime import date, datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hrops.common.calendar import parse_time
from hrops.common.models import AppSetting
from hrops.config import settings

LATE_THRESHOLD_KEY = "late_threshold"


def org_timezone() -> ZoneInfo:
    return ZoneInfo(settings.TIMEZONE)


def org_now() -> datetime:
    """Current wall-clock time in the organization's timezone."""
    return datetime.now(timezone.utc).astimezone(org_timezone())


def org_today() -> date:
    return org_now().date()


def current_leave_year() -> int:
    """Leave year the employee summary columns describe."""
    return settings.LEAVE_YEAR or org_today().year


def to_org_local(moment: datetime) -> datetime:
    """Express ``moment`` in the organization's timezone; naive values are taken as already local."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=org_timezone())
    return moment.astimezone(org_timezone())


async def get_org_late_threshold(db: AsyncSession) -> time:
    """Organization-wide late threshold; falls back to DEFAULT_LATE_THRESHOLD."""
    result = await db.execute(
        select(AppSetting.value).where(AppSetting.key == LATE_THRESHOLD_KEY)
    )
    value = result.scalar()
    if isinstance(value, dict) and value.get("time"):
        return parse_time(value["time"])
    return parse_time(settings.DEFAULT_LATE_THRESHOLD)


async def set_org_late_threshold(
    db: AsyncSession,
    threshold: time,
    *,
    updated_by: Optional[uuid.UUID] = None,
) -> AppSetting:
    """Change the organization threshold. Existing sessions keep the value they were created with."""
    result = await db.execute(
        select(AppSetting).where(AppSetting.key == LATE_THRESHOLD_KEY)
    )
    setting = result.scalars().first()
    payload = {"time": threshold.isoformat(timespec="seconds")}
    if setting is None:
        setting = AppSetting(
            key=LATE_THRESHOLD_KEY,
            value=payload,
            description="Daily clock-in time after which an arrival is late",
            updated_by=updated_by,
        )
        db.add(setting)
    else:
        setting.value = payload
        setting.updated_by = updated_by
        setting.updated_at = datetime.now(timezone.utc)
    await db.flush()
    return setting


async def resolve_late_threshold(
    db: AsyncSession,
    employee_threshold: Optional[time],
) -> time:
    """Employee-assigned threshold if present, otherwise the organization one."""
    if employee_threshold is not None:
        return employee_threshold
    return await get_org_late_threshold(db)
