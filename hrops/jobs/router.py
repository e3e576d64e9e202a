"""Job trigger endpoints for the external scheduler.

Each call runs one job synchronously and returns its report. Callers
authenticate with the shared ``X-Cron-Secret`` header, not a user token.
"""


import hmac
import logging
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hrops.common.exceptions import ForbiddenException
from hrops.common.rate_limit import JOB_TRIGGER_LIMIT, limiter
from hrops.config import settings
from hrops.database import async_session_factory
from hrops.jobs.service import (
    JobReport,
    run_leave_year_open,
    run_midnight_closeout,
    run_notification_cleanup,
    run_reminder_sweep,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["jobs"])


# ── Dependencies ────────────────────────────────────────────────────

def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for job runs (overridden in tests)."""
    return async_session_factory


async def verify_cron_secret(
    x_cron_secret: Optional[str] = Header(default=None),
) -> None:
    if not settings.CRON_SECRET:
        logger.warning("Job trigger refused: CRON_SECRET is not configured")
        raise ForbiddenException("Job triggers are disabled.")
    if not x_cron_secret or not hmac.compare_digest(x_cron_secret, settings.CRON_SECRET):
        raise ForbiddenException("Invalid cron secret.")


# ── POST /midnight-closeout ─────────────────────────────────────────

@router.post(
    "/midnight-closeout",
    response_model=JobReport,
    dependencies=[Depends(verify_cron_secret)],
)
@limiter.limit(JOB_TRIGGER_LIMIT)
async def midnight_closeout(
    request: Request,
    cutoff_date: Optional[date] = Query(None, description="Close sessions before this date (default: today)"),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    return await run_midnight_closeout(cutoff_date, session_factory=session_factory)


# ── POST /reminder-sweep ────────────────────────────────────────────

@router.post(
    "/reminder-sweep",
    response_model=JobReport,
    dependencies=[Depends(verify_cron_secret)],
)
@limiter.limit(JOB_TRIGGER_LIMIT)
async def reminder_sweep(
    request: Request,
    at: Optional[datetime] = Query(None, description="Evaluate as of this moment (default: now)"),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    return await run_reminder_sweep(at, session_factory=session_factory)


# ── POST /notification-cleanup ──────────────────────────────────────

@router.post(
    "/notification-cleanup",
    response_model=JobReport,
    dependencies=[Depends(verify_cron_secret)],
)
@limiter.limit(JOB_TRIGGER_LIMIT)
async def notification_cleanup(
    request: Request,
    at: Optional[datetime] = Query(None),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    return await run_notification_cleanup(at, session_factory=session_factory)


# ── POST /leave-year-open ───────────────────────────────────────────

@router.post(
    "/leave-year-open",
    response_model=JobReport,
    dependencies=[Depends(verify_cron_secret)],
)
@limiter.limit(JOB_TRIGGER_LIMIT)
async def leave_year_open(
    request: Request,
    year: Optional[int] = Query(None, ge=2000, le=2100, description="Leave year to open (default: this year)"),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    return await run_leave_year_open(year, session_factory=session_factory)
