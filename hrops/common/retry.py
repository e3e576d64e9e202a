"""Bounded retry of whole transactions on transient store failures.

Every engine operation is transactional, so a failed attempt leaves nothing
behind and the complete unit of work can simply run again in a new session.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from hrops.common.exceptions import TransientStoreError, is_transient
from hrops.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_in_transaction(
    session_factory: async_sessionmaker[AsyncSession],
    work: Callable[[AsyncSession], Awaitable[T]],
    *,
    attempts: Optional[int] = None,
    max_wait: Optional[float] = None,
) -> T:
    """Run ``work`` in its own session and commit; retry on transient failures.

    Non-transient errors propagate after rollback on the first attempt.

    Raises:
        TransientStoreError: every attempt failed with a transient error.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts or settings.STORE_RETRY_ATTEMPTS),
        wait=wait_exponential(
            multiplier=0.5,
            min=0.5,
            max=max_wait if max_wait is not None else settings.STORE_RETRY_MAX_WAIT_SECONDS,
        ),
        retry=retry_if_exception_type(TransientStoreError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            async with session_factory() as session:
                try:
                    result = await work(session)
                    await session.commit()
                except Exception as exc:
                    await session.rollback()
                    if is_transient(exc) and not isinstance(exc, TransientStoreError):
                        raise TransientStoreError(str(exc)) from exc
                    raise
            return result
    raise AssertionError("unreachable")  # pragma: no cover
