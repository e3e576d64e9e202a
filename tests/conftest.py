"""Shared test fixtures — async DB, client, auth helpers, factories.

Reusable across all test modules (directory, attendance, leave, jobs, etc.).
Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test secrets before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
# Fixtures date leave in 2025; pin the summary year so the suite does not age
os.environ.setdefault("LEAVE_YEAR", "2025")

import uuid
from datetime import datetime, time, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from hrops.common.constants import EmployeeStatus, UserRole
from hrops.config import settings
from hrops.database import Base, get_db
from hrops.jobs.router import get_session_factory
from hrops.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
# (e.g. Employee → LeaveBalance, LeaveRequest)
import hrops.common.audit  # noqa: F401
import hrops.common.models  # noqa: F401
import hrops.core_hr.models  # noqa: F401
import hrops.leave.models  # noqa: F401
import hrops.attendance.models  # noqa: F401
import hrops.notifications.models  # noqa: F401
import hrops.tasks.models  # noqa: F401

# ── SQLite compat: compile PG-specific types to TEXT/CHAR ───────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Register PG-compatible functions for SQLite
@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() as a SQLite custom function."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f"),
    )

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from hrops.common.rate_limit import limiter

    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependencies overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    application.dependency_overrides[get_session_factory] = lambda: TestSessionFactory
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


@pytest.fixture
async def fk_db() -> AsyncGenerator[AsyncSession, None]:
    """Session with SQLite foreign-key enforcement switched on.

    The pragma is ignored inside a transaction, so it is issued before any
    write; do not combine with fixtures that seed through ``db``.
    """
    async with TestSessionFactory() as session:
        await session.execute(text("PRAGMA foreign_keys=ON"))
        try:
            yield session
        finally:
            await session.rollback()
            await session.execute(text("PRAGMA foreign_keys=OFF"))
            await session.commit()


# ── Model factories ─────────────────────────────────────────────────

def _make_employee(
    *,
    email: Optional[str] = None,
    full_name: str = "Test User",
    role: UserRole = UserRole.employee,
    status: EmployeeStatus = EmployeeStatus.active,
    working_days: Optional[list[str]] = None,
    late_threshold: Optional[time] = None,
) -> dict:
    code = uuid.uuid4().hex[:6].upper()
    return dict(
        id=uuid.uuid4(),
        employee_code=f"EMP-{code}",
        full_name=full_name,
        email=email or f"user.{code.lower()}@example.com",
        status=status,
        role=role,
        working_days=working_days or ["monday", "tuesday", "wednesday", "thursday", "friday"],
        late_threshold=late_threshold,
        total_annual_leave=0,
        used_annual_leave=0,
        remaining_annual_leave=0,
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )


async def seed_employee(db: AsyncSession, **kwargs) -> dict:
    """Insert an employee built by ``_make_employee`` and return its data dict."""
    from hrops.core_hr.models import Employee

    data = _make_employee(**kwargs)
    db.add(Employee(**data))
    await db.flush()
    return data


async def seed_leave_type(
    db: AsyncSession,
    *,
    code: str = "annual",
    name: str = "Annual Leave",
    default_days: int = 10,
    is_active: bool = True,
):
    from hrops.leave.models import LeaveType

    leave_type = LeaveType(
        id=uuid.uuid4(),
        code=code,
        name=name,
        default_days=default_days,
        is_active=is_active,
        created_at=datetime.now(timezone.utc),
    )
    db.add(leave_type)
    await db.flush()
    return leave_type


async def seed_balance(
    db: AsyncSession,
    employee_id: uuid.UUID,
    *,
    year: int = 2025,
    leave_type: str = "annual",
    total: int = 10,
    used: int = 0,
):
    from hrops.leave.models import LeaveBalance

    balance = LeaveBalance(
        id=uuid.uuid4(),
        employee_id=employee_id,
        year=year,
        leave_type=leave_type,
        total_days=total,
        used_days=used,
        remaining_days=total - used,
        updated_at=datetime.now(timezone.utc),
    )
    db.add(balance)
    await db.flush()
    return balance


@pytest.fixture
async def test_employee(db) -> dict:
    """Insert an active employee on a Monday–Friday schedule."""
    return await seed_employee(db)


@pytest.fixture
async def approver(db) -> dict:
    """Insert an active HR user who may decide leave requests."""
    return await seed_employee(db, full_name="HR Approver", role=UserRole.hr)


@pytest.fixture
async def annual_leave(db):
    return await seed_leave_type(db)


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    employee_id: uuid.UUID,
    role: UserRole = UserRole.employee,
    expired: bool = False,
    token_type: str = "access",
) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {
        "sub": str(employee_id),
        "role": role.value,
        "type": token_type,
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def bearer(employee: dict) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(employee['id'], employee['role'])}"}


@pytest.fixture
async def auth_headers(test_employee) -> dict[str, str]:
    """Bearer headers for ``test_employee``."""
    return bearer(test_employee)


@pytest.fixture
async def approver_headers(approver) -> dict[str, str]:
    return bearer(approver)


CRON_HEADERS = {"X-Cron-Secret": "test-cron-secret"}
