"""001 – Engine schema: directory, leave ledger, attendance, notifications.

Revision ID: 001_engine_schema
Revises:
Create Date: 2025-11-10 09:00:00.000000+01:00
"""

from alembic import op

# Revision identifiers
revision = "001_engine_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("employee_status", ["pending", "active", "inactive"]),
    ("user_role", ["employee", "teamlead", "hr", "admin", "superadmin"]),
    ("leave_status", ["pending", "approved", "rejected", "cancelled"]),
    ("session_closed_by", ["self", "system-midnight", "manual-admin"]),
    ("task_status", ["pending", "in_progress", "completed", "cancelled"]),
    ("notification_type", ["info", "approval", "reminder", "alert"]),
    (
        "notification_dedup_type",
        ["checkout_reminder", "task_due", "registration_alert"],
    ),
]


def _create_enum(name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"CREATE TYPE {name} AS ENUM ({vals})")


def _drop_enum(name: str) -> None:
    op.execute(f"DROP TYPE IF EXISTS {name}")


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. employees ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE employees (
            id                     UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_code          VARCHAR(20)  NOT NULL UNIQUE,
            full_name              VARCHAR(255) NOT NULL,
            email                  VARCHAR(255) NOT NULL UNIQUE,
            status                 employee_status NOT NULL DEFAULT 'pending',
            role                   user_role NOT NULL DEFAULT 'employee',
            working_days           JSONB NOT NULL
                                   DEFAULT '["monday", "tuesday", "wednesday", "thursday", "friday"]',
            late_threshold         TIME,
            total_annual_leave     INTEGER NOT NULL DEFAULT 0,
            used_annual_leave      INTEGER NOT NULL DEFAULT 0,
            remaining_annual_leave INTEGER NOT NULL DEFAULT 0,
            created_at             TIMESTAMPTZ DEFAULT NOW(),
            updated_at             TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_employees_status_role ON employees(status, role)")

    # ── 2. leave_types ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_types (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            code         VARCHAR(20)  NOT NULL UNIQUE,
            name         VARCHAR(100) NOT NULL,
            default_days INTEGER NOT NULL DEFAULT 0,
            is_active    BOOLEAN NOT NULL DEFAULT TRUE,
            created_at   TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 3. leave_balances ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_balances (
            id             UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id    UUID NOT NULL REFERENCES employees(id),
            year           INTEGER NOT NULL,
            leave_type     VARCHAR(20) NOT NULL REFERENCES leave_types(code),
            total_days     INTEGER NOT NULL DEFAULT 0,
            used_days      INTEGER NOT NULL DEFAULT 0,
            remaining_days INTEGER NOT NULL DEFAULT 0,
            updated_at     TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_balance UNIQUE (employee_id, year, leave_type),
            CONSTRAINT ck_leave_balance_used CHECK (used_days >= 0),
            CONSTRAINT ck_leave_balance_remaining CHECK (remaining_days >= 0),
            CONSTRAINT ck_leave_balance_consistent
                CHECK (remaining_days = total_days - used_days)
        )
    """)

    # ── 4. leave_requests ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_requests (
            id               UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id      UUID NOT NULL REFERENCES employees(id),
            leave_type       VARCHAR(20) NOT NULL REFERENCES leave_types(code),
            start_date       DATE NOT NULL,
            end_date         DATE NOT NULL,
            computed_days    INTEGER NOT NULL,
            reason           TEXT,
            status           leave_status NOT NULL DEFAULT 'pending',
            decided_by       UUID REFERENCES employees(id),
            decided_at       TIMESTAMPTZ,
            rejection_reason TEXT,
            cancelled_at     TIMESTAMPTZ,
            created_at       TIMESTAMPTZ DEFAULT NOW(),
            updated_at       TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_leave_request_range CHECK (end_date >= start_date),
            CONSTRAINT ck_leave_request_days CHECK (computed_days > 0)
        )
    """)
    op.execute(
        "CREATE INDEX ix_leave_requests_employee_status "
        "ON leave_requests(employee_id, status)"
    )
    op.execute(
        "CREATE INDEX ix_leave_requests_dates ON leave_requests(start_date, end_date)"
    )

    # ── 5. attendance_sessions ────────────────────────────────────────────
    op.execute("""
        CREATE TABLE attendance_sessions (
            id                     UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id            UUID NOT NULL REFERENCES employees(id),
            work_date              DATE NOT NULL,
            clock_in               TIME NOT NULL,
            clock_out              TIME,
            is_late                BOOLEAN NOT NULL DEFAULT FALSE,
            late_minutes           INTEGER NOT NULL DEFAULT 0,
            late_threshold_applied TIME NOT NULL,
            hours_worked           NUMERIC(5, 2),
            closed_by              session_closed_by,
            created_at             TIMESTAMPTZ DEFAULT NOW(),
            updated_at             TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_attendance_session_emp_date UNIQUE (employee_id, work_date),
            CONSTRAINT ck_attendance_session_late_minutes CHECK (late_minutes >= 0)
        )
    """)
    op.execute(
        "CREATE INDEX ix_attendance_sessions_open "
        "ON attendance_sessions(work_date, clock_out)"
    )

    # ── 6. tasks ──────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE tasks (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            title       VARCHAR(255) NOT NULL,
            assignee_id UUID REFERENCES employees(id),
            created_by  UUID REFERENCES employees(id),
            due_at      TIMESTAMPTZ,
            status      task_status NOT NULL DEFAULT 'pending',
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_tasks_due_at_status ON tasks(due_at, status)")

    # ── 7. notifications ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE notifications (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            recipient_id UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            type         notification_type NOT NULL DEFAULT 'info',
            title        VARCHAR(200) NOT NULL,
            message      TEXT NOT NULL,
            action_url   VARCHAR(500),
            entity_type  VARCHAR(50),
            entity_id    UUID,
            is_read      BOOLEAN NOT NULL DEFAULT FALSE,
            read_at      TIMESTAMPTZ,
            created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_notifications_recipient_read "
        "ON notifications(recipient_id, is_read)"
    )
    op.execute("CREATE INDEX ix_notifications_created_at ON notifications(created_at)")

    # ── 8. notification_records ───────────────────────────────────────────
    op.execute("""
        CREATE TABLE notification_records (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            recipient_id  UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            type          notification_dedup_type NOT NULL,
            subject_key   VARCHAR(100) NOT NULL,
            emission_date DATE NOT NULL,
            created_at    TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_notification_record_emission
                UNIQUE (recipient_id, type, subject_key, emission_date)
        )
    """)
    op.execute(
        "CREATE INDEX ix_notification_records_created_at "
        "ON notification_records(created_at)"
    )

    # ── 9. audit_trail ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            actor_id    UUID REFERENCES employees(id),
            action      VARCHAR(50) NOT NULL,
            entity_type VARCHAR(50) NOT NULL,
            entity_id   UUID NOT NULL,
            old_values  JSONB,
            new_values  JSONB,
            created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id ON audit_trail(actor_id)")
    op.execute("CREATE INDEX ix_audit_trail_entity ON audit_trail(entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_created_at ON audit_trail(created_at)")

    # ── 10. app_settings ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE app_settings (
            key         VARCHAR(100) PRIMARY KEY,
            value       JSONB NOT NULL,
            description TEXT,
            updated_at  TIMESTAMPTZ DEFAULT NOW(),
            updated_by  UUID REFERENCES employees(id)
        )
    """)

    # ══════════════════════════════════════════════════════════════════════
    # SEED DATA
    # ══════════════════════════════════════════════════════════════════════

    op.execute("""
        INSERT INTO leave_types (code, name, default_days) VALUES
        ('annual', 'Annual Leave', 7)
    """)

    op.execute("""
        INSERT INTO app_settings (key, value, description) VALUES
        ('late_threshold', '{"time": "09:00:00"}',
         'Daily clock-in time after which an arrival is late')
    """)


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "app_settings",
        "audit_trail",
        "notification_records",
        "notifications",
        "tasks",
        "attendance_sessions",
        "leave_requests",
        "leave_balances",
        "leave_types",
        "employees",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)
