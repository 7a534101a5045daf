"""001 – Initial schema: users, leave catalog, balances, requests, seed types.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000+00:00
"""

from alembic import op
import sqlalchemy as sa

from portal.common.constants import DEFAULT_LEAVE_TYPES

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("leave_status", ["pending", "approved", "rejected", "cancelled"]),
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
    # ── Extensions ────────────────────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ── Enum types ────────────────────────────────────────────────────────
    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. users (owned by the auth service, read here) ──────────────────
    op.execute("""
        CREATE TABLE users (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            email       VARCHAR(255) NOT NULL UNIQUE,
            full_name   VARCHAR(200) NOT NULL,
            is_active   BOOLEAN DEFAULT TRUE,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 2. leave_types ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_types (
            id                  UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name                VARCHAR(100) NOT NULL UNIQUE,
            description         TEXT,
            default_allocation  INTEGER DEFAULT 0,
            is_active           BOOLEAN DEFAULT TRUE,
            created_at          TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 3. leave_balances ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_balances (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id         UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            leave_type_id   UUID NOT NULL REFERENCES leave_types(id),
            year            INTEGER NOT NULL,
            allocated       INTEGER NOT NULL DEFAULT 0,
            used            INTEGER NOT NULL DEFAULT 0,
            remaining       INTEGER NOT NULL DEFAULT 0,
            updated_at      TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_balance UNIQUE (user_id, leave_type_id, year),
            CONSTRAINT ck_leave_balance_used CHECK (used >= 0),
            CONSTRAINT ck_leave_balance_remaining CHECK (remaining >= 0),
            CONSTRAINT ck_leave_balance_ledger CHECK (remaining = allocated - used)
        )
    """)

    # ── 4. leave_requests ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_requests (
            id                    UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id               UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            leave_type_id         UUID NOT NULL REFERENCES leave_types(id),
            start_date            DATE NOT NULL,
            end_date              DATE NOT NULL,
            total_days            INTEGER NOT NULL,
            reason                TEXT,
            contact_during_leave  VARCHAR(255),
            status                leave_status NOT NULL DEFAULT 'pending',
            submitted_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at            TIMESTAMPTZ DEFAULT NOW(),
            resolved_at           TIMESTAMPTZ,
            CONSTRAINT ck_leave_request_dates CHECK (end_date >= start_date)
        )
    """)
    op.execute(
        "CREATE INDEX ix_leave_requests_user_submitted "
        "ON leave_requests (user_id, submitted_at)"
    )

    # ── Seed data ─────────────────────────────────────────────────────────
    leave_types = sa.table(
        "leave_types",
        sa.column("name", sa.String),
        sa.column("description", sa.Text),
        sa.column("default_allocation", sa.Integer),
    )
    op.bulk_insert(
        leave_types,
        [
            {"name": name, "description": description, "default_allocation": days}
            for name, description, days in DEFAULT_LEAVE_TYPES
        ],
    )


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "leave_requests",
        "leave_balances",
        "leave_types",
        "users",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    # Drop enum types
    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)

    # Drop extensions
    op.execute('DROP EXTENSION IF EXISTS "uuid-ossp"')
