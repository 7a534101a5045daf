"""Shared test fixtures — async DB, client, auth helpers, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test configuration before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("ENVIRONMENT", "test")

import uuid
from datetime import date, datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool

from portal.config import settings
from portal.database import Base, get_db
from portal.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module foreign keys
import portal.auth.models  # noqa: F401
import portal.leave.models  # noqa: F401

from portal.auth.models import User
from portal.common.constants import LeaveStatus
from portal.leave.models import LeaveBalance, LeaveRequest, LeaveType


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
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
    from portal.common.rate_limit import limiter

    limiter.reset()
    yield


@pytest.fixture
async def file_session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Sessions on a file-backed SQLite database, each on its own connection.

    The in-memory engine above shares one connection between sessions; tests
    that race real transactions against each other use this one instead.
    """
    file_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'leave.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 15},
    )

    @event.listens_for(file_engine.sync_engine, "connect")
    def _enable_wal(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    async with file_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)
    await file_engine.dispose()


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
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
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


# ── Model factories ─────────────────────────────────────────────────

def _make_user(
    *,
    email: str = "student@university.edu",
    full_name: str = "Test Student",
    is_active: bool = True,
) -> dict:
    return dict(
        id=uuid.uuid4(),
        email=email,
        full_name=full_name,
        is_active=is_active,
        created_at=datetime.now(timezone.utc),
    )


async def seed_user(db: AsyncSession, **kwargs) -> User:
    user = User(**_make_user(**kwargs))
    db.add(user)
    await db.flush()
    return user


async def seed_leave_type(
    db: AsyncSession,
    *,
    name: str = "Sick Leave",
    description: Optional[str] = None,
    default_allocation: int = 10,
    is_active: bool = True,
) -> LeaveType:
    lt = LeaveType(
        id=uuid.uuid4(),
        name=name,
        description=description,
        default_allocation=default_allocation,
        is_active=is_active,
        created_at=datetime.now(timezone.utc),
    )
    db.add(lt)
    await db.flush()
    return lt


async def seed_balance(
    db: AsyncSession,
    user_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    *,
    year: int = 2024,
    allocated: int = 10,
    used: int = 0,
) -> LeaveBalance:
    bal = LeaveBalance(
        id=uuid.uuid4(),
        user_id=user_id,
        leave_type_id=leave_type_id,
        year=year,
        allocated=allocated,
        used=used,
        remaining=allocated - used,
    )
    db.add(bal)
    await db.flush()
    return bal


async def seed_request(
    db: AsyncSession,
    user_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    *,
    start: date,
    end: Optional[date] = None,
    status: LeaveStatus = LeaveStatus.pending,
    submitted_at: Optional[datetime] = None,
) -> LeaveRequest:
    """Insert a request directly, bypassing the ledger."""
    end = end or start
    req = LeaveRequest(
        id=uuid.uuid4(),
        user_id=user_id,
        leave_type_id=leave_type_id,
        start_date=start,
        end_date=end,
        total_days=(end - start).days + 1,
        status=status,
        submitted_at=submitted_at or datetime.now(timezone.utc),
    )
    db.add(req)
    await db.flush()
    return req


@pytest.fixture
async def test_user(db) -> User:
    """Insert an active user."""
    return await seed_user(db)


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    user_id: uuid.UUID,
    expired: bool = False,
) -> str:
    """Generate a JWT access token like the portal's auth service issues."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=24)
    payload = {
        "sub": str(user_id),
        "email": "student@university.edu",
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


@pytest.fixture
async def auth_headers(db, test_user) -> dict[str, str]:
    """Return Bearer auth headers for the committed test user."""
    await db.commit()
    token = create_access_token(test_user.id)
    return {"Authorization": f"Bearer {token}"}
