"""Balance ledger tests — listing with zero rows, reserve, release, racing reserves.

Tests run against SQLite via the shared conftest.py fixtures.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import date

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.common.constants import LeaveStatus
from portal.common.exceptions import InsufficientBalance
from portal.leave.ledger import BalanceLedger
from portal.leave.models import LeaveBalance
from tests.conftest import (
    TestSessionFactory,
    seed_balance,
    seed_leave_type,
    seed_request,
    seed_user,
)


async def _fetch_balance(db: AsyncSession, balance_id: uuid.UUID) -> LeaveBalance:
    result = await db.execute(
        select(LeaveBalance)
        .where(LeaveBalance.id == balance_id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().one()


# ═════════════════════════════════════════════════════════════════════
# 1. get_balances
# ═════════════════════════════════════════════════════════════════════


class TestGetBalances:

    async def test_absent_rows_read_as_zero(self, db: AsyncSession):
        user = await seed_user(db)
        sick = await seed_leave_type(db, name="Sick Leave")
        annual = await seed_leave_type(db, name="Annual Leave")
        await seed_balance(db, user.id, sick.id, allocated=10, used=2)

        balances = await BalanceLedger.get_balances(db, user.id, 2024)

        by_name = {b.type_name: b for b in balances}
        assert set(by_name) == {"Sick Leave", "Annual Leave"}
        assert (by_name["Sick Leave"].allocated, by_name["Sick Leave"].used,
                by_name["Sick Leave"].remaining) == (10, 2, 8)
        assert (by_name["Annual Leave"].allocated, by_name["Annual Leave"].used,
                by_name["Annual Leave"].remaining) == (0, 0, 0)
        assert by_name["Annual Leave"].leave_type_id == annual.id

    async def test_other_years_and_users_excluded(self, db: AsyncSession):
        user = await seed_user(db)
        other = await seed_user(db, email="other@university.edu")
        lt = await seed_leave_type(db)
        await seed_balance(db, user.id, lt.id, year=2023, allocated=4)
        await seed_balance(db, other.id, lt.id, year=2024, allocated=7)

        balances = await BalanceLedger.get_balances(db, user.id, 2024)

        assert len(balances) == 1
        assert balances[0].allocated == 0

    async def test_retired_type_shown_only_with_row(self, db: AsyncSession):
        user = await seed_user(db)
        retired_with_row = await seed_leave_type(db, name="Old Leave", is_active=False)
        await seed_leave_type(db, name="Gone Leave", is_active=False)
        await seed_balance(db, user.id, retired_with_row.id, allocated=3)

        balances = await BalanceLedger.get_balances(db, user.id, 2024)

        assert [b.type_name for b in balances] == ["Old Leave"]


# ═════════════════════════════════════════════════════════════════════
# 2. reserve
# ═════════════════════════════════════════════════════════════════════


class TestReserve:

    async def test_reserve_moves_days_from_remaining_to_used(self, db: AsyncSession):
        user = await seed_user(db)
        lt = await seed_leave_type(db)
        bal = await seed_balance(db, user.id, lt.id, allocated=10, used=2)

        result = await BalanceLedger.reserve(db, user.id, lt.id, 2024, 3)

        assert (result.allocated, result.used, result.remaining) == (10, 5, 5)
        bal = await _fetch_balance(db, bal.id)
        assert bal.allocated == 10
        assert bal.used + bal.remaining == bal.allocated

    async def test_reserve_exact_remaining_allowed(self, db: AsyncSession):
        user = await seed_user(db)
        lt = await seed_leave_type(db)
        await seed_balance(db, user.id, lt.id, allocated=4)

        result = await BalanceLedger.reserve(db, user.id, lt.id, 2024, 4)

        assert (result.used, result.remaining) == (4, 0)

    async def test_reserve_more_than_remaining_fails_unchanged(self, db: AsyncSession):
        user = await seed_user(db)
        lt = await seed_leave_type(db)
        bal = await seed_balance(db, user.id, lt.id, allocated=10, used=5)

        with pytest.raises(InsufficientBalance) as exc_info:
            await BalanceLedger.reserve(db, user.id, lt.id, 2024, 6)

        assert exc_info.value.available == 5
        assert exc_info.value.requested == 6
        bal = await _fetch_balance(db, bal.id)
        assert (bal.used, bal.remaining) == (5, 5)

    async def test_reserve_without_row_is_insufficient(self, db: AsyncSession):
        user = await seed_user(db)
        lt = await seed_leave_type(db)

        with pytest.raises(InsufficientBalance) as exc_info:
            await BalanceLedger.reserve(db, user.id, lt.id, 2024, 1)
        assert exc_info.value.available == 0

    async def test_reserve_rejects_non_positive_days(self, db: AsyncSession):
        user = await seed_user(db)
        lt = await seed_leave_type(db)
        await seed_balance(db, user.id, lt.id)

        with pytest.raises(ValueError):
            await BalanceLedger.reserve(db, user.id, lt.id, 2024, 0)

    async def test_stale_check_cannot_double_spend(self, db: AsyncSession):
        """A reader that saw remaining=8 still fails once another writer spent it."""
        user = await seed_user(db)
        lt = await seed_leave_type(db)
        bal = await seed_balance(db, user.id, lt.id, allocated=10, used=2)
        await db.commit()

        stale = await _fetch_balance(db, bal.id)
        assert stale.remaining >= 6  # both callers "see" enough balance

        async with TestSessionFactory() as other:
            await BalanceLedger.reserve(other, user.id, lt.id, 2024, 6)
            await other.commit()

        with pytest.raises(InsufficientBalance):
            await BalanceLedger.reserve(db, user.id, lt.id, 2024, 6)

        bal = await _fetch_balance(db, bal.id)
        assert (bal.used, bal.remaining) == (8, 2)

    async def test_concurrent_reserves_only_one_wins(self, file_session_factory):
        """Two racing reserves whose sum exceeds remaining → exactly one success."""
        async with file_session_factory() as setup:
            user = await seed_user(setup)
            lt = await seed_leave_type(setup)
            bal = await seed_balance(setup, user.id, lt.id, allocated=10, used=2)
            await setup.commit()

        async def reserve_and_commit():
            async with file_session_factory() as session:
                try:
                    balance = await BalanceLedger.reserve(session, user.id, lt.id, 2024, 5)
                    await session.commit()
                    return balance
                except Exception:
                    await session.rollback()
                    raise

        results = await asyncio.gather(
            reserve_and_commit(), reserve_and_commit(), return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, InsufficientBalance)]
        successes = [r for r in results if isinstance(r, LeaveBalance)]
        assert len(successes) == 1, results
        assert len(failures) == 1, results

        async with file_session_factory() as check:
            bal = await _fetch_balance(check, bal.id)
        assert (bal.allocated, bal.used, bal.remaining) == (10, 7, 3)


# ═════════════════════════════════════════════════════════════════════
# 3. release
# ═════════════════════════════════════════════════════════════════════


class TestRelease:

    async def test_release_returns_days_and_settles_request(self, db: AsyncSession):
        user = await seed_user(db)
        lt = await seed_leave_type(db)
        bal = await seed_balance(db, user.id, lt.id, allocated=10, used=5)
        req = await seed_request(db, user.id, lt.id, start=date(2024, 6, 1), end=date(2024, 6, 3))

        released = await BalanceLedger.release(db, req, LeaveStatus.rejected)

        assert released is True
        bal = await _fetch_balance(db, bal.id)
        assert (bal.used, bal.remaining) == (2, 8)
        await db.refresh(req)
        assert req.status == LeaveStatus.rejected
        assert req.resolved_at is not None

    async def test_release_is_idempotent(self, db: AsyncSession):
        user = await seed_user(db)
        lt = await seed_leave_type(db)
        bal = await seed_balance(db, user.id, lt.id, allocated=10, used=5)
        req = await seed_request(db, user.id, lt.id, start=date(2024, 6, 1), end=date(2024, 6, 3))

        assert await BalanceLedger.release(db, req, LeaveStatus.cancelled) is True
        assert await BalanceLedger.release(db, req, LeaveStatus.cancelled) is False
        assert await BalanceLedger.release(db, req, LeaveStatus.rejected) is False

        bal = await _fetch_balance(db, bal.id)
        assert (bal.used, bal.remaining) == (2, 8)

    async def test_release_refuses_approved_outcome(self, db: AsyncSession):
        user = await seed_user(db)
        lt = await seed_leave_type(db)
        await seed_balance(db, user.id, lt.id, allocated=10, used=3)
        req = await seed_request(db, user.id, lt.id, start=date(2024, 6, 1), end=date(2024, 6, 3))

        with pytest.raises(ValueError):
            await BalanceLedger.release(db, req, LeaveStatus.approved)
