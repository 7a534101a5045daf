"""Balance ledger — per-user, per-type, per-year leave day counters.

Every write to ``leave_balances`` goes through this module. Reservation is
a single conditional UPDATE (decrement-if-sufficient), so the sufficiency
check and the decrement happen atomically in the database and two racing
submissions can never both spend the same remaining days.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from portal.common.constants import RELEASING_STATUSES, LeaveStatus
from portal.common.exceptions import InsufficientBalance
from portal.leave.models import LeaveBalance, LeaveRequest, LeaveType
from portal.leave.schemas import LeaveBalanceOut

logger = logging.getLogger(__name__)


async def transition_status(
    db: AsyncSession,
    request_id: uuid.UUID,
    outcome: LeaveStatus,
) -> bool:
    """Move a request out of ``pending``; False if it already left it."""

    now = datetime.now(timezone.utc)
    result = await db.execute(
        update(LeaveRequest)
        .where(
            LeaveRequest.id == request_id,
            LeaveRequest.status == LeaveStatus.pending,
        )
        .values(status=outcome, resolved_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


class BalanceLedger:
    """Async balance operations: listing, reserve, release."""

    @staticmethod
    async def _load(
        db: AsyncSession,
        user_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
    ) -> Optional[LeaveBalance]:
        result = await db.execute(
            select(LeaveBalance)
            .where(
                LeaveBalance.user_id == user_id,
                LeaveBalance.leave_type_id == leave_type_id,
                LeaveBalance.year == year,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    # ─────────────────────────────────────────────────────────────────
    # Read
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_balances(
        db: AsyncSession,
        user_id: uuid.UUID,
        year: int,
    ) -> list[LeaveBalanceOut]:
        """All balances of a user for one year, one entry per leave type.

        Active types without a ledger row are reported with zero
        allocation. Retired types still appear while a row exists for them.
        """

        result = await db.execute(
            select(LeaveType, LeaveBalance)
            .outerjoin(
                LeaveBalance,
                and_(
                    LeaveBalance.leave_type_id == LeaveType.id,
                    LeaveBalance.user_id == user_id,
                    LeaveBalance.year == year,
                ),
            )
            .where(or_(LeaveType.is_active.is_(True), LeaveBalance.id.is_not(None)))
            .order_by(LeaveType.name)
        )

        output: list[LeaveBalanceOut] = []
        for leave_type, balance in result.all():
            output.append(
                LeaveBalanceOut(
                    user_id=user_id,
                    leave_type_id=leave_type.id,
                    type_name=leave_type.name,
                    year=year,
                    allocated=balance.allocated if balance else 0,
                    used=balance.used if balance else 0,
                    remaining=balance.remaining if balance else 0,
                )
            )
        return output

    # ─────────────────────────────────────────────────────────────────
    # Reserve
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def reserve(
        db: AsyncSession,
        user_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
        days: int,
    ) -> LeaveBalance:
        """Move ``days`` from remaining to used, or raise InsufficientBalance.

        Runs inside the caller's transaction; the caller commits or rolls
        back together with whatever it writes alongside the reservation.
        """

        if days <= 0:
            raise ValueError(f"days must be positive, got {days}")

        result = await db.execute(
            update(LeaveBalance)
            .where(
                LeaveBalance.user_id == user_id,
                LeaveBalance.leave_type_id == leave_type_id,
                LeaveBalance.year == year,
                LeaveBalance.remaining >= days,
            )
            .values(
                used=LeaveBalance.used + days,
                remaining=LeaveBalance.remaining - days,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )

        balance = await BalanceLedger._load(db, user_id, leave_type_id, year)
        if result.rowcount != 1:
            available = balance.remaining if balance else 0
            logger.info(
                "Reserve refused: user=%s type=%s year=%d requested=%d available=%d",
                user_id, leave_type_id, year, days, available,
            )
            raise InsufficientBalance(available=available, requested=days)

        return balance

    # ─────────────────────────────────────────────────────────────────
    # Release
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def release(
        db: AsyncSession,
        request: LeaveRequest,
        outcome: LeaveStatus,
    ) -> bool:
        """Settle a pending request as rejected/cancelled and return its days.

        Guarded by the request status: only the call that moves the request
        out of ``pending`` gives the days back. Repeated calls return False
        and leave the balance untouched.
        """

        if outcome not in RELEASING_STATUSES:
            raise ValueError(f"{outcome.value} does not release a reservation")

        if not await transition_status(db, request.id, outcome):
            return False

        result = await db.execute(
            update(LeaveBalance)
            .where(
                LeaveBalance.user_id == request.user_id,
                LeaveBalance.leave_type_id == request.leave_type_id,
                LeaveBalance.year == request.start_date.year,
            )
            .values(
                used=LeaveBalance.used - request.total_days,
                remaining=LeaveBalance.remaining + request.total_days,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "No balance row to release into: request=%s user=%s type=%s year=%d",
                request.id, request.user_id, request.leave_type_id,
                request.start_date.year,
            )
        return True
