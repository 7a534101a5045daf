"""Leave service layer — catalog, submission, history, balance summary, settlement.

Business logic:
  - Submission validates type and dates, then reserves balance and inserts
    the pending request in one transaction (decrement-on-submission)
  - Settlement moves a pending request to a terminal status; rejection and
    cancellation hand the reserved days back through the ledger
  - History is streamed newest-first with typed status/year filters
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import AsyncIterator, Optional

from sqlalchemy import Select, select
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from portal.common.constants import RELEASING_STATUSES, TERMINAL_STATUSES, LeaveStatus
from portal.common.exceptions import (
    ConcurrencyConflict,
    ForbiddenException,
    InvalidDateRange,
    InvalidTransition,
    NotFoundException,
    StorageError,
    UnknownLeaveType,
)
from portal.config import settings
from portal.leave.ledger import BalanceLedger, transition_status
from portal.leave.models import LeaveRequest, LeaveType
from portal.leave.schemas import (
    LeaveBalanceSummaryOut,
    LeaveBalanceTotals,
    LeaveHistoryFilters,
    LeaveRequestCreate,
    LeaveRequestView,
    LeaveSubmitOut,
    LeaveTypeOut,
)

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected
_CONFLICT_SQLSTATES = frozenset({"40001", "40P01"})


def _is_conflict(exc: DBAPIError) -> bool:
    """True for errors a retry of the whole transaction can clear."""
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in _CONFLICT_SQLSTATES:
        return True
    return isinstance(exc, OperationalError) and "database is locked" in str(orig)


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:
    """Async leave operations: types, submission, history, balances, settlement."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _calculate_leave_days(start_date: date, end_date: date) -> int:
        """Inclusive calendar-day count."""
        return (end_date - start_date).days + 1

    @staticmethod
    def _validate_dates(start_date: date, end_date: date, today: date) -> None:
        if end_date < start_date:
            raise InvalidDateRange("end_date must be on or after start_date.")
        if (end_date - start_date) >= timedelta(days=settings.LEAVE_MAX_SPAN_DAYS):
            raise InvalidDateRange(
                f"Leave request cannot span more than {settings.LEAVE_MAX_SPAN_DAYS} days."
            )
        if start_date < today and not settings.LEAVE_ALLOW_BACKDATED:
            raise InvalidDateRange("start_date cannot be in the past.")

    @staticmethod
    def _build_view(req: LeaveRequest, type_name: str) -> LeaveRequestView:
        return LeaveRequestView(
            id=req.id,
            user_id=req.user_id,
            leave_type_id=req.leave_type_id,
            type_name=type_name,
            start_date=req.start_date,
            end_date=req.end_date,
            total_days=req.total_days,
            reason=req.reason,
            contact_during_leave=req.contact_during_leave,
            status=req.status,
            submitted_at=req.submitted_at,
            resolved_at=req.resolved_at,
        )

    @staticmethod
    async def _load_request(
        db: AsyncSession,
        request_id: uuid.UUID,
    ) -> tuple[LeaveRequest, str]:
        result = await db.execute(
            select(LeaveRequest, LeaveType.name)
            .join(LeaveType, LeaveRequest.leave_type_id == LeaveType.id)
            .where(LeaveRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        row = result.first()
        if row is None:
            raise NotFoundException("LeaveRequest", str(request_id))
        return row[0], row[1]

    # ─────────────────────────────────────────────────────────────────
    # Leave Types
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_leave_types(
        db: AsyncSession,
        *,
        is_active: Optional[bool] = True,
    ) -> list[LeaveTypeOut]:
        """List leave types, active ones by default."""

        query = select(LeaveType).order_by(LeaveType.name)
        if is_active is not None:
            query = query.where(LeaveType.is_active == is_active)

        result = await db.execute(query)
        return [LeaveTypeOut.model_validate(lt) for lt in result.scalars().all()]

    # ─────────────────────────────────────────────────────────────────
    # Balance
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_balance_summary(
        db: AsyncSession,
        user_id: uuid.UUID,
        year: int,
    ) -> LeaveBalanceSummaryOut:
        """Per-type balances for the year plus their elementwise totals."""

        balances = await BalanceLedger.get_balances(db, user_id, year)
        return LeaveBalanceSummaryOut(
            balances=balances,
            summary=LeaveBalanceTotals(
                total_allocated=sum(b.allocated for b in balances),
                total_used=sum(b.used for b in balances),
                total_remaining=sum(b.remaining for b in balances),
            ),
        )

    # ─────────────────────────────────────────────────────────────────
    # Submit Request
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def submit_request(
        db: AsyncSession,
        user_id: uuid.UUID,
        data: LeaveRequestCreate,
        *,
        today: Optional[date] = None,
    ) -> LeaveSubmitOut:
        """Submit a leave request; retries once on a concurrency conflict."""

        attempts = max(1, settings.LEAVE_SUBMIT_ATTEMPTS)
        for attempt in range(1, attempts):
            try:
                return await LeaveService._submit_once(db, user_id, data, today=today)
            except ConcurrencyConflict:
                logger.warning(
                    "Leave submission conflicted (attempt %d/%d), retrying: user=%s type=%s",
                    attempt, attempts, user_id, data.type_id,
                )
        return await LeaveService._submit_once(db, user_id, data, today=today)

    @staticmethod
    async def _submit_once(
        db: AsyncSession,
        user_id: uuid.UUID,
        data: LeaveRequestCreate,
        *,
        today: Optional[date] = None,
    ) -> LeaveSubmitOut:
        """One submission attempt:
        - Leave type exists and is active
        - Dates ordered, within the span limit, not backdated
        - Reserve the inclusive day count against the start year's balance
        - Insert the pending request

        Reserve and insert share the session's transaction. Any storage
        failure rolls the whole transaction back, so a reservation never
        outlives a failed insert.
        """

        today = today or datetime.now(timezone.utc).date()

        # ── Load leave type ─────────────────────────────────────────
        lt_result = await db.execute(
            select(LeaveType).where(
                LeaveType.id == data.type_id,
                LeaveType.is_active.is_(True),
            )
        )
        leave_type = lt_result.scalars().first()
        if leave_type is None:
            raise UnknownLeaveType(data.type_id)

        # ── Dates ───────────────────────────────────────────────────
        LeaveService._validate_dates(data.start_date, data.end_date, today)
        total_days = LeaveService._calculate_leave_days(data.start_date, data.end_date)
        year = data.start_date.year

        # ── Reserve + insert (one transaction) ──────────────────────
        try:
            await BalanceLedger.reserve(db, user_id, leave_type.id, year, total_days)

            leave_request = LeaveRequest(
                user_id=user_id,
                leave_type_id=leave_type.id,
                start_date=data.start_date,
                end_date=data.end_date,
                total_days=total_days,
                reason=data.reason,
                contact_during_leave=data.contact_during_leave,
                status=LeaveStatus.pending,
            )
            db.add(leave_request)
            await db.flush()
        except DBAPIError as exc:
            await db.rollback()
            if _is_conflict(exc):
                raise ConcurrencyConflict() from exc
            logger.exception("Leave submission failed in storage: user=%s", user_id)
            raise StorageError() from exc
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.exception("Leave submission failed in storage: user=%s", user_id)
            raise StorageError() from exc

        logger.info(
            "Leave request submitted: id=%s user=%s type=%s %s..%s (%d days)",
            leave_request.id, user_id, leave_type.name,
            data.start_date, data.end_date, total_days,
        )
        return LeaveSubmitOut(request_id=leave_request.id)

    # ─────────────────────────────────────────────────────────────────
    # History
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _history_query(user_id: uuid.UUID, filters: LeaveHistoryFilters) -> Select:
        query = (
            select(LeaveRequest, LeaveType.name)
            .join(LeaveType, LeaveRequest.leave_type_id == LeaveType.id)
            .where(LeaveRequest.user_id == user_id)
            .order_by(LeaveRequest.submitted_at.desc(), LeaveRequest.id.desc())
        )
        if filters.status is not None:
            query = query.where(LeaveRequest.status == filters.status)
        if filters.year is not None:
            # Range on start_date keeps the (user_id, ...) index usable
            query = query.where(
                LeaveRequest.start_date >= date(filters.year, 1, 1),
                LeaveRequest.start_date <= date(filters.year, 12, 31),
            )
        if filters.offset:
            query = query.offset(filters.offset)
        if filters.limit is not None:
            query = query.limit(filters.limit)
        return query

    @staticmethod
    async def get_history(
        db: AsyncSession,
        user_id: uuid.UUID,
        filters: LeaveHistoryFilters,
    ) -> AsyncIterator[LeaveRequestView]:
        """Stream the user's requests, most recently submitted first.

        The iterator reads from an open cursor: consume it once, while the
        session is alive.
        """

        result = await db.stream(LeaveService._history_query(user_id, filters))
        async for req, type_name in result:
            yield LeaveService._build_view(req, type_name)

    # ─────────────────────────────────────────────────────────────────
    # Settlement
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def settle_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        outcome: LeaveStatus,
    ) -> LeaveRequestView:
        """Move a pending request to a terminal status.

        Called by the approval process. Approval keeps the reservation
        consumed; rejection and cancellation release it.
        """

        leave_req, type_name = await LeaveService._load_request(db, request_id)

        if outcome not in TERMINAL_STATUSES or leave_req.status in TERMINAL_STATUSES:
            raise InvalidTransition(leave_req.status.value, outcome.value)

        if outcome in RELEASING_STATUSES:
            moved = await BalanceLedger.release(db, leave_req, outcome)
        else:
            moved = await transition_status(db, leave_req.id, outcome)

        leave_req, type_name = await LeaveService._load_request(db, request_id)
        if not moved:
            # Another settlement won the race
            raise InvalidTransition(leave_req.status.value, outcome.value)

        logger.info(
            "Leave request settled: id=%s user=%s status=%s",
            leave_req.id, leave_req.user_id, outcome.value,
        )
        return LeaveService._build_view(leave_req, type_name)

    @staticmethod
    async def cancel_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> LeaveRequestView:
        """Cancel one of the caller's own pending requests."""

        leave_req, _ = await LeaveService._load_request(db, request_id)
        if leave_req.user_id != user_id:
            raise ForbiddenException("You can only cancel your own leave requests.")

        return await LeaveService.settle_request(db, request_id, LeaveStatus.cancelled)
