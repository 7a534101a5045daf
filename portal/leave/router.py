"""Leave router — types, balance, submission, history, cancellation.

All endpoints require an authenticated caller; the resolved user id is
passed explicitly into the service layer.
"""


import uuid
from datetime import datetime, timezone
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from portal.auth.dependencies import get_current_user
from portal.auth.models import User
from portal.common.rate_limit import SUBMIT_RATE_LIMIT, limiter
from portal.database import get_db
from portal.leave.schemas import (
    LeaveBalanceSummaryOut,
    LeaveHistoryFilters,
    LeaveHistoryOut,
    LeaveRequestCreate,
    LeaveRequestView,
    LeaveSubmitOut,
    LeaveTypesOut,
)
from portal.leave.service import LeaveService

router = APIRouter(prefix="", tags=["leave"])


# ── GET /types ──────────────────────────────────────────────────────

@router.get("/types", response_model=LeaveTypesOut)
async def get_types(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List active leave types."""
    return LeaveTypesOut(types=await LeaveService.get_leave_types(db))


# ── GET /balance ────────────────────────────────────────────────────

@router.get("/balance", response_model=LeaveBalanceSummaryOut)
async def get_balance(
    year: Optional[int] = Query(
        None, ge=1900, le=9999, description="Leave year; defaults to current year",
    ),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get the caller's balances for a year with totals."""
    target_year = year or datetime.now(timezone.utc).year
    return await LeaveService.get_balance_summary(db, user.id, target_year)


# ── POST /request ───────────────────────────────────────────────────

@router.post("/request", response_model=LeaveSubmitOut, status_code=201)
@limiter.limit(SUBMIT_RATE_LIMIT)
async def submit_request(
    request: Request,
    body: LeaveRequestCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Submit a leave request. Reserves balance at submission."""
    return await LeaveService.submit_request(db, user.id, body)


# ── GET /history ────────────────────────────────────────────────────

@router.get("/history", response_model=LeaveHistoryOut)
async def get_history(
    filters: Annotated[LeaveHistoryFilters, Query()],
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get the caller's leave history, most recently submitted first."""
    history = [
        view async for view in LeaveService.get_history(db, user.id, filters)
    ]
    return LeaveHistoryOut(history=history)


# ── POST /requests/{id}/cancel ──────────────────────────────────────

@router.post("/requests/{request_id}/cancel", response_model=LeaveRequestView)
async def cancel_request(
    request_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Cancel one of the caller's pending requests and release its days."""
    return await LeaveService.cancel_request(db, request_id, user.id)
