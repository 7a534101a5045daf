"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create          → request bodies (write)
  - *Out / *View     → response bodies (read)
  - *Filters         → typed query parameters
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from portal.common.constants import STATUS_FILTER_ALL, LeaveStatus


# ═════════════════════════════════════════════════════════════════════
# Leave Type
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeOut(BaseModel):
    """Leave type as listed by the catalog."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: Optional[str] = None
    default_allocation: int = 0
    is_active: bool = True


class LeaveTypesOut(BaseModel):
    types: list[LeaveTypeOut]


# ═════════════════════════════════════════════════════════════════════
# Leave Balance
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceOut(BaseModel):
    """Balance for a single leave type. Absent ledger rows read as zeros."""

    model_config = ConfigDict(from_attributes=True)

    user_id: uuid.UUID
    leave_type_id: uuid.UUID
    type_name: str
    year: int
    allocated: int = 0
    used: int = 0
    remaining: int = 0


class LeaveBalanceTotals(BaseModel):
    """Totals go out camelCased; the frontend dashboard reads these keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_allocated: int = 0
    total_used: int = 0
    total_remaining: int = 0


class LeaveBalanceSummaryOut(BaseModel):
    """``GET /balance`` envelope: per-type rows plus elementwise totals."""

    balances: list[LeaveBalanceOut]
    summary: LeaveBalanceTotals


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Create
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestCreate(BaseModel):
    """Payload for submitting a leave request.

    Field names follow the frontend form. Date ordering and backdating are
    checked by the service so that they surface as 400 leave errors.
    """

    type_id: uuid.UUID
    start_date: date = Field(..., description="Leave start date (inclusive)")
    end_date: date = Field(..., description="Leave end date (inclusive)")
    reason: Optional[str] = Field(None, max_length=1000, description="Reason for leave")
    contact_during_leave: Optional[str] = Field(None, max_length=255)

    @field_validator("reason", "contact_during_leave")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v


class LeaveSubmitOut(BaseModel):
    """Response for a created leave request, serialized as ``requestId``."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    request_id: uuid.UUID
    message: str = "Leave request submitted successfully"


# ═════════════════════════════════════════════════════════════════════
# Leave Request — History
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestView(BaseModel):
    """Leave request joined with its type name."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    leave_type_id: uuid.UUID
    type_name: str
    start_date: date
    end_date: date
    total_days: int
    reason: Optional[str] = None
    contact_during_leave: Optional[str] = None
    status: LeaveStatus
    submitted_at: datetime
    resolved_at: Optional[datetime] = None


class LeaveHistoryOut(BaseModel):
    history: list[LeaveRequestView]


class LeaveHistoryFilters(BaseModel):
    """Typed history filters; every value reaches SQL as a bound parameter."""

    status: Optional[LeaveStatus] = None
    year: Optional[int] = Field(None, ge=1900, le=9999)
    offset: int = Field(0, ge=0)
    limit: Optional[int] = Field(None, ge=1, le=500)

    @field_validator("status", mode="before")
    @classmethod
    def all_means_unfiltered(
        cls, v: Union[str, LeaveStatus, None],
    ) -> Union[str, LeaveStatus, None]:
        if v in ("", STATUS_FILTER_ALL):
            return None
        return v
