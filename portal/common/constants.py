"""Enums and constants for the portal — matching database ENUM types."""

from __future__ import annotations

import enum


# ── Leave ───────────────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


# Outcomes that hand the reserved days back to the balance
RELEASING_STATUSES: frozenset[LeaveStatus] = frozenset(
    {LeaveStatus.rejected, LeaveStatus.cancelled}
)

TERMINAL_STATUSES: frozenset[LeaveStatus] = frozenset(
    {LeaveStatus.approved, LeaveStatus.rejected, LeaveStatus.cancelled}
)

# Query-string value the frontend sends for "no status filter"
STATUS_FILTER_ALL = "all"

# Reference data seeded by the initial migration
DEFAULT_LEAVE_TYPES: list[tuple[str, str, int]] = [
    ("Annual Leave", "Paid vacation days", 14),
    ("Sick Leave", "Medical leave with or without certificate", 10),
    ("Casual Leave", "Short personal absences", 6),
    ("Study Leave", "Examinations and conferences", 5),
]
