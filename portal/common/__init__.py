"""Common module — shared enums, exceptions and rate limiting for the portal."""

from portal.common.constants import (
    DEFAULT_LEAVE_TYPES,
    RELEASING_STATUSES,
    STATUS_FILTER_ALL,
    TERMINAL_STATUSES,
    LeaveStatus,
)
from portal.common.exceptions import (
    AppException,
    ConcurrencyConflict,
    ForbiddenException,
    InsufficientBalance,
    InvalidDateRange,
    InvalidTransition,
    NotFoundException,
    StorageError,
    UnknownLeaveType,
    ValidationException,
    register_exception_handlers,
)

__all__ = [
    # Constants / Enums
    "DEFAULT_LEAVE_TYPES",
    "RELEASING_STATUSES",
    "STATUS_FILTER_ALL",
    "TERMINAL_STATUSES",
    "LeaveStatus",
    # Exceptions
    "AppException",
    "ConcurrencyConflict",
    "ForbiddenException",
    "InsufficientBalance",
    "InvalidDateRange",
    "InvalidTransition",
    "NotFoundException",
    "StorageError",
    "UnknownLeaveType",
    "ValidationException",
    "register_exception_handlers",
]
