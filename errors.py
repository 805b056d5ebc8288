# errors.py
from __future__ import annotations


class TimesheetError(Exception):
    """Base class for every error raised by the timesheet core."""


class ValidationError(TimesheetError):
    """Malformed input rejected before it is stored (hours, week ids, records)."""


class TypeInUseError(TimesheetError):
    """A task type or task is still referenced by imputations."""

    def __init__(self, kind: str, ident: str, references: int):
        self.kind = kind
        self.ident = ident
        self.references = references
        super().__init__(f"{kind} '{ident}' is referenced by {references} imputation(s)")


class NotFoundError(TimesheetError):
    def __init__(self, kind: str, ident: str):
        self.kind = kind
        self.ident = ident
        super().__init__(f"{kind} '{ident}' not found")


class PermissionDeniedError(TimesheetError):
    """Operation reserved to approvers."""


class LockedWeekError(TimesheetError):
    """Write against a locked week by a caller without the approver role."""

    def __init__(self, week_id: str):
        self.week_id = week_id
        super().__init__(f"week {week_id} is locked")


__all__ = [
    "TimesheetError",
    "ValidationError",
    "TypeInUseError",
    "NotFoundError",
    "LockedWeekError",
    "PermissionDeniedError",
]
