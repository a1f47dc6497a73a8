"""Exception types raised by the spending tracker.

Row-level validation failures and duplicates are reported as data by the
import pipeline; the exceptions here are for failures that abort the
current call.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class SpendingTrackerError(Exception):
    """Base class for all spending tracker errors."""


class StorageError(SpendingTrackerError):
    """The store could not complete an operation.

    Retryable from the caller's point of view; nothing here retries.
    """


class NotFoundError(SpendingTrackerError):
    """A record looked up by id does not exist."""


class StructuralImportError(SpendingTrackerError):
    """The import source is unusable as a whole (e.g. missing columns)."""


class RowValidationError(SpendingTrackerError):
    """A single CSV row failed field-level validation."""

    def __init__(
        self,
        message: str,
        *,
        row: int,
        field: Optional[str] = None,
        raw_data: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.row = row
        self.field = field
        self.raw_data = dict(raw_data or {})


class ConfigValidationError(SpendingTrackerError):
    """The budget configuration failed schema checks."""

    def __init__(self, message: str, details: Optional[list] = None) -> None:
        super().__init__(message)
        self.details = list(details or [])


class ValidationError(SpendingTrackerError):
    """A request parameter was malformed."""


class PaginationError(ValidationError):
    """Page, page size or sort parameters are out of range."""


class DateFormatError(ValidationError):
    """A date or month parameter does not match the expected format."""
