"""Error taxonomy shared by the record services and the HTTP routes."""
from __future__ import annotations


class RecordError(Exception):
    """Base class for failures surfaced to the initiating editor or supervisor."""

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class NotFoundError(RecordError):
    """Raised when a referenced file entry, site, update or user is absent."""


class ConflictError(RecordError):
    """Raised when a transition is attempted from the wrong state."""


class StaleUpdateError(ConflictError):
    """Raised when a site advanced since the pending update was submitted."""


class ValidationError(RecordError):
    """Raised when a payload is missing required identity fields."""


class PermissionDeniedError(RecordError):
    """Raised when the acting user may not perform the operation."""


class NoChangesError(RecordError):
    """Raised when a proposed site carries no field differences."""


class StoreUnavailableError(RecordError):
    """Raised when the document store cannot be reached; safe to retry."""
