"""Domain layer definitions."""

from .pending_updates import (
    APPROVED,
    DEFAULT_REJECTION_NOTE,
    PENDING,
    REJECTED,
    SUPERVISOR_UNASSIGNED,
    VISIBLE_STATUSES,
    ApprovalContext,
    FieldChange,
    SiteReview,
    can_transition,
    ensure_transition,
    site_key,
)

__all__ = [
    "APPROVED",
    "DEFAULT_REJECTION_NOTE",
    "PENDING",
    "REJECTED",
    "SUPERVISOR_UNASSIGNED",
    "VISIBLE_STATUSES",
    "ApprovalContext",
    "FieldChange",
    "SiteReview",
    "can_transition",
    "ensure_transition",
    "site_key",
]
