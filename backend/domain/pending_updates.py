"""Domain entities and transitions for supervisor-submitted site updates."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from backend.core.errors import ConflictError

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"
SUPERVISOR_UNASSIGNED = "supervisor-unassigned"

TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({APPROVED, REJECTED, SUPERVISOR_UNASSIGNED}),
    APPROVED: frozenset(),
    REJECTED: frozenset(),
    # re-assignment happens in the file entry editor, not here
    SUPERVISOR_UNASSIGNED: frozenset(),
}

# Statuses each role watches on the live feed.
VISIBLE_STATUSES: dict[str, frozenset[str]] = {
    "editor": frozenset({PENDING, SUPERVISOR_UNASSIGNED}),
    "supervisor": frozenset({PENDING, REJECTED}),
    "viewer": frozenset(),
}

DEFAULT_REJECTION_NOTE = "Rejected by administrator without a specific reason."


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(update_id: str, current: str, target: str) -> None:
    """Raise :class:`ConflictError` unless ``current -> target`` is allowed."""

    if not can_transition(current, target):
        raise ConflictError(f"update {update_id} is '{current}' and cannot become '{target}'")


def site_key(site_id: str | None, name_of_site: str) -> str:
    """Key used for base version bookkeeping; prefers the stable site id."""

    return site_id or f"name:{name_of_site}"


@dataclass(slots=True)
class FieldChange:
    """One differing field between the canonical and the proposed site."""

    field: str
    label: str
    old_value: str
    new_value: str

    def as_dict(self) -> dict[str, str]:
        return {
            "field": self.field,
            "label": self.label,
            "oldValue": self.old_value,
            "newValue": self.new_value,
        }


@dataclass(slots=True)
class SiteReview:
    """Field-level changes proposed for a single site."""

    name_of_site: str
    site_id: str | None = None
    changes: list[FieldChange] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "nameOfSite": self.name_of_site,
            "siteId": self.site_id,
            "changes": [change.as_dict() for change in self.changes],
        }


@dataclass(slots=True)
class ApprovalContext:
    """Hand-off from the review list to the file entry editor."""

    update_id: str
    file_no: str
    merged_entry: dict[str, Any]
    redirect_to: str
    submitted_by_name: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "updateId": self.update_id,
            "fileNo": self.file_no,
            "mergedEntry": self.merged_entry,
            "redirectTo": self.redirect_to,
            "submittedByName": self.submitted_by_name,
        }
