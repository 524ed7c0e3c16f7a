"""Capability checks for editors and supervisors."""
from __future__ import annotations

from backend.core.errors import PermissionDeniedError
from backend.core.schema import SiteDetail, UserProfile
from backend.infrastructure import RecordRepository


class AccessPolicy:
    """Answers who may act on which record.

    Site assignment is checked against the stored user profile, not only
    against the session, so a supervisor whose role was revoked after
    submitting no longer holds the sites they were assigned.
    """

    def __init__(self, repository: RecordRepository) -> None:
        self._repository = repository

    def require_role(self, user: UserProfile, *roles: str, action: str) -> None:
        if user.role not in roles:
            raise PermissionDeniedError(f"{user.role} users may not {action}")

    def holds_assignment(self, uid: str | None, site: SiteDetail) -> bool:
        if not uid or site.supervisor_uid != uid:
            return False
        stored = self._repository.get_user(uid)
        return stored is not None and stored.role == "supervisor"

    def require_site_assignment(self, user: UserProfile, site: SiteDetail) -> None:
        if not self.holds_assignment(user.uid, site):
            raise PermissionDeniedError(f"site '{site.name_of_site}' is not assigned to {user.name or user.uid}")
