"""User registry and the role changes that ripple into site assignments."""
from __future__ import annotations

import logging

from backend.core.errors import ConflictError, NotFoundError, ValidationError
from backend.core.schema import ONGOING_WORK_STATUSES, USER_ROLES, PendingUpdate, SiteDetail, UserProfile
from backend.domain import site_key
from backend.infrastructure import RecordRepository

from .access import AccessPolicy
from .file_entries import finalise_entry
from .pending_updates import PendingUpdateService

logger = logging.getLogger(__name__)


class UserService:
    def __init__(
        self,
        repository: RecordRepository,
        access: AccessPolicy,
        pending_updates: PendingUpdateService,
    ) -> None:
        self._repository = repository
        self._access = access
        self._pending_updates = pending_updates

    def find_user(self, uid: str) -> UserProfile | None:
        return self._repository.get_user(uid)

    def get_user(self, uid: str) -> UserProfile:
        user = self._repository.get_user(uid)
        if user is None:
            raise NotFoundError(f"user {uid} not found")
        return user

    def list_users(self) -> list[UserProfile]:
        return sorted(self._repository.list_users(), key=lambda user: (user.name.lower(), user.uid))

    def save_user(self, user: UserProfile) -> UserProfile:
        self._repository.save_user(user)
        return user

    def register_user(self, uid: str, name: str, email: str | None = None, staff_id: str | None = None) -> UserProfile:
        """Create the profile of a newly signed-up account: a viewer awaiting approval."""

        if self._repository.get_user(uid) is not None:
            raise ConflictError(f"user {uid} already exists")
        user = UserProfile(uid=uid, name=name, email=email, staff_id=staff_id)
        self._repository.save_user(user)
        logger.info("User %s registered", uid)
        return user

    def update_approval(self, uid: str, is_approved: bool, editor: UserProfile) -> UserProfile:
        self._access.require_role(editor, "editor", action="approve users")
        user = self.get_user(uid).model_copy(update={"is_approved": is_approved})
        self._repository.save_user(user)
        logger.info("User %s approval set to %s by %s", uid, is_approved, editor.uid)
        return user

    def update_role(
        self,
        uid: str,
        new_role: str,
        editor: UserProfile,
        staff_id: str | None = None,
    ) -> UserProfile:
        """Change a user's role.

        Demoting a supervisor clears them from their ongoing sites, moves
        their pending updates to ``supervisor-unassigned`` and queues every
        cleared site that had no update in flight for re-assignment.
        """

        self._access.require_role(editor, "editor", action="change user roles")
        if new_role not in USER_ROLES:
            raise ValidationError(f"unknown role '{new_role}'")

        user = self.get_user(uid)
        previous_role = user.role
        changes: dict[str, object] = {"role": new_role}
        if staff_id is not None:
            changes["staff_id"] = staff_id
        updated = user.model_copy(update=changes)
        self._repository.save_user(updated)
        logger.info("User %s role changed from %s to %s by %s", uid, previous_role, new_role, editor.uid)

        if previous_role == "supervisor" and new_role != "supervisor":
            self._release_supervisor(updated, editor)
        return updated

    def _release_supervisor(self, user: UserProfile, editor: UserProfile) -> None:
        cleared: list[tuple[str, SiteDetail]] = []
        for entry in self._repository.list_file_entries(assigned_supervisor_uid=user.uid):
            sites: list[SiteDetail] = []
            touched = False
            for site in entry.site_details:
                if site.supervisor_uid == user.uid and site.work_status in ONGOING_WORK_STATUSES:
                    site = site.model_copy(update={"supervisor_uid": None, "supervisor_name": None})
                    cleared.append((entry.file_no, site))
                    touched = True
                sites.append(site)
            if touched:
                self._repository.save_file_entry(finalise_entry(entry.model_copy(update={"site_details": sites}), entry))

        orphaned = self._pending_updates.detect_orphans(submitted_by_uid=user.uid)
        covered = {
            (update.file_no, key)
            for update in orphaned
            for key in _site_keys(update)
        }
        for file_no, site in cleared:
            if (file_no, site_key(site.site_id, site.name_of_site)) in covered:
                continue
            if (file_no, site_key(None, site.name_of_site)) in covered:
                continue
            self._pending_updates.record_unassignment(file_no, site, editor, user.name or user.uid)
        logger.info(
            "Released supervisor %s: %d site(s) cleared, %d update(s) orphaned",
            user.uid,
            len(cleared),
            len(orphaned),
        )


def _site_keys(update: PendingUpdate) -> set[str]:
    keys: set[str] = set()
    for site in update.updated_site_details:
        keys.add(site_key(site.site_id, site.name_of_site))
        keys.add(site_key(None, site.name_of_site))
    return keys
