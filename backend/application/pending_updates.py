"""Application service for the supervisor update approval workflow."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Sequence
from urllib.parse import urlencode

from pydantic import ValidationError as PydanticValidationError

from backend.core.diff import build_review, match_site
from backend.core.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    StaleUpdateError,
    ValidationError,
)
from backend.core.schema import FileEntry, FileLevelUpdates, PendingUpdate, SiteDetail, UserProfile, utcnow
from backend.domain import (
    DEFAULT_REJECTION_NOTE,
    PENDING,
    REJECTED,
    SUPERVISOR_UNASSIGNED,
    VISIBLE_STATUSES,
    ApprovalContext,
    SiteReview,
    site_key,
)
from backend.infrastructure import RecordRepository

from .access import AccessPolicy
from .file_entries import finalise_entry

logger = logging.getLogger(__name__)

APPROVAL_EDITOR_PATH = "/dashboard/data-entry"


def _latest_first(updates: Iterable[PendingUpdate]) -> list[PendingUpdate]:
    return sorted(updates, key=lambda item: item.submitted_at, reverse=True)


def _coerce_sites(site_details: Sequence[SiteDetail | Mapping[str, Any]]) -> list[SiteDetail]:
    try:
        return [
            site.model_copy(deep=True) if isinstance(site, SiteDetail) else SiteDetail.model_validate(site)
            for site in site_details
        ]
    except PydanticValidationError as exc:
        raise ValidationError(f"invalid site details: {exc}", exc) from exc


class PendingUpdateService:
    """Submission, registry, review and transitions of pending updates."""

    def __init__(
        self,
        repository: RecordRepository,
        access: AccessPolicy,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._access = access
        self._clock = clock

    # ------------------------------------------------------------------
    # submission
    # ------------------------------------------------------------------
    def submit_update(
        self,
        file_no: str,
        site_details: Sequence[SiteDetail | Mapping[str, Any]],
        user: UserProfile,
        file_level_updates: FileLevelUpdates | Mapping[str, Any] | None = None,
    ) -> PendingUpdate:
        if not user.uid or not user.name:
            raise ValidationError("invalid user profile for submitting an update")
        self._access.require_role(user, "supervisor", action="submit site updates")

        sites = _coerce_sites(site_details)
        if not sites:
            raise ValidationError("an update must include at least one site")

        entry = self._repository.get_file_entry(file_no)
        if entry is None:
            raise NotFoundError(f"file entry {file_no} not found")

        base_versions: dict[str, int] = {}
        complete: list[SiteDetail] = []
        for proposed in sites:
            original = match_site(entry, proposed)
            if original is None:
                raise NotFoundError(f"site '{proposed.name_of_site}' not found in file {file_no}")
            self._access.require_site_assignment(user, original)
            if proposed.supervisor_uid is not None and proposed.supervisor_uid != user.uid:
                raise PermissionDeniedError("supervisors cannot re-assign a site")
            # stored proposals are whole sites: unset fields keep their canonical value
            data = {
                **original.to_document(),
                **proposed.model_dump(by_alias=True, exclude_unset=True),
                "siteId": original.site_id,
                "supervisorUid": original.supervisor_uid,
                "supervisorName": original.supervisor_name,
            }
            try:
                complete.append(SiteDetail.model_validate(data))
            except PydanticValidationError as exc:
                raise ValidationError(f"invalid site details for '{original.name_of_site}': {exc}", exc) from exc
            base_versions[site_key(original.site_id, original.name_of_site)] = original.version

        if self.has_pending_update_for_file(entry.file_no, user.uid):
            logger.warning("Supervisor %s already has a pending update for %s", user.uid, entry.file_no)
            raise ConflictError(f"an update for file {entry.file_no} is already awaiting approval")

        try:
            level_updates = FileLevelUpdates.model_validate(file_level_updates) if file_level_updates else None
            update = PendingUpdate(
                file_no=entry.file_no,
                updated_site_details=complete,
                file_level_updates=level_updates,
                submitted_by_uid=user.uid,
                submitted_by_name=user.name,
                submitted_at=self._clock(),
                base_versions=base_versions,
            )
        except PydanticValidationError as exc:
            raise ValidationError(f"invalid pending update: {exc}", exc) from exc

        self._repository.add_pending_update(update)
        logger.info("Pending update %s submitted by %s for file %s", update.id, user.uid, update.file_no)
        return update

    def has_pending_update_for_file(self, file_no: str, submitted_by_uid: str) -> bool:
        return bool(self._repository.list_pending_updates(file_no, submitted_by_uid=submitted_by_uid, statuses=[PENDING]))

    # ------------------------------------------------------------------
    # registry
    # ------------------------------------------------------------------
    def get_update(self, update_id: str) -> PendingUpdate:
        update = self._repository.get_pending_update(update_id)
        if update is None:
            raise NotFoundError(f"pending update {update_id} not found")
        return update

    def list_pending_updates(
        self,
        file_no: str | None = None,
        *,
        submitted_by_uid: str | None = None,
        statuses: Iterable[str] | None = None,
    ) -> list[PendingUpdate]:
        updates = self._repository.list_pending_updates(file_no, submitted_by_uid=submitted_by_uid, statuses=statuses)
        return _latest_first(updates)

    def actionable_updates(self, file_no: str | None = None) -> list[PendingUpdate]:
        """Updates an editor can approve or reject."""

        return self.list_pending_updates(file_no, statuses=[PENDING])

    def reassignment_queue(self, file_no: str | None = None) -> list[PendingUpdate]:
        """Updates whose site needs a new supervisor before anything else."""

        return self.list_pending_updates(file_no, statuses=[SUPERVISOR_UNASSIGNED])

    def subscribe_pending_updates(
        self,
        callback: Callable[[list[PendingUpdate]], None],
        viewer: UserProfile,
    ) -> Callable[[], None]:
        """Push the viewer's alert list now and after every change.

        Editors follow pending and unassigned updates; supervisors follow
        their own pending and rejected submissions; viewers get nothing.
        """

        statuses = VISIBLE_STATUSES.get(viewer.role, frozenset())
        if not statuses:
            callback([])
            return lambda: None
        submitted_by_uid = viewer.uid if viewer.role == "supervisor" else None

        def _deliver(updates: list[PendingUpdate]) -> None:
            callback(_latest_first(updates))

        return self._repository.subscribe_pending_updates(
            _deliver,
            statuses=statuses,
            submitted_by_uid=submitted_by_uid,
        )

    # ------------------------------------------------------------------
    # review
    # ------------------------------------------------------------------
    def review_update(self, update_id: str) -> list[SiteReview]:
        update = self.get_update(update_id)
        entry = self._repository.get_file_entry(update.file_no)
        return build_review(update, entry)

    def merge_update(self, update: PendingUpdate, entry: FileEntry | None) -> FileEntry:
        """Overlay the proposed sites and file-level fields on ``entry``."""

        if entry is None:
            raise NotFoundError(f"file entry {update.file_no} not found")

        proposals: dict[int, SiteDetail] = {}
        for proposed in update.updated_site_details:
            original = match_site(entry, proposed)
            if original is None:
                raise NotFoundError(f"site '{proposed.name_of_site}' no longer exists in file {update.file_no}")
            base = update.base_versions.get(site_key(original.site_id, original.name_of_site))
            if base is None:
                base = update.base_versions.get(site_key(None, original.name_of_site))
            if base is not None and original.version > base:
                raise StaleUpdateError(
                    f"site '{original.name_of_site}' changed after the update was submitted; review it again"
                )
            proposals[id(original)] = proposed

        sites: list[SiteDetail] = []
        for site in entry.site_details:
            proposed = proposals.get(id(site))
            if proposed is None:
                sites.append(site)
                continue
            data = {
                **site.to_document(),
                **proposed.to_document(),
                "siteId": site.site_id,
                "version": site.version,
                "supervisorUid": site.supervisor_uid,
                "supervisorName": site.supervisor_name,
            }
            try:
                sites.append(SiteDetail.model_validate(data))
            except PydanticValidationError as exc:
                raise ValidationError(f"site '{site.name_of_site}' cannot take the proposed values: {exc}", exc) from exc

        changes: dict[str, Any] = {"site_details": sites}
        if update.file_level_updates is not None:
            if update.file_level_updates.file_status is not None:
                changes["file_status"] = update.file_level_updates.file_status
            if update.file_level_updates.remarks is not None:
                changes["remarks"] = update.file_level_updates.remarks
        return entry.model_copy(update=changes)

    # ------------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------------
    def reject_update(self, update_id: str, editor: UserProfile, notes: str | None = None) -> PendingUpdate:
        self._access.require_role(editor, "editor", action="reject updates")
        reason = (notes or "").strip() or DEFAULT_REJECTION_NOTE
        try:
            updated = self._repository.transition_pending_update(
                update_id,
                REJECTED,
                notes=reason,
                reviewed_by_uid=editor.uid,
                reviewed_at=self._clock(),
            )
        except ConflictError:
            logger.warning("Rejecting update %s refused: not pending", update_id)
            raise
        logger.info("Pending update %s rejected by %s", update_id, editor.uid)
        return updated

    def prepare_approval(self, update_id: str, editor: UserProfile) -> ApprovalContext:
        """Build the hand-off to the file entry editor for approving an update."""

        self._access.require_role(editor, "editor", action="approve updates")
        update = self.get_update(update_id)
        if update.status != PENDING:
            raise ConflictError(f"update {update_id} has already been reviewed ({update.status})")
        merged = self.merge_update(update, self._repository.get_file_entry(update.file_no))
        query = urlencode({"fileNo": update.file_no, "approveUpdateId": update.id})
        return ApprovalContext(
            update_id=update.id,
            file_no=update.file_no,
            merged_entry=merged.to_payload(),
            redirect_to=f"{APPROVAL_EDITOR_PATH}?{query}",
            submitted_by_name=update.submitted_by_name,
        )

    def approve_update(
        self,
        update_id: str,
        editor: UserProfile,
        *,
        entry: FileEntry | None = None,
    ) -> tuple[PendingUpdate, FileEntry]:
        """Merge the update into its file entry and mark it approved in one commit.

        ``entry`` is the editor-reviewed file entry; without it the proposed
        sites are merged as submitted.
        """

        self._access.require_role(editor, "editor", action="approve updates")

        def _build(current: PendingUpdate, existing: FileEntry | None) -> FileEntry:
            merged = self.merge_update(current, existing)
            if entry is None:
                candidate = merged
            elif entry.file_no != current.file_no:
                raise ValidationError(f"update {current.id} belongs to file {current.file_no}, not {entry.file_no}")
            else:
                candidate = entry
            return finalise_entry(candidate, existing)

        try:
            approved, stored = self._repository.commit_approval(
                update_id,
                _build,
                reviewed_by_uid=editor.uid,
                reviewed_at=self._clock(),
            )
        except ConflictError:
            logger.warning("Approving update %s refused", update_id)
            raise
        logger.info("Pending update %s approved by %s into file %s", update_id, editor.uid, stored.file_no)
        return approved, stored

    # ------------------------------------------------------------------
    # orphan detection
    # ------------------------------------------------------------------
    def check_assignment(self, update_id: str) -> PendingUpdate:
        """Move a pending update whose submitter lost a site to ``supervisor-unassigned``."""

        update = self.get_update(update_id)
        if update.status != PENDING:
            return update

        entry = self._repository.get_file_entry(update.file_no)
        orphaned: list[str] = []
        for proposed in update.updated_site_details:
            site = match_site(entry, proposed) if entry else None
            if site is None or not self._access.holds_assignment(update.submitted_by_uid, site):
                orphaned.append(proposed.name_of_site)
        if not orphaned:
            return update

        notes = (
            f"Supervisor {update.submitted_by_name} is no longer assigned to "
            f"{', '.join(orphaned)}. Re-assign the site before reviewing."
        )
        updated = self._repository.transition_pending_update(update.id, SUPERVISOR_UNASSIGNED, notes=notes)
        logger.warning("Pending update %s marked supervisor-unassigned: %s", update.id, ", ".join(orphaned))
        return updated

    def detect_orphans(
        self,
        file_no: str | None = None,
        *,
        submitted_by_uid: str | None = None,
    ) -> list[PendingUpdate]:
        transitioned: list[PendingUpdate] = []
        candidates = self._repository.list_pending_updates(file_no, submitted_by_uid=submitted_by_uid, statuses=[PENDING])
        for update in candidates:
            try:
                checked = self.check_assignment(update.id)
            except ConflictError:
                logger.info("Update %s was reviewed while checking assignments", update.id)
                continue
            if checked.status == SUPERVISOR_UNASSIGNED:
                transitioned.append(checked)
        return transitioned

    def record_unassignment(
        self,
        file_no: str,
        site: SiteDetail,
        editor: UserProfile,
        supervisor_name: str,
    ) -> PendingUpdate:
        """Queue a site that lost its supervisor for re-assignment."""

        notice = PendingUpdate(
            file_no=file_no,
            updated_site_details=[
                SiteDetail(site_id=site.site_id, name_of_site=site.name_of_site, purpose=site.purpose)
            ],
            submitted_by_uid=editor.uid,
            submitted_by_name=f"{editor.name or editor.uid} (System)",
            submitted_at=self._clock(),
            status=SUPERVISOR_UNASSIGNED,
            notes=f"Supervisor {supervisor_name} removed from site while role was changed.",
        )
        self._repository.add_pending_update(notice)
        logger.info("Site '%s' in file %s queued for re-assignment", site.name_of_site, file_no)
        return notice
