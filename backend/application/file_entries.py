"""Application service for file entries (the canonical case records)."""
from __future__ import annotations

import logging
from collections import Counter
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from backend.core.errors import ConflictError, NotFoundError, ValidationError
from backend.core.schema import FileEntry, PaymentDetail, SiteDetail, UserProfile
from backend.infrastructure import RecordRepository

from .access import AccessPolicy

if TYPE_CHECKING:
    from .pending_updates import PendingUpdateService

logger = logging.getLogger(__name__)

_SITE_BOOKKEEPING = {"site_id", "version", "isPending"}


def _site_content(site: SiteDetail) -> dict[str, Any]:
    return site.model_dump(exclude=_SITE_BOOKKEEPING)


def _payment_total(payment: PaymentDetail) -> float:
    parts = (
        payment.contractors_payment,
        payment.gst,
        payment.income_tax,
        payment.kbcwb,
        payment.refund_to_party,
    )
    return float(sum(value or 0 for value in parts))


def finalise_entry(entry: FileEntry, previous: FileEntry | None) -> FileEntry:
    """Return ``entry`` ready to store.

    Sites keep (or receive) a stable ``site_id`` and their ``version`` is
    bumped whenever their content differs from ``previous``. Derived totals
    and ``assigned_supervisor_uids`` are recomputed.
    """

    duplicates = [name for name, count in Counter(s.name_of_site for s in entry.site_details).items() if count > 1]
    if duplicates:
        raise ValidationError(f"site names must be unique within a file: {', '.join(duplicates)}")

    sites: list[SiteDetail] = []
    for site in entry.site_details:
        before = previous.find_site(site.site_id, site.name_of_site) if previous else None
        site_id = site.site_id or (before.site_id if before else None) or uuid4().hex
        version = before.version if before else 0
        if before is not None and _site_content(before) != _site_content(site):
            version += 1
        sites.append(site.model_copy(update={"site_id": site_id, "version": version}))

    payments = [
        payment.model_copy(update={"total_payment_per_entry": _payment_total(payment)})
        for payment in entry.payment_details
    ]
    total_remittance = float(sum(item.amount_remitted or 0 for item in entry.remittance_details))
    total_payment = float(sum(payment.total_payment_per_entry for payment in payments))
    assigned = sorted({site.supervisor_uid for site in sites if site.supervisor_uid})

    return entry.model_copy(
        update={
            "site_details": sites,
            "payment_details": payments,
            "total_remittance": total_remittance,
            "total_payment_all_entries": total_payment,
            "overall_balance": total_remittance - total_payment,
            "assigned_supervisor_uids": assigned,
        }
    )


class FileEntryService:
    """Reads and writes file entries on behalf of editors."""

    def __init__(self, repository: RecordRepository, access: AccessPolicy) -> None:
        self._repository = repository
        self._access = access
        self._pending_updates: PendingUpdateService | None = None

    def bind_pending_updates(self, service: PendingUpdateService) -> None:
        self._pending_updates = service

    def get_file_entry(self, file_no: str) -> FileEntry | None:
        return self._repository.get_file_entry(file_no)

    def require_file_entry(self, file_no: str) -> FileEntry:
        entry = self._repository.get_file_entry(file_no)
        if entry is None:
            raise NotFoundError(f"file entry {file_no} not found")
        return entry

    def list_file_entries(self, viewer: UserProfile | None = None) -> list[FileEntry]:
        if viewer is not None and viewer.role == "supervisor":
            entries = self._repository.list_file_entries(assigned_supervisor_uid=viewer.uid)
        else:
            entries = self._repository.list_file_entries()
        return sorted(entries, key=lambda item: item.file_no)

    def create_file_entry(self, entry: FileEntry, editor: UserProfile) -> FileEntry:
        self._access.require_role(editor, "editor", action="create file entries")
        if self._repository.get_file_entry(entry.file_no) is not None:
            raise ConflictError(f"file no. {entry.file_no} already exists; use a unique file no.")
        stored = finalise_entry(entry, None)
        self._repository.save_file_entry(stored)
        logger.info("File entry %s created by %s", stored.file_no, editor.uid)
        return stored

    def save_file_entry(
        self,
        entry: FileEntry,
        editor: UserProfile,
        *,
        approve_update_id: str | None = None,
    ) -> FileEntry:
        """Save an edited file entry.

        With ``approve_update_id`` the save is the approval of that pending
        update: the entry and the update's status are committed together.
        """

        self._access.require_role(editor, "editor", action="edit file entries")
        if approve_update_id:
            if self._pending_updates is None:
                raise RuntimeError("pending update service is not bound")
            _, stored = self._pending_updates.approve_update(approve_update_id, editor, entry=entry)
            return stored

        previous = self._repository.get_file_entry(entry.file_no)
        if previous is None:
            raise NotFoundError(f"file entry {entry.file_no} not found")
        stored = finalise_entry(entry, previous)
        self._repository.save_file_entry(stored)
        logger.info("File entry %s updated by %s", stored.file_no, editor.uid)
        return stored
