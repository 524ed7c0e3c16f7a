"""Infrastructure layer for file entry, pending update and user persistence."""
from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable, Iterable, Protocol

from backend.core.errors import NotFoundError
from backend.core.schema import FileEntry, PendingUpdate, UserProfile
from backend.domain import APPROVED, ensure_transition

UpdatesListener = Callable[[list[PendingUpdate]], None]
ApprovalBuilder = Callable[[PendingUpdate, "FileEntry | None"], FileEntry]


class RecordRepository(Protocol):
    """Persistence contract for the records the approval workflow touches."""

    def get_file_entry(self, file_no: str) -> FileEntry | None: ...

    def list_file_entries(self, *, assigned_supervisor_uid: str | None = None) -> list[FileEntry]: ...

    def save_file_entry(self, entry: FileEntry) -> None: ...

    def get_pending_update(self, update_id: str) -> PendingUpdate | None: ...

    def list_pending_updates(
        self,
        file_no: str | None = None,
        *,
        submitted_by_uid: str | None = None,
        statuses: Iterable[str] | None = None,
    ) -> list[PendingUpdate]: ...

    def add_pending_update(self, update: PendingUpdate) -> None: ...

    def transition_pending_update(
        self,
        update_id: str,
        target_status: str,
        *,
        notes: str | None = None,
        reviewed_by_uid: str | None = None,
        reviewed_at: datetime | None = None,
    ) -> PendingUpdate: ...

    def commit_approval(
        self,
        update_id: str,
        build_entry: ApprovalBuilder,
        *,
        reviewed_by_uid: str,
        reviewed_at: datetime,
    ) -> tuple[PendingUpdate, FileEntry]: ...

    def subscribe_pending_updates(
        self,
        listener: UpdatesListener,
        *,
        statuses: Iterable[str] | None = None,
        submitted_by_uid: str | None = None,
    ) -> Callable[[], None]: ...

    def get_user(self, uid: str) -> UserProfile | None: ...

    def list_users(self) -> list[UserProfile]: ...

    def save_user(self, user: UserProfile) -> None: ...

    def reset(self) -> None: ...


def _matches(
    update: PendingUpdate,
    file_no: str | None,
    submitted_by_uid: str | None,
    statuses: frozenset[str] | None,
) -> bool:
    if file_no is not None and update.file_no != file_no:
        return False
    if submitted_by_uid is not None and update.submitted_by_uid != submitted_by_uid:
        return False
    if statuses is not None and update.status not in statuses:
        return False
    return True


class _Subscription:
    __slots__ = ("listener", "statuses", "submitted_by_uid")

    def __init__(self, listener: UpdatesListener, statuses: frozenset[str] | None, submitted_by_uid: str | None) -> None:
        self.listener = listener
        self.statuses = statuses
        self.submitted_by_uid = submitted_by_uid


class InMemoryRecordRepository:
    """Thread-safe in-memory repository for development and tests."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._file_entries: dict[str, FileEntry] = {}
        self._updates: dict[str, PendingUpdate] = {}
        self._users: dict[str, UserProfile] = {}
        self._subscriptions: list[_Subscription] = []

    # ------------------------------------------------------------------
    # internal helpers
    # ------------------------------------------------------------------
    def _select_updates(
        self,
        file_no: str | None,
        submitted_by_uid: str | None,
        statuses: frozenset[str] | None,
    ) -> list[PendingUpdate]:
        with self._lock:
            return [
                update.model_copy(deep=True)
                for update in self._updates.values()
                if _matches(update, file_no, submitted_by_uid, statuses)
            ]

    def _notify(self) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            snapshot = self._select_updates(None, subscription.submitted_by_uid, subscription.statuses)
            subscription.listener(snapshot)

    def _require_update(self, update_id: str) -> PendingUpdate:
        update = self._updates.get(update_id)
        if update is None:
            raise NotFoundError(f"pending update {update_id} not found")
        return update

    # ------------------------------------------------------------------
    # file entries
    # ------------------------------------------------------------------
    def get_file_entry(self, file_no: str) -> FileEntry | None:
        with self._lock:
            entry = self._file_entries.get(file_no)
            return entry.model_copy(deep=True) if entry else None

    def list_file_entries(self, *, assigned_supervisor_uid: str | None = None) -> list[FileEntry]:
        with self._lock:
            return [
                entry.model_copy(deep=True)
                for entry in self._file_entries.values()
                if assigned_supervisor_uid is None or assigned_supervisor_uid in entry.assigned_supervisor_uids
            ]

    def save_file_entry(self, entry: FileEntry) -> None:
        with self._lock:
            self._file_entries[entry.file_no] = entry.model_copy(deep=True)

    # ------------------------------------------------------------------
    # pending updates
    # ------------------------------------------------------------------
    def get_pending_update(self, update_id: str) -> PendingUpdate | None:
        with self._lock:
            update = self._updates.get(update_id)
            return update.model_copy(deep=True) if update else None

    def list_pending_updates(
        self,
        file_no: str | None = None,
        *,
        submitted_by_uid: str | None = None,
        statuses: Iterable[str] | None = None,
    ) -> list[PendingUpdate]:
        wanted = frozenset(statuses) if statuses is not None else None
        return self._select_updates(file_no, submitted_by_uid, wanted)

    def add_pending_update(self, update: PendingUpdate) -> None:
        with self._lock:
            self._updates[update.id] = update.model_copy(deep=True)
        self._notify()

    def transition_pending_update(
        self,
        update_id: str,
        target_status: str,
        *,
        notes: str | None = None,
        reviewed_by_uid: str | None = None,
        reviewed_at: datetime | None = None,
    ) -> PendingUpdate:
        with self._lock:
            current = self._require_update(update_id)
            ensure_transition(update_id, current.status, target_status)
            changes: dict[str, object] = {"status": target_status}
            if notes is not None:
                changes["notes"] = notes
            if reviewed_by_uid is not None:
                changes["reviewed_by_uid"] = reviewed_by_uid
            if reviewed_at is not None:
                changes["reviewed_at"] = reviewed_at
            updated = current.model_copy(update=changes, deep=True)
            self._updates[update_id] = updated
            result = updated.model_copy(deep=True)
        self._notify()
        return result

    def commit_approval(
        self,
        update_id: str,
        build_entry: ApprovalBuilder,
        *,
        reviewed_by_uid: str,
        reviewed_at: datetime,
    ) -> tuple[PendingUpdate, FileEntry]:
        with self._lock:
            current = self._require_update(update_id)
            ensure_transition(update_id, current.status, APPROVED)
            existing = self._file_entries.get(current.file_no)
            entry = build_entry(
                current.model_copy(deep=True),
                existing.model_copy(deep=True) if existing else None,
            )
            approved = current.model_copy(
                update={"status": APPROVED, "reviewed_by_uid": reviewed_by_uid, "reviewed_at": reviewed_at},
                deep=True,
            )
            self._file_entries[entry.file_no] = entry.model_copy(deep=True)
            self._updates[update_id] = approved
            result = approved.model_copy(deep=True), entry.model_copy(deep=True)
        self._notify()
        return result

    def subscribe_pending_updates(
        self,
        listener: UpdatesListener,
        *,
        statuses: Iterable[str] | None = None,
        submitted_by_uid: str | None = None,
    ) -> Callable[[], None]:
        wanted = frozenset(statuses) if statuses is not None else None
        subscription = _Subscription(listener, wanted, submitted_by_uid)
        with self._lock:
            self._subscriptions.append(subscription)
        listener(self._select_updates(None, submitted_by_uid, wanted))

        def unsubscribe() -> None:
            with self._lock:
                if subscription in self._subscriptions:
                    self._subscriptions.remove(subscription)

        return unsubscribe

    # ------------------------------------------------------------------
    # users
    # ------------------------------------------------------------------
    def get_user(self, uid: str) -> UserProfile | None:
        with self._lock:
            user = self._users.get(uid)
            return user.model_copy(deep=True) if user else None

    def list_users(self) -> list[UserProfile]:
        with self._lock:
            return [user.model_copy(deep=True) for user in self._users.values()]

    def save_user(self, user: UserProfile) -> None:
        with self._lock:
            self._users[user.uid] = user.model_copy(deep=True)

    def reset(self) -> None:
        with self._lock:
            self._file_entries.clear()
            self._updates.clear()
            self._users.clear()
            self._subscriptions.clear()
