"""Firestore-backed record repository.

Documents keep the camelCase shape the dashboard front-end already reads:
``fileEntries`` (auto ids, looked up by ``fileNo``), ``pendingUpdates``
(document id is the update id) and ``users`` (document id is the uid).
Every client failure is re-raised as :class:`StoreUnavailableError` so the
routes can answer with a retryable error.
"""
from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Iterable, Iterator

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter

from backend.core.errors import NotFoundError, RecordError, StoreUnavailableError
from backend.core.schema import FileEntry, PendingUpdate, UserProfile
from backend.domain import APPROVED, ensure_transition

from .records import ApprovalBuilder, UpdatesListener

logger = logging.getLogger(__name__)

FILE_ENTRIES_COLLECTION = "fileEntries"
PENDING_UPDATES_COLLECTION = "pendingUpdates"
USERS_COLLECTION = "users"


@contextmanager
def _store_call(operation: str) -> Iterator[None]:
    try:
        yield
    except google_exceptions.GoogleAPICallError as exc:
        logger.exception("Firestore call failed during %s", operation)
        raise StoreUnavailableError(f"document store unavailable during {operation}", exc) from exc


def initialize_firestore_client() -> Any:
    """Initialise the default Firebase app once and return its Firestore client."""

    try:
        app = firebase_admin.get_app()
    except ValueError:
        cred_path = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
        cred = credentials.Certificate(cred_path) if cred_path else credentials.ApplicationDefault()
        project_id = os.getenv("FIREBASE_PROJECT_ID")
        options = {"projectId": project_id} if project_id else None
        app = firebase_admin.initialize_app(cred, options)
    return firestore.client(app)


class FirestoreRecordRepository:
    """Repository over a Cloud Firestore database."""

    def __init__(self, client: Any) -> None:
        self._db = client

    @classmethod
    def from_environment(cls) -> "FirestoreRecordRepository":
        return cls(initialize_firestore_client())

    # ------------------------------------------------------------------
    # document conversion
    # ------------------------------------------------------------------
    @staticmethod
    def _to_update(snapshot: Any) -> PendingUpdate:
        data = snapshot.to_dict() or {}
        data["id"] = snapshot.id
        return PendingUpdate.model_validate(data)

    @staticmethod
    def _update_document(update: PendingUpdate) -> dict[str, Any]:
        document = update.to_document()
        document.pop("id", None)
        return document

    def _file_query(self, file_no: str) -> Any:
        return (
            self._db.collection(FILE_ENTRIES_COLLECTION)
            .where(filter=FieldFilter("fileNo", "==", file_no))
            .limit(1)
        )

    def _file_snapshot(self, file_no: str, transaction: Any = None) -> Any | None:
        query = self._file_query(file_no)
        snapshots = list(query.get(transaction=transaction)) if transaction else list(query.stream())
        return snapshots[0] if snapshots else None

    # ------------------------------------------------------------------
    # file entries
    # ------------------------------------------------------------------
    def get_file_entry(self, file_no: str) -> FileEntry | None:
        with _store_call("get_file_entry"):
            snapshot = self._file_snapshot(file_no)
        if snapshot is None:
            return None
        return FileEntry.model_validate(snapshot.to_dict())

    def list_file_entries(self, *, assigned_supervisor_uid: str | None = None) -> list[FileEntry]:
        query = self._db.collection(FILE_ENTRIES_COLLECTION)
        if assigned_supervisor_uid is not None:
            query = query.where(filter=FieldFilter("assignedSupervisorUids", "array_contains", assigned_supervisor_uid))
        with _store_call("list_file_entries"):
            return [FileEntry.model_validate(snapshot.to_dict()) for snapshot in query.stream()]

    def save_file_entry(self, entry: FileEntry) -> None:
        with _store_call("save_file_entry"):
            snapshot = self._file_snapshot(entry.file_no)
            if snapshot is None:
                self._db.collection(FILE_ENTRIES_COLLECTION).add(entry.to_document())
            else:
                snapshot.reference.set(entry.to_document())

    # ------------------------------------------------------------------
    # pending updates
    # ------------------------------------------------------------------
    def get_pending_update(self, update_id: str) -> PendingUpdate | None:
        with _store_call("get_pending_update"):
            snapshot = self._db.collection(PENDING_UPDATES_COLLECTION).document(update_id).get()
        if not snapshot.exists:
            return None
        return self._to_update(snapshot)

    def list_pending_updates(
        self,
        file_no: str | None = None,
        *,
        submitted_by_uid: str | None = None,
        statuses: Iterable[str] | None = None,
    ) -> list[PendingUpdate]:
        query = self._db.collection(PENDING_UPDATES_COLLECTION)
        if file_no is not None:
            query = query.where(filter=FieldFilter("fileNo", "==", file_no))
        if submitted_by_uid is not None:
            query = query.where(filter=FieldFilter("submittedByUid", "==", submitted_by_uid))
        if statuses is not None:
            wanted = sorted(set(statuses))
            if not wanted:
                return []
            query = query.where(filter=FieldFilter("status", "in", wanted))
        with _store_call("list_pending_updates"):
            return [self._to_update(snapshot) for snapshot in query.stream()]

    def add_pending_update(self, update: PendingUpdate) -> None:
        with _store_call("add_pending_update"):
            self._db.collection(PENDING_UPDATES_COLLECTION).document(update.id).set(self._update_document(update))

    def transition_pending_update(
        self,
        update_id: str,
        target_status: str,
        *,
        notes: str | None = None,
        reviewed_by_uid: str | None = None,
        reviewed_at: datetime | None = None,
    ) -> PendingUpdate:
        update_ref = self._db.collection(PENDING_UPDATES_COLLECTION).document(update_id)

        @firestore.transactional
        def _apply(transaction: Any) -> PendingUpdate:
            snapshot = update_ref.get(transaction=transaction)
            if not snapshot.exists:
                raise NotFoundError(f"pending update {update_id} not found")
            current = self._to_update(snapshot)
            ensure_transition(update_id, current.status, target_status)
            changes: dict[str, Any] = {"status": target_status}
            if notes is not None:
                changes["notes"] = notes
            if reviewed_by_uid is not None:
                changes["reviewedByUid"] = reviewed_by_uid
            if reviewed_at is not None:
                changes["reviewedAt"] = reviewed_at
            transaction.update(update_ref, changes)
            return PendingUpdate.model_validate({**current.to_document(), **changes})

        with _store_call("transition_pending_update"):
            return _apply(self._db.transaction())

    def commit_approval(
        self,
        update_id: str,
        build_entry: ApprovalBuilder,
        *,
        reviewed_by_uid: str,
        reviewed_at: datetime,
    ) -> tuple[PendingUpdate, FileEntry]:
        update_ref = self._db.collection(PENDING_UPDATES_COLLECTION).document(update_id)

        @firestore.transactional
        def _apply(transaction: Any) -> tuple[PendingUpdate, FileEntry]:
            snapshot = update_ref.get(transaction=transaction)
            if not snapshot.exists:
                raise NotFoundError(f"pending update {update_id} not found")
            current = self._to_update(snapshot)
            ensure_transition(update_id, current.status, APPROVED)
            file_snapshot = self._file_snapshot(current.file_no, transaction=transaction)
            existing = FileEntry.model_validate(file_snapshot.to_dict()) if file_snapshot else None
            entry = build_entry(current, existing)

            file_ref = file_snapshot.reference if file_snapshot else self._db.collection(FILE_ENTRIES_COLLECTION).document()
            changes = {"status": APPROVED, "reviewedByUid": reviewed_by_uid, "reviewedAt": reviewed_at}
            transaction.set(file_ref, entry.to_document())
            transaction.update(update_ref, changes)
            return PendingUpdate.model_validate({**current.to_document(), **changes}), entry

        with _store_call("commit_approval"):
            return _apply(self._db.transaction())

    def subscribe_pending_updates(
        self,
        listener: UpdatesListener,
        *,
        statuses: Iterable[str] | None = None,
        submitted_by_uid: str | None = None,
    ) -> Callable[[], None]:
        query = self._db.collection(PENDING_UPDATES_COLLECTION)
        if statuses is not None:
            wanted = sorted(set(statuses))
            if not wanted:
                listener([])
                return lambda: None
            query = query.where(filter=FieldFilter("status", "in", wanted))
        if submitted_by_uid is not None:
            query = query.where(filter=FieldFilter("submittedByUid", "==", submitted_by_uid))

        def _on_snapshot(snapshots: list[Any], _changes: Any, _read_time: Any) -> None:
            listener([self._to_update(snapshot) for snapshot in snapshots])

        with _store_call("subscribe_pending_updates"):
            watch = query.on_snapshot(_on_snapshot)
        return watch.unsubscribe

    # ------------------------------------------------------------------
    # users
    # ------------------------------------------------------------------
    def get_user(self, uid: str) -> UserProfile | None:
        with _store_call("get_user"):
            snapshot = self._db.collection(USERS_COLLECTION).document(uid).get()
        if not snapshot.exists:
            return None
        return UserProfile.model_validate({**(snapshot.to_dict() or {}), "uid": snapshot.id})

    def list_users(self) -> list[UserProfile]:
        with _store_call("list_users"):
            return [
                UserProfile.model_validate({**(snapshot.to_dict() or {}), "uid": snapshot.id})
                for snapshot in self._db.collection(USERS_COLLECTION).stream()
            ]

    def save_user(self, user: UserProfile) -> None:
        with _store_call("save_user"):
            self._db.collection(USERS_COLLECTION).document(user.uid).set(user.to_document())

    def reset(self) -> None:
        raise RecordError("refusing to wipe a Firestore database")
