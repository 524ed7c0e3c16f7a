"""Process-wide service wiring."""
from __future__ import annotations

from backend.infrastructure import InMemoryRecordRepository, RecordRepository

from .access import AccessPolicy
from .file_entries import FileEntryService
from .pending_updates import PendingUpdateService
from .users import UserService

_repository: RecordRepository = InMemoryRecordRepository()
_pending_updates: PendingUpdateService
_file_entries: FileEntryService
_users: UserService


def _wire(repository: RecordRepository) -> None:
    global _repository, _pending_updates, _file_entries, _users

    access = AccessPolicy(repository)
    _repository = repository
    _pending_updates = PendingUpdateService(repository, access)
    _file_entries = FileEntryService(repository, access)
    _file_entries.bind_pending_updates(_pending_updates)
    _users = UserService(repository, access, _pending_updates)


_wire(_repository)


def configure_record_repository(repository: RecordRepository) -> None:
    """Swap the backing store (``create_app`` picks it from ``RECORDS_STORE``)."""

    _wire(repository)


def get_record_repository() -> RecordRepository:
    return _repository


def get_pending_update_service() -> PendingUpdateService:
    """Return the singleton pending update service for the process."""

    return _pending_updates


def get_file_entry_service() -> FileEntryService:
    return _file_entries


def get_user_service() -> UserService:
    return _users


def reset_record_state() -> None:
    """Reset the in-memory store (used in tests)."""

    _repository.reset()
