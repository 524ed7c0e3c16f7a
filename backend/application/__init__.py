"""Application services."""

from .access import AccessPolicy
from .file_entries import FileEntryService, finalise_entry
from .pending_updates import PendingUpdateService
from .services import (
    configure_record_repository,
    get_file_entry_service,
    get_pending_update_service,
    get_record_repository,
    get_user_service,
    reset_record_state,
)
from .users import UserService

__all__ = [
    "AccessPolicy",
    "FileEntryService",
    "PendingUpdateService",
    "UserService",
    "configure_record_repository",
    "finalise_entry",
    "get_file_entry_service",
    "get_pending_update_service",
    "get_record_repository",
    "get_user_service",
    "reset_record_state",
]
