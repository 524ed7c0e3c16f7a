from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError as PydanticValidationError

from backend.application import get_file_entry_service
from backend.core.errors import RecordError
from backend.core.schema import FileEntry, UserProfile

from .dependencies import current_user, http_error, invalid_payload

router = APIRouter(prefix="/file-entries", tags=["file-entries"])


def _parse_entry(payload: dict) -> FileEntry:
    try:
        return FileEntry.model_validate(payload)
    except PydanticValidationError as exc:
        raise invalid_payload(exc) from exc


@router.get("")
async def list_file_entries(user: UserProfile = Depends(current_user)) -> dict:
    service = get_file_entry_service()
    try:
        entries = service.list_file_entries(user)
    except RecordError as exc:
        raise http_error(exc) from exc
    return {"items": [entry.to_payload() for entry in entries], "count": len(entries)}


@router.post("", status_code=201)
async def create_file_entry(payload: dict, user: UserProfile = Depends(current_user)) -> dict:
    entry = _parse_entry(payload)
    try:
        stored = get_file_entry_service().create_file_entry(entry, user)
    except RecordError as exc:
        raise http_error(exc) from exc
    return stored.to_payload()


@router.get("/{file_no:path}")
async def get_file_entry(file_no: str, user: UserProfile = Depends(current_user)) -> dict:
    try:
        entry = get_file_entry_service().get_file_entry(file_no)
    except RecordError as exc:
        raise http_error(exc) from exc
    if entry is None:
        raise HTTPException(status_code=404, detail="file entry not found")
    return entry.to_payload()


@router.put("/{file_no:path}")
async def save_file_entry(
    file_no: str,
    payload: dict,
    approve_update_id: str | None = Query(default=None, alias="approveUpdateId"),
    user: UserProfile = Depends(current_user),
) -> dict:
    entry = _parse_entry(payload)
    if entry.file_no != file_no:
        raise HTTPException(status_code=422, detail="fileNo in the body does not match the URL")
    try:
        stored = get_file_entry_service().save_file_entry(entry, user, approve_update_id=approve_update_id)
    except RecordError as exc:
        raise http_error(exc) from exc
    return stored.to_payload()
