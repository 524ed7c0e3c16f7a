from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from backend.application import get_user_service
from backend.core.errors import RecordError
from backend.core.schema import UserProfile

from .dependencies import current_user, http_error

router = APIRouter(prefix="/users", tags=["users"])


@router.get("")
async def list_users(user: UserProfile = Depends(current_user)) -> dict:
    if user.role != "editor":
        raise HTTPException(status_code=403, detail=f"{user.role} users may not list users")
    users = get_user_service().list_users()
    return {"items": [item.to_payload() for item in users], "count": len(users)}


@router.post("", status_code=201)
async def register_user(payload: dict) -> dict:
    uid = str(payload.get("uid") or "").strip()
    name = str(payload.get("name") or "").strip()
    if not uid or not name:
        raise HTTPException(status_code=400, detail="uid and name are required")
    try:
        user = get_user_service().register_user(uid, name, payload.get("email"), payload.get("staffId"))
    except RecordError as exc:
        raise http_error(exc) from exc
    return user.to_payload()


@router.get("/me")
async def get_current_user(user: UserProfile = Depends(current_user)) -> dict:
    return user.to_payload()


@router.patch("/{uid}/approval")
async def update_user_approval(uid: str, payload: dict, user: UserProfile = Depends(current_user)) -> dict:
    if "isApproved" not in payload:
        raise HTTPException(status_code=400, detail="isApproved is required")
    try:
        updated = get_user_service().update_approval(uid, bool(payload["isApproved"]), user)
    except RecordError as exc:
        raise http_error(exc) from exc
    return updated.to_payload()


@router.patch("/{uid}/role")
async def update_user_role(uid: str, payload: dict, user: UserProfile = Depends(current_user)) -> dict:
    role = payload.get("role")
    if not role:
        raise HTTPException(status_code=400, detail="role is required")
    try:
        updated = get_user_service().update_role(uid, role, user, staff_id=payload.get("staffId"))
    except RecordError as exc:
        raise http_error(exc) from exc
    return updated.to_payload()
