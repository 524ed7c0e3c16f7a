from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from fastapi.responses import FileResponse
from starlette.background import BackgroundTask

from backend.application import get_pending_update_service
from backend.core.errors import PermissionDeniedError, RecordError
from backend.core.exports import export_path
from backend.core.schema import UPDATE_STATUSES, PendingUpdate, UserProfile, utcnow
from backend.exporters.pending_updates_xlsx import export_pending_updates

from .dependencies import current_user, http_error, resolve_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pending-updates", tags=["pending-updates"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _items(updates: list[PendingUpdate]) -> dict:
    return {"items": [update.to_payload() for update in updates], "count": len(updates)}


def _require_editor(user: UserProfile) -> None:
    if user.role != "editor":
        raise HTTPException(status_code=403, detail=f"{user.role} users may not review updates")


def _check_statuses(statuses: list[str] | None) -> None:
    unknown = sorted(set(statuses or ()) - set(UPDATE_STATUSES))
    if unknown:
        raise HTTPException(status_code=422, detail=f"unknown status: {', '.join(unknown)}")


@router.get("")
async def list_pending_updates(
    file_no: str | None = Query(default=None, alias="fileNo"),
    submitted_by_uid: str | None = Query(default=None, alias="submittedByUid"),
    status_filter: list[str] | None = Query(default=None, alias="status"),
    user: UserProfile = Depends(current_user),
) -> dict:
    if user.role == "viewer":
        raise HTTPException(status_code=403, detail="viewer users may not list pending updates")
    if user.role == "supervisor":
        submitted_by_uid = user.uid
    _check_statuses(status_filter)
    service = get_pending_update_service()
    try:
        updates = service.list_pending_updates(file_no, submitted_by_uid=submitted_by_uid, statuses=status_filter)
    except RecordError as exc:
        raise http_error(exc) from exc
    return _items(updates)


@router.post("", status_code=201)
async def submit_pending_update(payload: dict, user: UserProfile = Depends(current_user)) -> dict:
    file_no = payload.get("fileNo")
    if not file_no:
        raise HTTPException(status_code=400, detail="fileNo is required")
    site_details = payload.get("updatedSiteDetails") or payload.get("siteDetails") or []
    if not isinstance(site_details, list):
        raise HTTPException(status_code=400, detail="updatedSiteDetails must be a list")
    service = get_pending_update_service()
    try:
        update = service.submit_update(file_no, site_details, user, payload.get("fileLevelUpdates"))
    except RecordError as exc:
        raise http_error(exc) from exc
    return update.to_payload()


@router.get("/actionable")
async def list_actionable_updates(
    file_no: str | None = Query(default=None, alias="fileNo"),
    user: UserProfile = Depends(current_user),
) -> dict:
    _require_editor(user)
    return _items(get_pending_update_service().actionable_updates(file_no))


@router.get("/reassign")
async def list_reassignment_queue(
    file_no: str | None = Query(default=None, alias="fileNo"),
    user: UserProfile = Depends(current_user),
) -> dict:
    _require_editor(user)
    return _items(get_pending_update_service().reassignment_queue(file_no))


@router.get("/export")
async def export_updates(
    status_filter: list[str] | None = Query(default=None, alias="status"),
    user: UserProfile = Depends(current_user),
) -> FileResponse:
    _require_editor(user)
    _check_statuses(status_filter)
    service = get_pending_update_service()
    try:
        updates = service.list_pending_updates(statuses=status_filter)
    except RecordError as exc:
        raise http_error(exc) from exc
    target = export_pending_updates(export_path("pending_updates", utcnow()), updates)
    logger.info("Exported %d pending update(s) to %s", len(updates), target.name)
    # removed once the response is sent
    cleanup = BackgroundTask(target.unlink, missing_ok=True)
    return FileResponse(target, media_type=XLSX_MEDIA_TYPE, filename=target.name, background=cleanup)


@router.post("/orphans/detect")
async def detect_orphaned_updates(payload: dict | None = None, user: UserProfile = Depends(current_user)) -> dict:
    _require_editor(user)
    file_no = (payload or {}).get("fileNo")
    try:
        transitioned = get_pending_update_service().detect_orphans(file_no)
    except RecordError as exc:
        raise http_error(exc) from exc
    return _items(transitioned)


@router.websocket("/live")
async def pending_updates_live(websocket: WebSocket) -> None:
    """Push the caller's alert list on connect and after every change."""

    uid = websocket.headers.get("x-user-uid") or websocket.query_params.get("uid")
    user = resolve_user(uid)
    if user is None or not user.is_approved:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[list[dict]] = asyncio.Queue()

    def _push(updates: list[PendingUpdate]) -> None:
        payload = [update.to_payload() for update in updates]
        loop.call_soon_threadsafe(queue.put_nowait, payload)

    async def _forward() -> None:
        while True:
            items = await queue.get()
            await websocket.send_json({"items": items, "count": len(items)})

    async def _watch() -> None:
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            return

    unsubscribe = get_pending_update_service().subscribe_pending_updates(_push, user)
    tasks = {asyncio.create_task(_forward()), asyncio.create_task(_watch())}
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            task.result()
    finally:
        unsubscribe()
        for task in tasks:
            task.cancel()
    logger.info("Live feed closed for %s", user.uid)


@router.get("/{update_id}")
async def get_pending_update(update_id: str, user: UserProfile = Depends(current_user)) -> dict:
    try:
        update = get_pending_update_service().get_update(update_id)
    except RecordError as exc:
        raise http_error(exc) from exc
    if user.role != "editor" and update.submitted_by_uid != user.uid:
        raise http_error(PermissionDeniedError(f"update {update_id} belongs to another supervisor"))
    return update.to_payload()


@router.get("/{update_id}/diff")
async def get_pending_update_diff(update_id: str, user: UserProfile = Depends(current_user)) -> dict:
    _require_editor(user)
    try:
        reviews = get_pending_update_service().review_update(update_id)
    except RecordError as exc:
        raise http_error(exc) from exc
    return {"updateId": update_id, "sites": [review.as_dict() for review in reviews]}


@router.post("/{update_id}/check-assignment")
async def check_update_assignment(update_id: str, user: UserProfile = Depends(current_user)) -> dict:
    _require_editor(user)
    try:
        update = get_pending_update_service().check_assignment(update_id)
    except RecordError as exc:
        raise http_error(exc) from exc
    return update.to_payload()


@router.post("/{update_id}/reject")
async def reject_pending_update(
    update_id: str,
    payload: dict | None = None,
    user: UserProfile = Depends(current_user),
) -> dict:
    notes = (payload or {}).get("notes")
    try:
        update = get_pending_update_service().reject_update(update_id, user, notes)
    except RecordError as exc:
        raise http_error(exc) from exc
    return update.to_payload()


@router.get("/{update_id}/approval")
async def prepare_pending_update_approval(update_id: str, user: UserProfile = Depends(current_user)) -> dict:
    try:
        context = get_pending_update_service().prepare_approval(update_id, user)
    except RecordError as exc:
        raise http_error(exc) from exc
    return context.as_dict()


@router.post("/{update_id}/approve")
async def approve_pending_update(update_id: str, user: UserProfile = Depends(current_user)) -> dict:
    try:
        update, entry = get_pending_update_service().approve_update(update_id, user)
    except RecordError as exc:
        raise http_error(exc) from exc
    return {"update": update.to_payload(), "fileEntry": entry.to_payload()}
