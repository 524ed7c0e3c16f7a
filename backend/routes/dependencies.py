from __future__ import annotations

from fastapi import Header, HTTPException
from pydantic import ValidationError as PydanticValidationError

from backend.application import get_user_service
from backend.core.errors import (
    ConflictError,
    NoChangesError,
    NotFoundError,
    PermissionDeniedError,
    RecordError,
    StoreUnavailableError,
    ValidationError,
)
from backend.core.schema import UserProfile

# Order matters: the first matching class wins.
_STATUS_CODES: list[tuple[type[RecordError], int]] = [
    (NotFoundError, 404),
    (NoChangesError, 422),
    (ConflictError, 409),
    (PermissionDeniedError, 403),
    (ValidationError, 422),
    (StoreUnavailableError, 503),
]


def http_error(exc: RecordError) -> HTTPException:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.message)
    return HTTPException(status_code=500, detail=exc.message)


def invalid_payload(exc: PydanticValidationError) -> HTTPException:
    return HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False))


def resolve_user(uid: str | None) -> UserProfile | None:
    if not uid:
        return None
    return get_user_service().find_user(uid.strip())


async def current_user(x_user_uid: str | None = Header(default=None)) -> UserProfile:
    """Resolve the caller from the uid the identity proxy forwards."""

    try:
        user = resolve_user(x_user_uid)
    except RecordError as exc:
        raise http_error(exc) from exc
    if user is None:
        raise HTTPException(status_code=401, detail="unknown or missing user")
    if not user.is_approved:
        raise HTTPException(status_code=403, detail="account is awaiting approval")
    return user
