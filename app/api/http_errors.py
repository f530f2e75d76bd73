from __future__ import annotations

from collections.abc import Mapping

from fastapi import HTTPException

from app.services.errors import (
    ConflictError,
    DomainError,
    DuplicateMemberError,
    InvalidSelectionError,
    MemberNotFoundError,
    NotFoundError,
    SessionEndedError,
    StorageError,
    ValidationError,
)

DOMAIN_STATUSES: Mapping[type[DomainError], int] = {
    ValidationError: 400,
    InvalidSelectionError: 400,
    NotFoundError: 404,
    MemberNotFoundError: 404,
    DuplicateMemberError: 409,
    ConflictError: 409,
    SessionEndedError: 409,
    StorageError: 503,
}


def permission_error(exc: PermissionError) -> HTTPException:
    return HTTPException(status_code=403, detail=str(exc))


def domain_error(
    exc: DomainError,
    *,
    detail_overrides: Mapping[type[DomainError], str] | None = None,
    default_status: int = 400,
) -> HTTPException:
    # most specific class wins, so subclasses can be mapped on their own
    for cls in type(exc).__mro__:
        if cls in DOMAIN_STATUSES:
            status = DOMAIN_STATUSES[cls]
            break
    else:
        status = default_status

    detail = str(exc)
    if detail_overrides:
        for cls, override in detail_overrides.items():
            if isinstance(exc, cls):
                detail = override
                break
    if isinstance(exc, StorageError):
        # never leak driver messages
        detail = "Storage temporarily unavailable"
    return HTTPException(status_code=status, detail=detail)
