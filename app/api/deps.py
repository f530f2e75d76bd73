from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Cookie, Depends, Header, HTTPException, status
from jose import jwt, JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.db.session import get_db_session
from app.models.user import User
from app.services.errors import ConflictError, StorageError, ValidationError
from app.services.users import identity_from_claims, sync_user

COOKIE_NAME = "access_token"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_db_session():
        yield session


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def decode_access_token(token: str) -> dict:
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        audience=settings.jwt_audience,
        options={"verify_aud": settings.jwt_audience is not None},
    )


async def get_current_user(
    db: AsyncSession = Depends(get_db),
    authorization: str | None = Header(default=None),
    access_token: str | None = Cookie(default=None, alias=COOKIE_NAME),
) -> User:
    # tokens are issued by the identity provider; we only verify and mirror the profile
    token = _bearer_token(authorization) or access_token
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    try:
        payload = decode_access_token(token)
        identity = identity_from_claims(payload)
    except (JWTError, ValidationError):
        raise HTTPException(status_code=401, detail="Invalid token")

    try:
        return await sync_user(db, identity)
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StorageError:
        raise HTTPException(status_code=503, detail="User store unavailable")
