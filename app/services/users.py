from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import User
from app.services.errors import ConflictError, ValidationError, storage_boundary

logger = logging.getLogger(__name__)

_FALLBACK_DISPLAY_NAME = "Movie fan"


@dataclass
class Identity:
    user_id: uuid.UUID
    email: str | None
    display_name: str
    avatar_url: str | None


def _clean_text(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    return normalized or None


def identity_from_claims(claims: Mapping[str, Any]) -> Identity:
    """Map identity-provider token claims onto the fields we mirror locally."""
    try:
        user_id = uuid.UUID(str(claims.get("sub")))
    except ValueError as exc:
        raise ValidationError("Token subject is not a valid user id") from exc

    metadata = claims.get("user_metadata")
    if not isinstance(metadata, Mapping):
        metadata = {}

    email = _clean_text(claims.get("email"))
    if email:
        email = email.lower()

    display_name = (
        _clean_text(claims.get("name"))
        or _clean_text(metadata.get("name"))
        or _clean_text(metadata.get("full_name"))
        or (email.split("@", 1)[0] if email else None)
        or _FALLBACK_DISPLAY_NAME
    )
    avatar_url = _clean_text(metadata.get("avatar_url")) or _clean_text(claims.get("picture"))

    return Identity(user_id=user_id, email=email, display_name=display_name[:120], avatar_url=avatar_url)


@storage_boundary
async def sync_user(db: AsyncSession, identity: Identity) -> User:
    result = await db.execute(select(User).where(User.id == identity.user_id))
    user = result.scalar_one_or_none()

    if user is None:
        user = User(
            id=identity.user_id,
            email=identity.email,
            display_name=identity.display_name,
            avatar_url=identity.avatar_url,
        )
        db.add(user)
        try:
            await db.commit()
        except IntegrityError:
            # either the first requests for a new account raced each other,
            # or the email already belongs to a different account
            await db.rollback()
            result = await db.execute(select(User).where(User.id == identity.user_id))
            existing = result.scalar_one_or_none()
            if existing is None:
                raise ConflictError("Email is already linked to another account")
            return existing
        logger.info("user mirrored user_id=%s", user.id)
        return user

    changed = False
    if identity.email and user.email != identity.email:
        user.email = identity.email
        changed = True
    if identity.display_name and user.display_name != identity.display_name:
        user.display_name = identity.display_name
        changed = True
    if identity.avatar_url and user.avatar_url != identity.avatar_url:
        user.avatar_url = identity.avatar_url
        changed = True
    if changed:
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise ConflictError("Email is already linked to another account")
    return user
