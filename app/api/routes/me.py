from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_db
from app.api.http_errors import domain_error
from app.api.presenters.groups import group_list_item
from app.models.user import User
from app.schemas.groups import GroupListItem
from app.schemas.users import MeResponse
from app.services.errors import DomainError
from app.services.groups import list_user_groups

router = APIRouter(tags=["me"])


@router.get("/me", response_model=MeResponse)
async def me(user: User = Depends(get_current_user)):
    return MeResponse(
        id=str(user.id),
        email=user.email,
        display_name=user.display_name,
        avatar_url=user.avatar_url,
    )


@router.get("/me/groups", response_model=list[GroupListItem])
async def my_groups(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        groups = await list_user_groups(db, user.id)
    except DomainError as e:
        raise domain_error(e) from e
    return [group_list_item(g, user.id) for g in groups]
