from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from app.api.deps import get_current_user, get_db
from app.api.http_errors import domain_error, permission_error
from app.api.presenters.groups import group_detail, group_list_item, history_out
from app.models.user import User
from app.schemas.groups import (
    CreateGroupRequest,
    GroupDetailResponse,
    GroupListItem,
    GroupMemberOut,
    HistoryEntryOut,
    JoinGroupRequest,
    OkResponse,
    RecommendationsResponse,
    SaveRecommendationsRequest,
    UpdateMemberRoleRequest,
)
from app.services.errors import DomainError, NotFoundError
from app.services.groups import (
    create_group,
    delete_group,
    get_group,
    get_group_for_admin,
    get_group_for_member,
    get_last_recommendations,
    join_by_code,
    leave_group,
    list_user_groups,
    remove_member_by_id,
    save_recommendations,
    update_member_role,
)

router = APIRouter(prefix="/groups", tags=["groups"])


@router.post("", response_model=GroupDetailResponse, status_code=201)
async def create_group_route(
    payload: CreateGroupRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        g = await create_group(db, creator=user, name=payload.name, hero_image=payload.hero_image)
        return group_detail(g, user.id)
    except DomainError as e:
        raise domain_error(e) from e


@router.get("", response_model=list[GroupListItem])
async def list_groups_route(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        groups = await list_user_groups(db, user.id)
    except DomainError as e:
        raise domain_error(e) from e
    return [group_list_item(g, user.id) for g in groups]


@router.post("/join", response_model=GroupDetailResponse, status_code=200)
async def join_group_route(
    payload: JoinGroupRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        g = await join_by_code(db, user=user, code=payload.code)
        return group_detail(g, user.id)
    except DomainError as e:
        raise domain_error(
            e,
            detail_overrides={NotFoundError: "Invalid group code"},
        ) from e


@router.get("/{group_id}", response_model=GroupDetailResponse)
async def group_detail_route(
    group_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        g = await get_group_for_member(db, group_id, user.id)
        return group_detail(g, user.id)
    except PermissionError as e:
        raise permission_error(e) from e
    except DomainError as e:
        raise domain_error(e) from e


@router.delete("/{group_id}", response_model=OkResponse, status_code=200)
async def delete_group_route(
    group_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        g = await get_group(db, group_id)
        if g.created_by_user_id != user.id:
            raise PermissionError("Only the group creator can delete the group")
        await delete_group(db, g)
        return OkResponse(ok=True)
    except PermissionError as e:
        raise permission_error(e) from e
    except DomainError as e:
        raise domain_error(e) from e


@router.post("/{group_id}/leave", response_model=OkResponse, status_code=200)
async def leave_group_route(
    group_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        g = await get_group(db, group_id)
        await leave_group(db, g, user.id)
        return OkResponse(ok=True)
    except PermissionError as e:
        raise permission_error(e) from e
    except DomainError as e:
        raise domain_error(e) from e


@router.patch("/{group_id}/members/{member_user_id}", response_model=GroupMemberOut)
async def update_member_role_route(
    group_id: UUID,
    member_user_id: UUID,
    payload: UpdateMemberRoleRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        g = await get_group_for_admin(db, group_id, user.id)
        m = await update_member_role(db, g, member_user_id, payload.role)
        return GroupMemberOut(
            id=m.id,
            user_id=m.user_id,
            display_name=m.display_name,
            avatar_url=m.avatar_url,
            role=m.role,
            joined_at=m.joined_at,
        )
    except PermissionError as e:
        raise permission_error(e) from e
    except DomainError as e:
        raise domain_error(e) from e


@router.delete("/{group_id}/members/{member_id}", response_model=OkResponse, status_code=200)
async def remove_member_route(
    group_id: UUID,
    member_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        g = await get_group_for_admin(db, group_id, user.id)
        target = next((m for m in g.members if m.id == member_id), None)
        if target is not None and target.user_id == g.created_by_user_id:
            raise HTTPException(status_code=400, detail="Group creator cannot be removed")
        removed = await remove_member_by_id(db, g, member_id)
        return OkResponse(ok=removed)
    except PermissionError as e:
        raise permission_error(e) from e
    except DomainError as e:
        raise domain_error(e) from e


@router.get("/{group_id}/history", response_model=list[HistoryEntryOut])
async def group_history_route(
    group_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        g = await get_group_for_member(db, group_id, user.id)
        return history_out(g)
    except PermissionError as e:
        raise permission_error(e) from e
    except DomainError as e:
        raise domain_error(e) from e


@router.get("/{group_id}/recommendations", response_model=RecommendationsResponse)
async def get_recommendations_route(
    group_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        g = await get_group_for_member(db, group_id, user.id)
    except PermissionError as e:
        raise permission_error(e) from e
    except DomainError as e:
        raise domain_error(e) from e

    cache = get_last_recommendations(g)
    if cache is None:
        return RecommendationsResponse(recommendations=[], generated_at=None, expires_at=None)
    return RecommendationsResponse(
        recommendations=cache.recommendations,
        generated_at=cache.generated_at,
        expires_at=cache.expires_at,
    )


@router.put("/{group_id}/recommendations", response_model=RecommendationsResponse)
async def save_recommendations_route(
    group_id: UUID,
    payload: SaveRecommendationsRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        g = await get_group_for_member(db, group_id, user.id)
        cache = await save_recommendations(
            db,
            g,
            [r.model_dump() for r in payload.recommendations],
        )
        return RecommendationsResponse(
            recommendations=cache.recommendations,
            generated_at=cache.generated_at,
            expires_at=cache.expires_at,
        )
    except PermissionError as e:
        raise permission_error(e) from e
    except DomainError as e:
        raise domain_error(e) from e
