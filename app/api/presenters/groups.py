from __future__ import annotations

from typing import Any
from uuid import UUID

from app.core.clock import as_utc
from app.models.group import Group
from app.schemas.groups import (
    ChosenMovieOut,
    GroupDetailResponse,
    GroupListItem,
    GroupMemberOut,
    HistoryEntryOut,
)
from app.services.groups import is_admin, member_count


def _chosen_movie_out(raw: Any) -> ChosenMovieOut | None:
    if not isinstance(raw, dict) or raw.get("id") is None:
        return None
    return ChosenMovieOut(
        id=raw["id"],
        title=raw.get("title") or f"Movie {raw['id']}",
        poster=raw.get("poster"),
        vote_percentage=raw.get("vote_percentage") or 0,
        total_votes=raw.get("total_votes") or 0,
    )


def group_list_item(group: Group, user_id: UUID) -> GroupListItem:
    return GroupListItem(
        id=group.id,
        name=group.name,
        code=group.code,
        hero_image=group.hero_image,
        status=group.status,
        created_by_user_id=group.created_by_user_id,
        created_at=as_utc(group.created_at),
        member_count=member_count(group),
        is_admin=is_admin(group, user_id),
    )


def group_detail(group: Group, user_id: UUID) -> GroupDetailResponse:
    return GroupDetailResponse(
        id=group.id,
        name=group.name,
        code=group.code,
        hero_image=group.hero_image,
        status=group.status,
        created_by_user_id=group.created_by_user_id,
        created_at=as_utc(group.created_at),
        active_vote_session_id=group.active_vote_session_id,
        chosen_movie=_chosen_movie_out(group.chosen_movie),
        members=[
            GroupMemberOut(
                id=m.id,
                user_id=m.user_id,
                display_name=m.display_name,
                avatar_url=m.avatar_url,
                role=m.role,
                joined_at=as_utc(m.joined_at),
            )
            for m in group.members
        ],
        is_admin=is_admin(group, user_id),
    )


def history_out(group: Group) -> list[HistoryEntryOut]:
    return [HistoryEntryOut(**entry) for entry in (group.vote_history or [])]
