from __future__ import annotations

import logging
import random
import secrets
import string
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import clock
from app.core.config import settings
from app.models.group import Group
from app.models.group_member import MEMBER_ROLES, GroupMember
from app.models.session_vote import SessionVote
from app.models.user import User
from app.models.vote_session import VoteSession
from app.services.errors import (
    DuplicateMemberError,
    MemberNotFoundError,
    NotFoundError,
    StorageError,
    ValidationError,
    storage_boundary,
)

logger = logging.getLogger(__name__)

CODE_LENGTH = 6
CODE_ALPHABET = string.ascii_uppercase + string.digits

NAME_MIN_LEN = 2
NAME_MAX_LEN = 50

_CODE_INSERT_ATTEMPTS = 3

HERO_IMAGE_IDS = (
    "1489599003-24K",
    "1574267432553-4b4628081c31",
    "1446776877081-d282a0f896e2",
    "1478720568477-b2709362040e",
)


@dataclass
class RecommendationsCache:
    recommendations: list[dict[str, Any]]
    generated_at: datetime | None
    expires_at: datetime | None


def _random_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def random_hero_image() -> str:
    photo_id = random.choice(HERO_IMAGE_IDS)
    return f"https://images.unsplash.com/photo-{photo_id}?ixlib=rb-4.0.3&auto=format&fit=crop&w=800&q=60"


def _clean_name(name: str) -> str:
    cleaned = (name or "").strip()
    if not (NAME_MIN_LEN <= len(cleaned) <= NAME_MAX_LEN):
        raise ValidationError(f"Group name must be between {NAME_MIN_LEN} and {NAME_MAX_LEN} characters")
    return cleaned


def _check_role(role: str) -> None:
    if role not in MEMBER_ROLES:
        raise ValidationError(f"Role must be one of: {', '.join(MEMBER_ROLES)}")


async def _code_exists(db: AsyncSession, code: str) -> bool:
    q = sa.select(Group.id).where(Group.code == code)
    return (await db.execute(q)).scalar_one_or_none() is not None


async def generate_unique_code(db: AsyncSession, *, draw: Callable[[], str] = _random_code) -> str:
    # 36^6 codes; collisions are rare but possible, so keep drawing
    while True:
        code = draw()
        if len(code) != CODE_LENGTH or any(ch not in CODE_ALPHABET for ch in code):
            continue
        if not await _code_exists(db, code):
            return code
        logger.debug("join code collision code=%s", code)


# ─────────────────────────────────────────────
# Lookups
# ─────────────────────────────────────────────


@storage_boundary
async def get_group(db: AsyncSession, group_id: UUID, *, for_update: bool = False) -> Group:
    q = sa.select(Group).where(Group.id == group_id)
    if for_update:
        q = q.with_for_update()
    g = (await db.execute(q.execution_options(populate_existing=True))).scalar_one_or_none()
    if g is None:
        raise NotFoundError("Group not found")
    return g


async def get_group_for_member(db: AsyncSession, group_id: UUID, user_id: UUID, *, for_update: bool = False) -> Group:
    g = await get_group(db, group_id, for_update=for_update)
    if not is_member(g, user_id):
        raise PermissionError("Not a member of this group")
    return g


async def get_group_for_admin(db: AsyncSession, group_id: UUID, user_id: UUID, *, for_update: bool = False) -> Group:
    g = await get_group(db, group_id, for_update=for_update)
    if not is_admin(g, user_id):
        raise PermissionError("Only group admins can do this")
    return g


@storage_boundary
async def find_by_code(db: AsyncSession, code: str) -> Group | None:
    q = sa.select(Group).where(Group.code == code.strip().upper())
    return (await db.execute(q)).scalar_one_or_none()


@storage_boundary
async def list_user_groups(db: AsyncSession, user_id: UUID) -> list[Group]:
    q = (
        sa.select(Group)
        .join(GroupMember, GroupMember.group_id == Group.id)
        .where(GroupMember.user_id == user_id)
        .order_by(Group.created_at.desc())
    )
    return list((await db.execute(q)).scalars().all())


def get_member(group: Group, user_id: UUID) -> GroupMember | None:
    return next((m for m in group.members if m.user_id == user_id), None)


def is_member(group: Group, user_id: UUID) -> bool:
    return get_member(group, user_id) is not None


def is_admin(group: Group, user_id: UUID) -> bool:
    if group.created_by_user_id == user_id:
        return True
    member = get_member(group, user_id)
    return member is not None and member.role == "admin"


# ─────────────────────────────────────────────
# Mutations
# ─────────────────────────────────────────────


@storage_boundary
async def create_group(
    db: AsyncSession,
    *,
    creator: User,
    name: str,
    hero_image: str | None = None,
    draw: Callable[[], str] = _random_code,
) -> Group:
    cleaned = _clean_name(name)
    # read once; a rollback below expires the loaded user
    creator_id, creator_name, creator_avatar = creator.id, creator.display_name, creator.avatar_url

    for attempt in range(_CODE_INSERT_ATTEMPTS):
        code = await generate_unique_code(db, draw=draw)
        group = Group(
            name=cleaned,
            code=code,
            hero_image=hero_image or random_hero_image(),
            status="active",
            vote_history=[],
            last_recommendations=[],
            created_by_user_id=creator_id,
        )
        # creator is an implicit admin, but also listed as one
        group.members.append(
            GroupMember(
                user_id=creator_id,
                display_name=creator_name,
                avatar_url=creator_avatar,
                role="admin",
                joined_at=clock.now_utc(),
            )
        )
        db.add(group)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            if not await _code_exists(db, code):
                raise
            logger.warning("join code taken between check and insert code=%s attempt=%s", code, attempt + 1)
            continue

        logger.info("group created group_id=%s code=%s creator=%s", group.id, group.code, creator_id)
        return group

    raise StorageError("Failed to allocate a unique group code")


@storage_boundary
async def add_member(
    db: AsyncSession,
    group: Group,
    *,
    user_id: UUID,
    name: str,
    avatar: str | None = None,
    role: str = "member",
) -> GroupMember:
    _check_role(role)
    if is_member(group, user_id):
        raise DuplicateMemberError("Member already in group")

    member = GroupMember(
        user_id=user_id,
        display_name=name,
        avatar_url=avatar,
        role=role,
        joined_at=clock.now_utc(),
    )
    group.members.append(member)
    try:
        await db.commit()
    except IntegrityError as exc:
        # a concurrent join for the same user won the unique constraint
        await db.rollback()
        raise DuplicateMemberError("Member already in group") from exc
    return member


async def join_by_code(db: AsyncSession, *, user: User, code: str) -> Group:
    group = await find_by_code(db, code)
    if group is None:
        raise NotFoundError("Invalid group code")
    await add_member(db, group, user_id=user.id, name=user.display_name, avatar=user.avatar_url)
    return group


@storage_boundary
async def remove_member(db: AsyncSession, group: Group, user_id: UUID) -> bool:
    member = get_member(group, user_id)
    if member is None:
        return False
    group.members.remove(member)
    await db.commit()
    return True


@storage_boundary
async def remove_member_by_id(db: AsyncSession, group: Group, member_id: UUID) -> bool:
    member = next((m for m in group.members if m.id == member_id), None)
    if member is None:
        return False
    group.members.remove(member)
    await db.commit()
    return True


@storage_boundary
async def update_member_role(db: AsyncSession, group: Group, user_id: UUID, role: str) -> GroupMember:
    _check_role(role)
    member = get_member(group, user_id)
    if member is None:
        raise MemberNotFoundError("Member not found")
    member.role = role
    await db.commit()
    return member


async def leave_group(db: AsyncSession, group: Group, user_id: UUID) -> None:
    if group.created_by_user_id == user_id:
        raise ValidationError("Group creator cannot leave their own group")
    if not is_member(group, user_id):
        raise PermissionError("Not a member of this group")
    await remove_member(db, group, user_id)


@storage_boundary
async def delete_group(db: AsyncSession, group: Group) -> None:
    group_id = group.id
    session_ids = sa.select(VoteSession.id).where(VoteSession.group_id == group_id)
    try:
        # drop the group from every member's joined groups first, then the group itself,
        # all in one transaction
        await db.execute(
            sa.delete(GroupMember)
            .where(GroupMember.group_id == group_id)
            .execution_options(synchronize_session=False)
        )
        await db.execute(
            sa.delete(SessionVote)
            .where(SessionVote.session_id.in_(session_ids))
            .execution_options(synchronize_session=False)
        )
        await db.execute(
            sa.delete(VoteSession)
            .where(VoteSession.group_id == group_id)
            .execution_options(synchronize_session=False)
        )
        await db.execute(
            sa.delete(Group).where(Group.id == group_id).execution_options(synchronize_session=False)
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    db.expunge(group)
    logger.info("group deleted group_id=%s", group_id)


# ─────────────────────────────────────────────
# Recommendations cache
# ─────────────────────────────────────────────


@storage_boundary
async def save_recommendations(
    db: AsyncSession,
    group: Group,
    recommendations: Sequence[Mapping[str, Any]],
    *,
    now: datetime | None = None,
) -> RecommendationsCache:
    now = now or clock.now_utc()
    group.last_recommendations = [dict(r) for r in recommendations]
    group.recommendations_generated_at = now
    group.recommendations_expire_at = now + timedelta(hours=settings.recommendations_ttl_hours)
    await db.commit()
    return RecommendationsCache(
        recommendations=group.last_recommendations,
        generated_at=group.recommendations_generated_at,
        expires_at=group.recommendations_expire_at,
    )


def get_last_recommendations(group: Group, *, now: datetime | None = None) -> RecommendationsCache | None:
    if not group.last_recommendations:
        return None

    now = now or clock.now_utc()
    expires_at = clock.as_utc(group.recommendations_expire_at)
    if expires_at is not None and now > expires_at:
        return None

    return RecommendationsCache(
        recommendations=list(group.last_recommendations),
        generated_at=clock.as_utc(group.recommendations_generated_at),
        expires_at=expires_at,
    )


def member_count(group: Group) -> int:
    return len(group.members)


