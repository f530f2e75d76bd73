from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import clock
from app.models.group import Group
from app.models.user import User
from app.models.vote_session import VoteSession
from app.services.errors import ConflictError, NotFoundError, storage_boundary
from app.services.groups import get_group, is_admin
from app.services.history import append_history, attach_voters, build_history_entry
from app.services.vote_sessions import (
    MovieResult,
    create_vote_session,
    get_movie_by_id,
    get_results,
    load_session,
    mark_finished,
    validate_session_input,
)

logger = logging.getLogger(__name__)


@dataclass
class FinishOutcome:
    session: VoteSession
    results: list[MovieResult] = field(default_factory=list)
    chosen_movie: dict[str, Any] | None = None


# ─────────────────────────────────────────────
# Group status transitions
# These only touch the loaded Group; callers own the transaction.
# ─────────────────────────────────────────────


def start_voting(group: Group, session_id: uuid.UUID) -> None:
    if group.status == "voting":
        raise ConflictError("A vote is already in progress for this group")
    group.status = "voting"
    group.active_vote_session_id = session_id
    group.chosen_movie = None


def commit_chosen_movie(group: Group, movie: Mapping[str, Any], *, now: datetime | None = None) -> None:
    now = now or clock.now_utc()
    group.chosen_movie = dict(movie)
    group.status = "movie_chosen"
    group.active_vote_session_id = None
    group.vote_history = append_history(group.vote_history, build_history_entry(movie, voted_at=now))


def clear_active_vote(group: Group) -> None:
    group.status = "active"
    group.active_vote_session_id = None
    group.chosen_movie = None


def chosen_movie_from_result(s: VoteSession, result: MovieResult) -> dict[str, Any]:
    meta = get_movie_by_id(s, result.movie_id)
    return {
        "id": result.movie_id,
        "title": meta.get("title") or f"Movie {result.movie_id}",
        "poster": meta.get("poster") or "",
        "vote_percentage": result.percentage,
        "total_votes": len(s.votes),
    }


# ─────────────────────────────────────────────
# Orchestration
# ─────────────────────────────────────────────


@storage_boundary
async def start_vote_session(
    db: AsyncSession,
    *,
    group_id: uuid.UUID,
    creator: User,
    movie_ids: Sequence[int],
    movie_metadata: Sequence[Mapping[str, Any]] = (),
    duration_minutes: int,
) -> VoteSession:
    # reject bad input before touching any row
    validate_session_input(movie_ids, duration_minutes)

    try:
        group = await get_group(db, group_id, for_update=True)
        if not is_admin(group, creator.id):
            raise PermissionError("Only group admins can start a vote")
        if group.status == "voting":
            raise ConflictError("A vote is already in progress for this group")

        s = await create_vote_session(
            db,
            group,
            creator_id=creator.id,
            movie_ids=movie_ids,
            movie_metadata=movie_metadata,
            duration_minutes=duration_minutes,
        )
        start_voting(group, s.id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    return s


@storage_boundary
async def finish_and_commit_winner(
    db: AsyncSession,
    *,
    session_id: uuid.UUID,
    user_id: uuid.UUID,
) -> FinishOutcome:
    try:
        # lock order is group then session, same as abandon_active_vote
        group_id = await db.scalar(select(VoteSession.group_id).where(VoteSession.id == session_id))
        if group_id is None:
            raise NotFoundError("Vote session not found")
        group = await get_group(db, group_id, for_update=True)
        s = await load_session(db, session_id, for_update=True)
        if not (is_admin(group, user_id) or s.created_by_user_id == user_id):
            raise PermissionError("Only group admins or the vote creator can finish a vote")

        mark_finished(s)
        results = get_results(s)

        chosen: dict[str, Any] | None = None
        # a superseded session is closed but never touches the group again
        if group.active_vote_session_id == s.id:
            winner = results[0] if results and results[0].votes > 0 else None
            if winner is None:
                clear_active_vote(group)
            else:
                chosen = chosen_movie_from_result(s, winner)
                commit_chosen_movie(group, chosen)
                group.vote_history = attach_voters(group.vote_history, winner.voters)

        await db.commit()
    except Exception:
        await db.rollback()
        raise

    if chosen is not None:
        logger.info(
            "movie chosen group_id=%s session_id=%s movie_id=%s pct=%s",
            group.id,
            s.id,
            chosen["id"],
            chosen["vote_percentage"],
        )
    else:
        logger.info("vote closed without a winner group_id=%s session_id=%s", group.id, s.id)
    return FinishOutcome(session=s, results=results, chosen_movie=chosen)


@storage_boundary
async def abandon_active_vote(db: AsyncSession, *, group_id: uuid.UUID, user_id: uuid.UUID) -> Group:
    try:
        group = await get_group(db, group_id, for_update=True)
        if not is_admin(group, user_id):
            raise PermissionError("Only group admins can clear the vote")

        if group.active_vote_session_id is not None:
            s = await db.get(VoteSession, group.active_vote_session_id, with_for_update=True)
            if s is not None:
                mark_finished(s)

        clear_active_vote(group)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("active vote cleared group_id=%s", group.id)
    return group
