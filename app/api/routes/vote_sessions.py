from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from app.api.deps import get_current_user, get_db
from app.api.http_errors import domain_error, permission_error
from app.api.presenters.groups import group_detail
from app.api.presenters.vote_sessions import vote_out, vote_session_out
from app.models.user import User
from app.schemas.groups import GroupDetailResponse
from app.schemas.vote_sessions import (
    CastVoteRequest,
    CastVoteResponse,
    CreateVoteSessionRequest,
    FinishVoteSessionResponse,
    VoteSessionResponse,
)
from app.services.errors import DomainError
from app.services.groups import get_group_for_member
from app.services.lifecycle import abandon_active_vote, finish_and_commit_winner, start_vote_session
from app.services.vote_sessions import cast_vote, find_active_by_group, find_by_creator, load_session

router = APIRouter(tags=["vote-sessions"])


# ─────────────────────────────────────────────
# Group-scoped
# ─────────────────────────────────────────────


@router.post("/groups/{group_id}/vote-sessions", response_model=VoteSessionResponse, status_code=201)
async def start_vote_session_route(
    group_id: UUID,
    payload: CreateVoteSessionRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        s = await start_vote_session(
            db,
            group_id=group_id,
            creator=user,
            movie_ids=payload.movie_ids,
            movie_metadata=[m.model_dump(mode="json") for m in payload.movie_metadata],
            duration_minutes=payload.duration_minutes,
        )
        return vote_session_out(s, user.id)
    except PermissionError as e:
        raise permission_error(e) from e
    except DomainError as e:
        raise domain_error(e) from e


@router.get("/groups/{group_id}/vote-sessions/active", response_model=VoteSessionResponse | None)
async def active_vote_session_route(
    group_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        await get_group_for_member(db, group_id, user.id)
        sessions = await find_active_by_group(db, group_id)
    except PermissionError as e:
        raise permission_error(e) from e
    except DomainError as e:
        raise domain_error(e) from e

    if not sessions:
        return None
    return vote_session_out(sessions[0], user.id)


@router.post("/groups/{group_id}/clear-vote", response_model=GroupDetailResponse)
async def clear_vote_route(
    group_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        g = await abandon_active_vote(db, group_id=group_id, user_id=user.id)
        return group_detail(g, user.id)
    except PermissionError as e:
        raise permission_error(e) from e
    except DomainError as e:
        raise domain_error(e) from e


# ─────────────────────────────────────────────
# Session-scoped
# ─────────────────────────────────────────────


@router.get("/vote-sessions/mine", response_model=list[VoteSessionResponse])
async def my_vote_sessions_route(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        sessions = await find_by_creator(db, user.id)
    except DomainError as e:
        raise domain_error(e) from e
    return [vote_session_out(s, user.id) for s in sessions]


@router.get("/vote-sessions/{session_id}", response_model=VoteSessionResponse)
async def get_vote_session_route(
    session_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        s = await load_session(db, session_id)
        await get_group_for_member(db, s.group_id, user.id)
        return vote_session_out(s, user.id)
    except PermissionError as e:
        raise permission_error(e) from e
    except DomainError as e:
        raise domain_error(e) from e


@router.post("/vote-sessions/{session_id}/votes", response_model=CastVoteResponse)
async def cast_vote_route(
    session_id: UUID,
    payload: CastVoteRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        s = await load_session(db, session_id)
        await get_group_for_member(db, s.group_id, user.id)
        result = await cast_vote(
            db,
            session_id=session_id,
            user_id=user.id,
            user_name=user.display_name,
            movie_id=payload.movie_id,
        )
        return CastVoteResponse(is_update=result.is_update, vote=vote_out(result.vote))
    except PermissionError as e:
        raise permission_error(e) from e
    except DomainError as e:
        raise domain_error(e) from e


@router.post("/vote-sessions/{session_id}/finish", response_model=FinishVoteSessionResponse)
async def finish_vote_session_route(
    session_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        outcome = await finish_and_commit_winner(db, session_id=session_id, user_id=user.id)
        return FinishVoteSessionResponse(
            session=vote_session_out(outcome.session, user.id),
            chosen_movie=outcome.chosen_movie,
        )
    except PermissionError as e:
        raise permission_error(e) from e
    except DomainError as e:
        raise domain_error(e) from e
