from __future__ import annotations

from datetime import datetime
from uuid import UUID

from app.core import clock
from app.core.clock import as_utc
from app.models.session_vote import SessionVote
from app.models.vote_session import VoteSession
from app.schemas.vote_sessions import MovieResultOut, VoteOut, VoteSessionResponse
from app.services.vote_sessions import get_remaining_time, get_results, get_user_vote, is_session_active


def vote_out(vote: SessionVote) -> VoteOut:
    return VoteOut(
        user_id=vote.user_id,
        user_name=vote.user_name,
        movie_id=vote.movie_id,
        voted_at=as_utc(vote.voted_at),
    )


def vote_session_out(s: VoteSession, user_id: UUID, *, now: datetime | None = None) -> VoteSessionResponse:
    now = now or clock.now_utc()
    mine = get_user_vote(s, user_id)
    return VoteSessionResponse(
        id=s.id,
        group_id=s.group_id,
        group_name=s.group_name,
        created_by_user_id=s.created_by_user_id,
        movie_ids=list(s.movie_ids),
        movie_metadata=list(s.movie_metadata or []),
        duration_minutes=s.duration_minutes,
        start_time=as_utc(s.start_time),
        end_time=as_utc(s.end_time),
        status=s.status,
        is_active=is_session_active(s, now=now),
        remaining_seconds=get_remaining_time(s, now=now),
        total_votes=len(s.votes),
        results=[
            MovieResultOut(
                movie_id=r.movie_id,
                votes=r.votes,
                percentage=r.percentage,
                voters=r.voters,
                movie_details=r.movie_details,
            )
            for r in get_results(s)
        ],
        user_vote=vote_out(mine) if mine is not None else None,
        has_voted=mine is not None,
    )
