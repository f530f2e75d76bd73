"""Vote sessions: creation, ballots, expiry and tallying.

A session accepts ballots while ``status == "active"`` and the clock is
before ``end_time``. That predicate is always derived at the moment of use;
``status`` itself only flips through :func:`finish_session` or the
:func:`cleanup_expired` sweep.

Ballots are one row per ``(session_id, user_id)``. Casting takes a row lock
on the session (Postgres) and writes through ``INSERT ... ON CONFLICT DO
UPDATE`` so a re-cast replaces the voter's ballot instead of adding one, and
ballots from different voters never overwrite each other.
"""
from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import sqlalchemy as sa
from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import clock
from app.models.group import Group
from app.models.session_vote import SessionVote
from app.models.vote_session import VoteSession
from app.services.errors import (
    InvalidSelectionError,
    NotFoundError,
    SessionEndedError,
    StorageError,
    ValidationError,
    storage_boundary,
)

logger = logging.getLogger(__name__)

MIN_DURATION_MINUTES = 1
MAX_DURATION_MINUTES = 120

_DETAIL_FIELDS = ("title", "year", "poster", "genre", "rating", "director", "plot", "reason", "duration")


@dataclass
class MovieResult:
    movie_id: int
    votes: int
    percentage: int
    voters: list[str]
    movie_details: dict[str, Any] | None = None


@dataclass
class CastResult:
    is_update: bool
    vote: SessionVote


def _is_positive_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def validate_session_input(movie_ids: Sequence[object], duration_minutes: object) -> list[int]:
    if not isinstance(duration_minutes, int) or isinstance(duration_minutes, bool):
        raise ValidationError("Duration must be a whole number of minutes")
    if not (MIN_DURATION_MINUTES <= duration_minutes <= MAX_DURATION_MINUTES):
        raise ValidationError(
            f"Duration must be between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES} minutes"
        )
    if not movie_ids:
        raise ValidationError("At least one movie is required")
    if not all(_is_positive_int(m) for m in movie_ids):
        raise ValidationError("Movie IDs must be positive integers")
    return list(movie_ids)


def build_vote_session(
    group: Group,
    *,
    creator_id: uuid.UUID,
    movie_ids: Sequence[int],
    movie_metadata: Sequence[Mapping[str, Any]] = (),
    duration_minutes: int,
    now: datetime | None = None,
) -> VoteSession:
    ids = validate_session_input(movie_ids, duration_minutes)
    start = now or clock.now_utc()
    return VoteSession(
        id=uuid.uuid4(),
        group_id=group.id,
        group_name=group.name,
        movie_ids=ids,
        movie_metadata=[dict(m) for m in movie_metadata],
        duration_minutes=duration_minutes,
        start_time=start,
        end_time=start + timedelta(minutes=duration_minutes),
        status="active",
        created_by_user_id=creator_id,
        votes=[],
    )


async def create_vote_session(
    db: AsyncSession,
    group: Group,
    *,
    creator_id: uuid.UUID,
    movie_ids: Sequence[int],
    movie_metadata: Sequence[Mapping[str, Any]] = (),
    duration_minutes: int,
) -> VoteSession:
    """Add a new session to the unit of work. The caller commits."""
    s = build_vote_session(
        group,
        creator_id=creator_id,
        movie_ids=movie_ids,
        movie_metadata=movie_metadata,
        duration_minutes=duration_minutes,
    )
    db.add(s)
    await db.flush()
    logger.info(
        "vote session created session_id=%s group_id=%s movies=%s duration=%s",
        s.id,
        s.group_id,
        len(s.movie_ids),
        s.duration_minutes,
    )
    return s


@storage_boundary
async def load_session(db: AsyncSession, session_id: uuid.UUID, *, for_update: bool = False) -> VoteSession:
    q = select(VoteSession).where(VoteSession.id == session_id)
    if for_update:
        q = q.with_for_update()
    s = (await db.execute(q.execution_options(populate_existing=True))).scalar_one_or_none()
    if s is None:
        raise NotFoundError("Vote session not found")
    return s


# ─────────────────────────────────────────────
# Derived state
# ─────────────────────────────────────────────


def is_session_active(s: VoteSession, *, now: datetime | None = None) -> bool:
    now = now or clock.now_utc()
    return s.status == "active" and now < clock.as_utc(s.end_time)


def get_remaining_time(s: VoteSession, *, now: datetime | None = None) -> int:
    if s.status != "active":
        return 0
    now = now or clock.now_utc()
    remaining = (clock.as_utc(s.end_time) - now).total_seconds()
    return max(0, math.floor(remaining))


def get_user_vote(s: VoteSession, user_id: uuid.UUID) -> SessionVote | None:
    return next((v for v in s.votes if v.user_id == user_id), None)


def has_user_voted(s: VoteSession, user_id: uuid.UUID) -> bool:
    return get_user_vote(s, user_id) is not None


def get_movie_by_id(s: VoteSession, movie_id: int) -> dict[str, Any]:
    for meta in s.movie_metadata or []:
        if meta.get("id") == movie_id:
            return dict(meta)
    return {"id": movie_id, "title": f"Movie {movie_id}"}


def _percentage(count: int, total: int) -> int:
    if total <= 0:
        return 0
    # half-up, not banker's rounding
    return math.floor(count * 100 / total + 0.5)


def get_results(s: VoteSession) -> list[MovieResult]:
    """Tally per movie, skipping movies someone in the group already watched.

    Percentages use every cast ballot as the denominator, including ballots
    for skipped movies, so the shown percentages can sum to less than 100.
    """
    votes = list(s.votes)
    total = len(votes)
    meta_by_id = {m.get("id"): m for m in (s.movie_metadata or [])}

    results: list[MovieResult] = []
    seen: set[int] = set()
    for movie_id in s.movie_ids:
        if movie_id in seen:
            continue
        seen.add(movie_id)

        meta = meta_by_id.get(movie_id)
        if meta and meta.get("watched_by"):
            continue

        movie_votes = [v for v in votes if v.movie_id == movie_id]
        results.append(
            MovieResult(
                movie_id=movie_id,
                votes=len(movie_votes),
                percentage=_percentage(len(movie_votes), total),
                voters=[v.user_name for v in movie_votes],
                movie_details={k: meta.get(k) for k in _DETAIL_FIELDS} if meta else None,
            )
        )

    # stable: ties keep movie_ids order
    results.sort(key=lambda r: r.votes, reverse=True)
    return results


def mark_finished(s: VoteSession) -> bool:
    if s.status == "finished":
        return False
    s.status = "finished"
    return True


# ─────────────────────────────────────────────
# Writes
# ─────────────────────────────────────────────


def _upsert_for(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise StorageError(f"Ballot upsert is not supported on {dialect}")


@storage_boundary
async def cast_vote(
    db: AsyncSession,
    *,
    session_id: uuid.UUID,
    user_id: uuid.UUID,
    user_name: str,
    movie_id: int,
) -> CastResult:
    try:
        s = await load_session(db, session_id, for_update=True)

        if movie_id not in s.movie_ids:
            raise InvalidSelectionError("Invalid movie selection")

        # re-derived here, inside the lock; never trust an earlier check
        now = clock.now_utc()
        if not is_session_active(s, now=now):
            raise SessionEndedError("Voting session has ended")

        is_update = has_user_voted(s, user_id)

        insert = _upsert_for(db)
        stmt = insert(SessionVote).values(
            id=uuid.uuid4(),
            session_id=s.id,
            user_id=user_id,
            user_name=user_name,
            movie_id=movie_id,
            voted_at=now,
            created_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["session_id", "user_id"],
            set_={"movie_id": stmt.excluded.movie_id, "voted_at": stmt.excluded.voted_at},
        )
        await db.execute(stmt)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    q = (
        select(SessionVote)
        .where(SessionVote.session_id == session_id, SessionVote.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    vote = (await db.execute(q)).scalar_one_or_none()
    if vote is None:
        raise StorageError("Ballot was not persisted")

    if is_update:
        logger.info("vote updated session_id=%s user_id=%s movie_id=%s", session_id, user_id, movie_id)
    else:
        logger.info("vote added session_id=%s user_id=%s movie_id=%s", session_id, user_id, movie_id)
    return CastResult(is_update=is_update, vote=vote)


@storage_boundary
async def finish_session(db: AsyncSession, s: VoteSession) -> VoteSession:
    if mark_finished(s):
        await db.commit()
        logger.info("vote session finished session_id=%s", s.id)
    return s


@storage_boundary
async def cleanup_expired(db: AsyncSession, *, now: datetime | None = None) -> int:
    now = now or clock.now_utc()
    try:
        result = await db.execute(
            sa.update(VoteSession)
            .where(VoteSession.status == "active", VoteSession.end_time < now)
            .values(status="finished", updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    flipped = result.rowcount or 0
    if flipped:
        logger.info("expired vote sessions finished count=%s", flipped)
    return flipped


# ─────────────────────────────────────────────
# Queries
# ─────────────────────────────────────────────


@storage_boundary
async def find_active_by_group(
    db: AsyncSession,
    group_id: uuid.UUID,
    *,
    now: datetime | None = None,
) -> list[VoteSession]:
    now = now or clock.now_utc()
    q = (
        select(VoteSession)
        .where(
            VoteSession.group_id == group_id,
            VoteSession.status == "active",
            VoteSession.end_time > now,
        )
        .order_by(VoteSession.start_time.desc())
    )
    return list((await db.execute(q)).scalars().all())


@storage_boundary
async def find_by_creator(db: AsyncSession, user_id: uuid.UUID) -> list[VoteSession]:
    q = (
        select(VoteSession)
        .where(VoteSession.created_by_user_id == user_id)
        .order_by(VoteSession.created_at.desc())
    )
    return list((await db.execute(q)).scalars().all())
