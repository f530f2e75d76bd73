from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest
import sqlalchemy as sa

from app.core import clock
from app.db.session import AsyncSessionLocal
from app.models.group import Group
from app.models.session_vote import SessionVote
from app.models.vote_session import VoteSession
from app.services.errors import InvalidSelectionError, SessionEndedError, ValidationError
from app.services.groups import add_member, create_group
from app.services.lifecycle import start_vote_session
from app.services.vote_sessions import (
    build_vote_session,
    cast_vote,
    cleanup_expired,
    find_active_by_group,
    find_by_creator,
    finish_session,
    get_movie_by_id,
    get_remaining_time,
    get_results,
    get_user_vote,
    has_user_voted,
    is_session_active,
    load_session,
)

pytestmark = pytest.mark.anyio

T0 = datetime(2026, 4, 10, 19, 30, tzinfo=timezone.utc)


def _bare_group() -> Group:
    return Group(id=uuid.uuid4(), name="Bare", code="BARE01")


def _vote(user: str, movie_id: int, minute: int = 0) -> SessionVote:
    return SessionVote(
        user_id=uuid.uuid4(),
        user_name=user,
        movie_id=movie_id,
        voted_at=T0 + timedelta(minutes=minute),
        created_at=T0 + timedelta(minutes=minute),
    )


async def _group_with_voters(db, user_factory, n_voters: int):
    owner = await user_factory(display_name="Owner")
    g = await create_group(db, creator=owner, name="Movie club")
    voters = []
    for i in range(n_voters):
        u = await user_factory(display_name=f"Voter{i}")
        await add_member(db, g, user_id=u.id, name=u.display_name)
        voters.append(u)
    return owner, g, voters


# ─────────────────────────────────────────────
# create
# ─────────────────────────────────────────────


@pytest.mark.parametrize("minutes", [1, 2, 30, 90, 119, 120])
def test_end_time_is_start_plus_duration(minutes):
    s = build_vote_session(
        _bare_group(),
        creator_id=uuid.uuid4(),
        movie_ids=[1],
        duration_minutes=minutes,
        now=T0,
    )
    assert s.start_time == T0
    assert s.end_time == T0 + timedelta(minutes=minutes)
    assert s.status == "active"


@pytest.mark.parametrize("minutes", [0, -5, 121, 600])
def test_duration_out_of_range_is_rejected(minutes):
    with pytest.raises(ValidationError):
        build_vote_session(_bare_group(), creator_id=uuid.uuid4(), movie_ids=[1], duration_minutes=minutes)


@pytest.mark.parametrize("movie_ids", [[], [0], [5, -1], [True]])
def test_bad_movie_ids_are_rejected(movie_ids):
    with pytest.raises(ValidationError):
        build_vote_session(_bare_group(), creator_id=uuid.uuid4(), movie_ids=movie_ids, duration_minutes=10)


# ─────────────────────────────────────────────
# derived state
# ─────────────────────────────────────────────


def test_is_active_and_remaining_time_follow_the_clock():
    s = build_vote_session(_bare_group(), creator_id=uuid.uuid4(), movie_ids=[1], duration_minutes=2, now=T0)

    assert is_session_active(s, now=T0)
    assert get_remaining_time(s, now=T0 + timedelta(seconds=30.7)) == 89
    assert not is_session_active(s, now=T0 + timedelta(minutes=2))
    assert get_remaining_time(s, now=T0 + timedelta(minutes=5)) == 0

    s.status = "finished"
    assert not is_session_active(s, now=T0)
    assert get_remaining_time(s, now=T0) == 0


def test_get_movie_by_id_uses_snapshot_or_placeholder():
    s = build_vote_session(
        _bare_group(),
        creator_id=uuid.uuid4(),
        movie_ids=[1, 2],
        movie_metadata=[{"id": 1, "title": "Alien", "poster": "alien.jpg"}],
        duration_minutes=10,
        now=T0,
    )
    assert get_movie_by_id(s, 1)["title"] == "Alien"
    assert get_movie_by_id(s, 2) == {"id": 2, "title": "Movie 2"}


# ─────────────────────────────────────────────
# results
# ─────────────────────────────────────────────


def test_results_skip_watched_and_use_full_denominator():
    s = build_vote_session(
        _bare_group(),
        creator_id=uuid.uuid4(),
        movie_ids=[1, 2, 3],
        movie_metadata=[
            {"id": 1, "title": "One"},
            {"id": 3, "title": "Three", "watched_by": [{"user_id": "u1", "user_name": "Ana"}]},
        ],
        duration_minutes=10,
        now=T0,
    )
    s.votes = [_vote("Ana", 1, 0), _vote("Ben", 2, 1), _vote("Cy", 1, 2), _vote("Dee", 3, 3)]

    results = get_results(s)

    assert [(r.movie_id, r.votes, r.percentage) for r in results] == [(1, 2, 50), (2, 1, 25)]
    assert results[0].voters == ["Ana", "Cy"]
    assert results[0].movie_details["title"] == "One"
    assert results[1].movie_details is None
    assert sum(r.percentage for r in results) == 75


def test_results_ties_keep_movie_list_order_and_round_half_up():
    s = build_vote_session(_bare_group(), creator_id=uuid.uuid4(), movie_ids=[4, 5, 6], duration_minutes=10, now=T0)
    s.votes = [_vote("A", 6), _vote("B", 5), _vote("C", 4), _vote("D", 4), _vote("E", 5), _vote("F", 6), _vote("G", 6), _vote("H", 4)]

    results = get_results(s)

    # 3/8 = 37.5 -> 38, 2/8 = 25
    assert [(r.movie_id, r.votes, r.percentage) for r in results] == [(4, 3, 38), (6, 3, 38), (5, 2, 25)]


def test_results_with_no_votes_are_zero():
    s = build_vote_session(_bare_group(), creator_id=uuid.uuid4(), movie_ids=[7, 8], duration_minutes=10, now=T0)
    s.votes = []
    assert [(r.movie_id, r.votes, r.percentage) for r in get_results(s)] == [(7, 0, 0), (8, 0, 0)]


# ─────────────────────────────────────────────
# cast_vote
# ─────────────────────────────────────────────


async def test_recast_updates_existing_ballot(db_session, user_factory):
    owner, g, (ana, ben) = await _group_with_voters(db_session, user_factory, 2)
    s = await start_vote_session(db_session, group_id=g.id, creator=owner, movie_ids=[10, 20], duration_minutes=5)

    first = await cast_vote(db_session, session_id=s.id, user_id=ana.id, user_name="Ana", movie_id=10)
    assert first.is_update is False
    assert first.vote.movie_id == 10

    second = await cast_vote(db_session, session_id=s.id, user_id=ana.id, user_name="Ana", movie_id=20)
    assert second.is_update is True
    assert second.vote.movie_id == 20

    s = await load_session(db_session, s.id)
    assert len(s.votes) == 1
    assert get_user_vote(s, ana.id).movie_id == 20

    third = await cast_vote(db_session, session_id=s.id, user_id=ben.id, user_name="Ben", movie_id=10)
    assert third.is_update is False
    s = await load_session(db_session, s.id)
    assert len(s.votes) == 2
    assert has_user_voted(s, ben.id)


async def test_vote_for_unknown_movie_is_rejected(db_session, user_factory):
    owner, g, (ana,) = await _group_with_voters(db_session, user_factory, 1)
    s = await start_vote_session(db_session, group_id=g.id, creator=owner, movie_ids=[10, 20], duration_minutes=5)
    sid, ana_id = s.id, ana.id

    with pytest.raises(InvalidSelectionError):
        await cast_vote(db_session, session_id=sid, user_id=ana_id, user_name="Ana", movie_id=30)

    s = await load_session(db_session, sid)
    assert s.votes == []


async def test_invalid_selection_wins_over_ended(db_session, user_factory, monkeypatch):
    owner, g, (ana,) = await _group_with_voters(db_session, user_factory, 1)
    s = await start_vote_session(db_session, group_id=g.id, creator=owner, movie_ids=[10], duration_minutes=5)
    end = clock.as_utc(s.end_time)
    monkeypatch.setattr(clock, "now_utc", lambda: end + timedelta(minutes=1))

    with pytest.raises(InvalidSelectionError):
        await cast_vote(db_session, session_id=s.id, user_id=ana.id, user_name="Ana", movie_id=99)


async def test_vote_at_or_after_end_time_is_rejected_before_sweep(db_session, user_factory, monkeypatch):
    owner, g, (ana,) = await _group_with_voters(db_session, user_factory, 1)
    s = await start_vote_session(db_session, group_id=g.id, creator=owner, movie_ids=[10], duration_minutes=5)
    end = clock.as_utc(s.end_time)
    sid, ana_id = s.id, ana.id

    monkeypatch.setattr(clock, "now_utc", lambda: end)
    with pytest.raises(SessionEndedError):
        await cast_vote(db_session, session_id=sid, user_id=ana_id, user_name="Ana", movie_id=10)

    s = await load_session(db_session, sid)
    # still "active" on disk: nothing swept it yet
    assert s.status == "active"
    assert s.votes == []


async def test_vote_on_finished_session_is_rejected(db_session, user_factory):
    owner, g, (ana,) = await _group_with_voters(db_session, user_factory, 1)
    s = await start_vote_session(db_session, group_id=g.id, creator=owner, movie_ids=[10], duration_minutes=5)

    await finish_session(db_session, s)
    await finish_session(db_session, s)  # idempotent
    assert s.status == "finished"

    with pytest.raises(SessionEndedError):
        await cast_vote(db_session, session_id=s.id, user_id=ana.id, user_name="Ana", movie_id=10)


async def test_concurrent_casts_by_distinct_users_all_persist(db_session, user_factory):
    owner, g, voters = await _group_with_voters(db_session, user_factory, 6)
    s = await start_vote_session(db_session, group_id=g.id, creator=owner, movie_ids=[1, 2, 3], duration_minutes=5)

    async def _cast(i, user):
        async with AsyncSessionLocal() as db:
            return await cast_vote(
                db,
                session_id=s.id,
                user_id=user.id,
                user_name=user.display_name,
                movie_id=(i % 3) + 1,
            )

    results = await asyncio.gather(*(_cast(i, u) for i, u in enumerate(voters)))

    assert all(r.is_update is False for r in results)
    fresh = await load_session(db_session, s.id)
    assert len(fresh.votes) == len(voters)
    assert {v.user_id for v in fresh.votes} == {u.id for u in voters}


async def test_concurrent_casts_by_same_user_collapse_to_one(db_session, user_factory):
    owner, g, (ana,) = await _group_with_voters(db_session, user_factory, 1)
    s = await start_vote_session(db_session, group_id=g.id, creator=owner, movie_ids=[1, 2, 3], duration_minutes=5)

    async def _cast(movie_id):
        async with AsyncSessionLocal() as db:
            return await cast_vote(db, session_id=s.id, user_id=ana.id, user_name="Ana", movie_id=movie_id)

    await asyncio.gather(*(_cast(m) for m in (1, 2, 3, 1)))

    fresh = await load_session(db_session, s.id)
    assert len(fresh.votes) == 1
    assert fresh.votes[0].movie_id in {1, 2, 3}


# ─────────────────────────────────────────────
# sweep & queries
# ─────────────────────────────────────────────


async def test_cleanup_expired_only_flips_expired(db_session, user_factory):
    owner, g, _ = await _group_with_voters(db_session, user_factory, 0)
    other_owner, other, _ = await _group_with_voters(db_session, user_factory, 0)
    old = await start_vote_session(db_session, group_id=g.id, creator=owner, movie_ids=[1], duration_minutes=1)
    fresh = await start_vote_session(db_session, group_id=other.id, creator=other_owner, movie_ids=[1], duration_minutes=60)

    later = clock.as_utc(old.end_time) + timedelta(seconds=1)
    assert await cleanup_expired(db_session, now=later) == 1
    # repeated runs are harmless
    assert await cleanup_expired(db_session, now=later) == 0

    assert (await load_session(db_session, old.id)).status == "finished"
    assert (await load_session(db_session, fresh.id)).status == "active"


async def test_find_active_by_group_and_by_creator(db_session, user_factory):
    owner, g, _ = await _group_with_voters(db_session, user_factory, 0)
    s = await start_vote_session(db_session, group_id=g.id, creator=owner, movie_ids=[1, 2], duration_minutes=10)

    active = await find_active_by_group(db_session, g.id)
    assert [x.id for x in active] == [s.id]
    assert await find_active_by_group(db_session, g.id, now=clock.as_utc(s.end_time)) == []

    mine = await find_by_creator(db_session, owner.id)
    assert [x.id for x in mine] == [s.id]
    assert await find_by_creator(db_session, uuid.uuid4()) == []


async def test_session_rows_are_persisted_with_snapshot(db_session, user_factory):
    owner, g, _ = await _group_with_voters(db_session, user_factory, 0)
    s = await start_vote_session(
        db_session,
        group_id=g.id,
        creator=owner,
        movie_ids=[11, 12],
        movie_metadata=[{"id": 11, "title": "Jaws", "year": 1975}],
        duration_minutes=15,
    )
    row = (await db_session.execute(sa.select(VoteSession).where(VoteSession.id == s.id))).scalar_one()
    assert row.group_name == "Movie club"
    assert row.movie_ids == [11, 12]
    assert row.movie_metadata[0]["title"] == "Jaws"
    assert row.duration_minutes == 15
