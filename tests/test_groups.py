from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

import pytest
import sqlalchemy as sa

from app.models.group import Group
from app.models.group_member import GroupMember
from app.models.session_vote import SessionVote
from app.models.vote_session import VoteSession
from app.services import groups as groups_service
from app.services.errors import (
    DuplicateMemberError,
    MemberNotFoundError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from app.services.groups import (
    add_member,
    create_group,
    delete_group,
    find_by_code,
    generate_unique_code,
    get_group_for_member,
    get_last_recommendations,
    get_member,
    is_admin,
    is_member,
    join_by_code,
    leave_group,
    list_user_groups,
    remove_member,
    remove_member_by_id,
    save_recommendations,
    update_member_role,
)
from app.services.lifecycle import start_vote_session
from app.services.vote_sessions import cast_vote

pytestmark = pytest.mark.anyio

CODE_RE = re.compile(r"^[A-Z0-9]{6}$")


def _draws(*codes: str):
    it = iter(codes)
    return lambda: next(it)


async def _count(db, model, *where) -> int:
    q = sa.select(sa.func.count()).select_from(model)
    if where:
        q = q.where(*where)
    return int((await db.execute(q)).scalar_one())


async def test_create_group_adds_creator_as_admin(db_session, user_factory):
    owner = await user_factory(display_name="Ana")

    g = await create_group(db_session, creator=owner, name="  Friday Films  ")

    assert g.name == "Friday Films"
    assert CODE_RE.match(g.code)
    assert g.status == "active"
    assert g.hero_image
    assert [m.user_id for m in g.members] == [owner.id]
    assert g.members[0].role == "admin"
    assert is_admin(g, owner.id)


async def test_create_group_rejects_bad_names(db_session, user_factory):
    owner = await user_factory()
    with pytest.raises(ValidationError):
        await create_group(db_session, creator=owner, name=" x ")
    with pytest.raises(ValidationError):
        await create_group(db_session, creator=owner, name="y" * 51)


async def test_generate_unique_code_retries_until_free(db_session, user_factory):
    owner = await user_factory()
    await create_group(db_session, creator=owner, name="Taken", draw=_draws("AAAAAA"))

    # a taken code and a malformed draw are both skipped
    code = await generate_unique_code(db_session, draw=_draws("AAAAAA", "abc123", "BBBBBB"))
    assert code == "BBBBBB"


async def test_codes_are_distinct_across_groups(db_session, user_factory):
    owner = await user_factory()
    first = await create_group(db_session, creator=owner, name="One", draw=_draws("ZZZZZ1"))
    second = await create_group(db_session, creator=owner, name="Two", draw=_draws("ZZZZZ1", "ZZZZZ2"))
    assert first.code == "ZZZZZ1"
    assert second.code == "ZZZZZ2"


async def test_find_by_code_is_case_insensitive(db_session, user_factory):
    owner = await user_factory()
    g = await create_group(db_session, creator=owner, name="Case", draw=_draws("QWE123"))

    found = await find_by_code(db_session, " qwe123 ")
    assert found is not None and found.id == g.id
    assert await find_by_code(db_session, "NOPE00") is None


async def test_add_member_and_duplicate(db_session, user_factory):
    owner = await user_factory()
    friend = await user_factory(display_name="Ben", avatar_url="https://img/ben.png")
    g = await create_group(db_session, creator=owner, name="Dupes")

    m = await add_member(db_session, g, user_id=friend.id, name=friend.display_name, avatar=friend.avatar_url)
    assert m.role == "member"
    assert m.joined_at is not None
    assert is_member(g, friend.id)
    assert not is_admin(g, friend.id)

    with pytest.raises(DuplicateMemberError):
        await add_member(db_session, g, user_id=friend.id, name="Ben again")


async def test_add_member_rejects_unknown_role(db_session, user_factory):
    owner = await user_factory()
    friend = await user_factory()
    g = await create_group(db_session, creator=owner, name="Roles")
    with pytest.raises(ValidationError):
        await add_member(db_session, g, user_id=friend.id, name="x", role="owner")


async def test_join_by_code(db_session, user_factory):
    owner = await user_factory()
    friend = await user_factory()
    g = await create_group(db_session, creator=owner, name="Joinable", draw=_draws("JOIN01"))

    joined = await join_by_code(db_session, user=friend, code="join01")
    assert joined.id == g.id
    assert is_member(joined, friend.id)

    with pytest.raises(NotFoundError):
        await join_by_code(db_session, user=friend, code="NOPE00")


async def test_remove_member_is_noop_when_absent(db_session, user_factory):
    owner = await user_factory()
    friend = await user_factory()
    stranger = await user_factory()
    g = await create_group(db_session, creator=owner, name="Removals")
    await add_member(db_session, g, user_id=friend.id, name=friend.display_name)

    assert await remove_member(db_session, g, stranger.id) is False
    assert await remove_member(db_session, g, friend.id) is True
    assert not is_member(g, friend.id)
    assert await _count(db_session, GroupMember, GroupMember.group_id == g.id) == 1


async def test_remove_member_by_id(db_session, user_factory):
    owner = await user_factory()
    friend = await user_factory()
    g = await create_group(db_session, creator=owner, name="By id")
    m = await add_member(db_session, g, user_id=friend.id, name=friend.display_name)

    assert await remove_member_by_id(db_session, g, m.id) is True
    assert await remove_member_by_id(db_session, g, m.id) is False
    assert get_member(g, friend.id) is None


async def test_update_member_role(db_session, user_factory):
    owner = await user_factory()
    friend = await user_factory()
    stranger = await user_factory()
    g = await create_group(db_session, creator=owner, name="Promote")
    await add_member(db_session, g, user_id=friend.id, name=friend.display_name)

    m = await update_member_role(db_session, g, friend.id, "admin")
    assert m.role == "admin"
    assert is_admin(g, friend.id)

    with pytest.raises(MemberNotFoundError):
        await update_member_role(db_session, g, stranger.id, "admin")


async def test_creator_stays_admin_after_demotion(db_session, user_factory):
    owner = await user_factory()
    g = await create_group(db_session, creator=owner, name="Creator")
    await update_member_role(db_session, g, owner.id, "member")
    assert is_admin(g, owner.id)


async def test_creator_cannot_leave(db_session, user_factory):
    owner = await user_factory()
    friend = await user_factory()
    g = await create_group(db_session, creator=owner, name="Stay")
    await add_member(db_session, g, user_id=friend.id, name=friend.display_name)

    with pytest.raises(ValidationError):
        await leave_group(db_session, g, owner.id)

    await leave_group(db_session, g, friend.id)
    assert not is_member(g, friend.id)


async def test_non_member_is_forbidden(db_session, user_factory):
    owner = await user_factory()
    stranger = await user_factory()
    g = await create_group(db_session, creator=owner, name="Private")
    with pytest.raises(PermissionError):
        await get_group_for_member(db_session, g.id, stranger.id)


async def test_list_user_groups(db_session, user_factory):
    owner = await user_factory()
    friend = await user_factory()
    g1 = await create_group(db_session, creator=owner, name="Mine")
    g2 = await create_group(db_session, creator=friend, name="Theirs")
    await add_member(db_session, g2, user_id=owner.id, name=owner.display_name)
    await create_group(db_session, creator=friend, name="Not mine")

    ids = {g.id for g in await list_user_groups(db_session, owner.id)}
    assert ids == {g1.id, g2.id}


async def test_delete_group_removes_everything(db_session, user_factory):
    owner = await user_factory()
    friend = await user_factory()
    g = await create_group(db_session, creator=owner, name="Doomed")
    await add_member(db_session, g, user_id=friend.id, name=friend.display_name)
    s = await start_vote_session(db_session, group_id=g.id, creator=owner, movie_ids=[1, 2], duration_minutes=5)
    await cast_vote(db_session, session_id=s.id, user_id=friend.id, user_name=friend.display_name, movie_id=1)
    group_id = g.id

    await delete_group(db_session, g)

    assert await _count(db_session, Group, Group.id == group_id) == 0
    assert await _count(db_session, GroupMember, GroupMember.group_id == group_id) == 0
    assert await _count(db_session, VoteSession, VoteSession.group_id == group_id) == 0
    assert await _count(db_session, SessionVote) == 0
    assert await list_user_groups(db_session, friend.id) == []


async def test_delete_group_failure_keeps_members(db_session, user_factory, monkeypatch):
    owner = await user_factory()
    friend = await user_factory()
    g = await create_group(db_session, creator=owner, name="Survivor")
    await add_member(db_session, g, user_id=friend.id, name=friend.display_name)
    group_id, friend_id = g.id, friend.id
    real_execute = db_session.execute

    async def failing_execute(stmt, *args, **kwargs):
        if isinstance(stmt, sa.Delete) and stmt.table is Group.__table__:
            raise sa.exc.OperationalError("DELETE FROM groups", {}, Exception("disk I/O error"))
        return await real_execute(stmt, *args, **kwargs)

    monkeypatch.setattr(db_session, "execute", failing_execute)
    with pytest.raises(StorageError):
        await delete_group(db_session, g)
    monkeypatch.undo()

    assert await _count(db_session, Group, Group.id == group_id) == 1
    assert await _count(db_session, GroupMember, GroupMember.group_id == group_id) == 2
    assert [x.id for x in await list_user_groups(db_session, friend_id)] == [group_id]


async def test_recommendations_cache_round_trip(db_session, user_factory):
    owner = await user_factory()
    g = await create_group(db_session, creator=owner, name="Recs")
    assert get_last_recommendations(g) is None

    now = datetime(2026, 5, 1, 18, 0, tzinfo=timezone.utc)
    recs = [{"title": "Heat", "year": 1995, "group_compatibility": 8.5}]
    saved = await save_recommendations(db_session, g, recs, now=now)
    assert saved.expires_at == now + timedelta(hours=24)

    cached = get_last_recommendations(g, now=now + timedelta(hours=23))
    assert cached is not None
    assert cached.recommendations == recs

    assert get_last_recommendations(g, now=now + timedelta(hours=25)) is None


async def test_hero_image_falls_back_to_stock_photo(db_session, user_factory):
    owner = await user_factory()
    g = await create_group(db_session, creator=owner, name="Pretty")
    assert any(photo in g.hero_image for photo in groups_service.HERO_IMAGE_IDS)

    custom = await create_group(db_session, creator=owner, name="Custom", hero_image="https://img/x.png")
    assert custom.hero_image == "https://img/x.png"
