#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.core import clock
from app.core.logging_config import LOG_FORMAT
from app.db.session import AsyncSessionLocal
from app.models.group import Group
from app.models.vote_session import VoteSession
from app.services.vote_sessions import cleanup_expired

logger = logging.getLogger("cleanup_expired_sessions")


@dataclass
class CleanupStats:
    expired_found: int = 0
    finished: int = 0
    # groups whose active vote already expired; an admin still has to finish or clear them
    stale_group_ids: list[UUID] = field(default_factory=list)


async def _count_expired(db: AsyncSession, *, now: datetime) -> int:
    q = select(sa.func.count(VoteSession.id)).where(
        VoteSession.status == "active",
        VoteSession.end_time < now,
    )
    return int((await db.execute(q)).scalar_one())


async def _stale_groups(db: AsyncSession, *, now: datetime) -> list[UUID]:
    q = (
        select(Group.id)
        .join(VoteSession, VoteSession.id == Group.active_vote_session_id)
        .where(Group.status == "voting", VoteSession.end_time < now)
        .order_by(Group.id.asc())
    )
    return list((await db.execute(q)).scalars())


async def run_cleanup(
    db: AsyncSession,
    *,
    apply: bool,
    verbose: bool,
    now: datetime | None = None,
) -> CleanupStats:
    now = now or clock.now_utc()
    stats = CleanupStats()

    stats.expired_found = await _count_expired(db, now=now)
    stats.stale_group_ids = await _stale_groups(db, now=now)
    if verbose:
        for group_id in stats.stale_group_ids:
            logger.info("group still voting on an expired session group_id=%s", group_id)

    if apply:
        stats.finished = await cleanup_expired(db, now=now)
    else:
        # End the read transaction and release any snapshot state.
        await db.rollback()

    return stats


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Mark vote sessions whose end time has passed as finished."
    )
    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument(
        "--apply",
        action="store_true",
        help="Persist changes. Without this flag, the script runs in dry-run mode.",
    )
    mode_group.add_argument(
        "--dry-run",
        action="store_true",
        help="Explicitly run in dry-run mode (default behavior).",
    )
    parser.add_argument("--verbose", action="store_true", help="Log row-level details.")
    return parser.parse_args()


def _print_summary(*, apply: bool, stats: CleanupStats) -> None:
    mode = "apply" if apply else "dry-run"
    print("Expired vote session cleanup complete")
    print(f"mode: {mode}")
    print(f"expired_found: {stats.expired_found}")
    print(f"finished: {stats.finished}")
    print(f"stale_groups: {len(stats.stale_group_ids)}")


async def _main_async(args: argparse.Namespace) -> CleanupStats:
    async with AsyncSessionLocal() as db:
        return await run_cleanup(db, apply=args.apply, verbose=args.verbose)


def main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format=LOG_FORMAT,
    )

    stats = asyncio.run(_main_async(args))
    _print_summary(apply=args.apply, stats=stats)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
