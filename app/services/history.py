"""Bounded, most-recent-first vote history kept on each group.

Entries are plain JSON dicts::

    {
        "movie_id": 603,
        "movie_title": "The Matrix",
        "movie_poster": "https://...",
        "vote_percentage": 75,
        "total_votes": 4,
        "voted_at": "2026-01-21T20:15:00+00:00",
        "voters": ["Ana", "Ben", "Cy"],
    }

Helpers never mutate their input; they return new lists so the JSON column
is always reassigned (and therefore flushed).
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

MAX_HISTORY_ENTRIES = 20

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _voted_at_key(entry: Mapping[str, Any]) -> datetime:
    raw = entry.get("voted_at")
    if isinstance(raw, datetime):
        value = raw
    elif isinstance(raw, str):
        try:
            value = datetime.fromisoformat(raw)
        except ValueError:
            return _EPOCH
    else:
        return _EPOCH
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def build_history_entry(
    movie: Mapping[str, Any],
    *,
    voted_at: datetime,
    voters: Iterable[str] = (),
) -> dict[str, Any]:
    return {
        "movie_id": movie.get("id"),
        "movie_title": movie.get("title"),
        "movie_poster": movie.get("poster"),
        "vote_percentage": movie.get("vote_percentage", 0),
        "total_votes": movie.get("total_votes", 0),
        "voted_at": voted_at.isoformat(),
        "voters": list(voters),
    }


def append_history(
    history: Sequence[Mapping[str, Any]] | None,
    entry: Mapping[str, Any],
    *,
    limit: int = MAX_HISTORY_ENTRIES,
) -> list[dict[str, Any]]:
    items = [dict(entry), *(dict(e) for e in (history or []))]
    return items[:limit]


def normalize_history(
    history: Sequence[Mapping[str, Any]] | None,
    *,
    limit: int = MAX_HISTORY_ENTRIES,
) -> list[dict[str, Any]]:
    """Re-sort by ``voted_at`` and truncate, but only when over the limit."""
    items = [dict(e) for e in (history or [])]
    if len(items) <= limit:
        return items
    return sorted(items, key=_voted_at_key, reverse=True)[:limit]


def attach_voters(
    history: Sequence[Mapping[str, Any]] | None,
    voters: Iterable[str],
) -> list[dict[str, Any]]:
    items = [dict(e) for e in (history or [])]
    if not items:
        return items
    items[0]["voters"] = list(voters)
    return items
