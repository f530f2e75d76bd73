from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class WatchedBy(BaseModel):
    user_id: UUID | str
    user_name: str


class MovieSnapshot(BaseModel):
    """Display data captured when the vote starts; the ballot never looks it up again."""

    model_config = ConfigDict(extra="ignore")

    id: int = Field(gt=0)
    title: str | None = None
    year: int | None = None
    poster: str | None = None
    genre: str | None = None
    rating: str | None = None
    director: str | None = None
    plot: str | None = None
    reason: str | None = None
    duration: str | None = None
    watched_by: list[WatchedBy] = Field(default_factory=list)


class CreateVoteSessionRequest(BaseModel):
    # range and positivity are checked by the service so every caller gets the same errors
    movie_ids: list[int] = Field(default_factory=list)
    duration_minutes: int
    movie_metadata: list[MovieSnapshot] = Field(default_factory=list)


class CastVoteRequest(BaseModel):
    movie_id: int


class VoteOut(BaseModel):
    user_id: UUID
    user_name: str
    movie_id: int
    voted_at: datetime


class CastVoteResponse(BaseModel):
    is_update: bool
    vote: VoteOut


class MovieResultOut(BaseModel):
    movie_id: int
    votes: int
    percentage: int
    voters: list[str]
    movie_details: dict | None = None


class VoteSessionResponse(BaseModel):
    id: UUID
    group_id: UUID
    group_name: str
    created_by_user_id: UUID
    movie_ids: list[int]
    movie_metadata: list[dict]
    duration_minutes: int
    start_time: datetime
    end_time: datetime
    status: str
    is_active: bool
    remaining_seconds: int
    total_votes: int
    results: list[MovieResultOut]
    user_vote: VoteOut | None
    has_voted: bool


class FinishVoteSessionResponse(BaseModel):
    session: VoteSessionResponse
    chosen_movie: dict | None
