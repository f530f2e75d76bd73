from __future__ import annotations

from datetime import datetime
from pydantic import AliasGenerator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from uuid import UUID
from typing import List, Literal


class CreateGroupRequest(BaseModel):
    name: str = Field(min_length=2, max_length=50)
    hero_image: str | None = Field(default=None, max_length=500)


class JoinGroupRequest(BaseModel):
    code: str = Field(min_length=6, max_length=6)


class GroupMemberOut(BaseModel):
    id: UUID
    user_id: UUID
    display_name: str
    avatar_url: str | None
    role: str
    joined_at: datetime


class ChosenMovieOut(BaseModel):
    id: int
    title: str
    poster: str | None = None
    vote_percentage: int = 0
    total_votes: int = 0


class GroupListItem(BaseModel):
    id: UUID
    name: str
    code: str
    hero_image: str | None
    status: str
    created_by_user_id: UUID
    created_at: datetime
    member_count: int
    is_admin: bool


class GroupDetailResponse(BaseModel):
    id: UUID
    name: str
    code: str
    hero_image: str | None
    status: str
    created_by_user_id: UUID
    created_at: datetime
    active_vote_session_id: UUID | None
    chosen_movie: ChosenMovieOut | None
    members: List[GroupMemberOut]
    is_admin: bool


class UpdateMemberRoleRequest(BaseModel):
    role: Literal["admin", "member"]


class HistoryEntryOut(BaseModel):
    movie_id: int | None
    movie_title: str | None
    movie_poster: str | None = None
    vote_percentage: int = 0
    total_votes: int = 0
    voted_at: datetime
    voters: List[str] = Field(default_factory=list)


class WatchLinks(BaseModel):
    """Where to watch, keyed by provider. Empty string means no link."""

    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        alias_generator=AliasGenerator(validation_alias=to_camel),
    )

    imdb: str = ""
    justwatch: str = ""
    netflix: str = ""
    amazon_prime: str = ""
    hulu: str = ""
    disney_plus: str = ""
    hbo_max: str = ""
    apple_tv: str = Field(default="", validation_alias="appleTV")
    google_play: str = ""
    vudu: str = ""
    google: str = ""
    youtube: str = ""


class MovieRecommendation(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    year: int | None = None
    genre: str | None = None
    director: str | None = None
    plot: str | None = None
    # free-form: "8.5/10", "PG-13", ...
    rating: str | None = None
    duration: str | None = None
    reason: str | None = None
    group_compatibility: float | None = Field(default=None, ge=0, le=10)
    watch_links: WatchLinks = Field(default_factory=WatchLinks)


class SaveRecommendationsRequest(BaseModel):
    recommendations: List[MovieRecommendation] = Field(min_length=1, max_length=20)


class RecommendationsResponse(BaseModel):
    recommendations: List[MovieRecommendation]
    generated_at: datetime | None
    expires_at: datetime | None


class OkResponse(BaseModel):
    ok: bool
