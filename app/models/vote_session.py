from __future__ import annotations

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.clock import now_utc
from app.db.base_class import Base, JSONType

SESSION_STATUSES = ("active", "finished")


class VoteSession(Base):
    __tablename__ = "vote_sessions"

    # ─────────────────────────────────────────────
    # Identity
    # ─────────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    group_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        sa.ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    group_name: Mapped[str] = mapped_column(sa.String(50), nullable=False)

    created_by_user_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        sa.ForeignKey("users.id"),
        nullable=False,
        index=True,
    )

    # ─────────────────────────────────────────────
    # Ballot
    # movie_metadata entries: id, title, year, poster, genre, rating,
    # director, plot, reason, duration, watched_by[{user_id, user_name}]
    # ─────────────────────────────────────────────
    movie_ids: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    movie_metadata: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    # ─────────────────────────────────────────────
    # Timing / lifecycle
    # end_time is written once, at creation
    # ─────────────────────────────────────────────
    duration_minutes: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    start_time: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False, index=True)

    status: Mapped[str] = mapped_column(
        sa.String(20), nullable=False, default="active", server_default="active", index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=now_utc, server_default=sa.func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=now_utc, onupdate=now_utc, server_default=sa.func.now(), nullable=False
    )

    group = relationship("Group")
    votes = relationship(
        "SessionVote",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="SessionVote.created_at",
        lazy="selectin",
    )

    __table_args__ = (
        sa.CheckConstraint("duration_minutes BETWEEN 1 AND 120", name="ck_vote_sessions_duration"),
        sa.CheckConstraint("status IN ('active','finished')", name="ck_vote_sessions_status"),
    )
