from __future__ import annotations

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.clock import now_utc
from app.db.base_class import Base


class SessionVote(Base):
    __tablename__ = "session_votes"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    session_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid, sa.ForeignKey("vote_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_name: Mapped[str] = mapped_column(sa.String(120), nullable=False)

    movie_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    # voted_at moves on every re-cast, created_at keeps ballot order
    voted_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=now_utc, server_default=sa.func.now(), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=now_utc, server_default=sa.func.now(), nullable=False
    )

    session = relationship("VoteSession", back_populates="votes")

    __table_args__ = (
        sa.CheckConstraint("movie_id > 0", name="ck_session_votes_movie_id"),
        sa.UniqueConstraint("session_id", "user_id", name="uq_session_votes_session_user"),
        sa.Index("ix_session_votes_session_movie", "session_id", "movie_id"),
    )
