from __future__ import annotations

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.core.clock import now_utc
from app.db.base_class import Base, JSONType
from app.services.history import normalize_history

GROUP_STATUSES = ("active", "voting", "movie_chosen")


class Group(Base):
    __tablename__ = "groups"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    name: Mapped[str] = mapped_column(sa.String(50), nullable=False)

    # 6 chars, [A-Z0-9]
    code: Mapped[str] = mapped_column(sa.String(6), nullable=False, unique=True, index=True)

    hero_image: Mapped[str | None] = mapped_column(sa.String(500), nullable=True)

    # ─────────────────────────────────────────────
    # Voting lifecycle
    # active: nothing running, voting: active_vote_session_id set,
    # movie_chosen: chosen_movie set
    # ─────────────────────────────────────────────
    status: Mapped[str] = mapped_column(sa.String(20), nullable=False, default="active", server_default="active")
    active_vote_session_id: Mapped[uuid.UUID | None] = mapped_column(sa.Uuid, nullable=True)
    chosen_movie: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    # ≤20 entries, most recent first
    vote_history: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    # cached output of the external recommender
    last_recommendations: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    recommendations_generated_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    recommendations_expire_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    created_by_user_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, sa.ForeignKey("users.id"), nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=now_utc, server_default=sa.func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=now_utc, onupdate=now_utc, server_default=sa.func.now(), nullable=False
    )

    created_by = relationship("User", foreign_keys=[created_by_user_id])
    members = relationship(
        "GroupMember",
        back_populates="group",
        cascade="all, delete-orphan",
        order_by="GroupMember.joined_at",
        lazy="selectin",
    )

    __table_args__ = (
        sa.CheckConstraint("status IN ('active','voting','movie_chosen')", name="ck_groups_status"),
    )

    @validates("vote_history")
    def _cap_vote_history(self, key: str, value: list | None) -> list:
        return normalize_history(value)
