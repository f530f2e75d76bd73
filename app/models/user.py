from __future__ import annotations

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.clock import now_utc
from app.db.base_class import Base


class User(Base):
    """Local mirror of an identity-provider account; ``id`` is the token subject."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    email: Mapped[str | None] = mapped_column(sa.String(320), unique=True, index=True, nullable=True)
    display_name: Mapped[str] = mapped_column(sa.String(120), nullable=False)

    avatar_url: Mapped[str | None] = mapped_column(sa.String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=now_utc, server_default=sa.func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=now_utc, onupdate=now_utc, server_default=sa.func.now(), nullable=False
    )

    # joined groups
    group_memberships = relationship("GroupMember", back_populates="user", cascade="all, delete-orphan")
