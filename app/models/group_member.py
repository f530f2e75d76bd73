from __future__ import annotations

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.clock import now_utc
from app.db.base_class import Base

MEMBER_ROLES = ("admin", "member")


class GroupMember(Base):
    __tablename__ = "group_members"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    group_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid, sa.ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # denormalized at join time
    display_name: Mapped[str] = mapped_column(sa.String(120), nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(sa.String(500), nullable=True)

    role: Mapped[str] = mapped_column(sa.String(10), nullable=False, default="member", server_default="member")

    joined_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=now_utc, server_default=sa.func.now(), nullable=False
    )

    __table_args__ = (
        sa.UniqueConstraint("group_id", "user_id", name="uq_group_members_group_user"),
        sa.CheckConstraint("role IN ('admin','member')", name="ck_group_members_role"),
    )

    group = relationship("Group", back_populates="members")
    user = relationship("User", back_populates="group_memberships")
