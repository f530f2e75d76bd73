"""create movie night tables

Revision ID: 7c1e4a2b9d30
Revises:
Create Date: 2026-10-19 09:12:44.208113

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB


# revision identifiers, used by Alembic.
revision: str = '7c1e4a2b9d30'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("display_name", sa.String(120), nullable=False),
        sa.Column("avatar_url", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "groups",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("code", sa.String(6), nullable=False),
        sa.Column("hero_image", sa.String(500), nullable=True),
        sa.Column("status", sa.String(20), server_default="active", nullable=False),
        sa.Column("active_vote_session_id", sa.UUID(as_uuid=True), nullable=True),
        sa.Column("chosen_movie", JSONB, nullable=True),
        sa.Column("vote_history", JSONB, server_default=sa.text("'[]'::jsonb"), nullable=False),
        sa.Column("last_recommendations", JSONB, server_default=sa.text("'[]'::jsonb"), nullable=False),
        sa.Column("recommendations_generated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("recommendations_expire_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_by_user_id",
            sa.UUID(as_uuid=True),
            sa.ForeignKey("users.id"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("status IN ('active','voting','movie_chosen')", name="ck_groups_status"),
    )
    op.create_index("ix_groups_code", "groups", ["code"], unique=True)
    op.create_index("ix_groups_created_by_user_id", "groups", ["created_by_user_id"])

    op.create_table(
        "group_members",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "group_id",
            sa.UUID(as_uuid=True),
            sa.ForeignKey("groups.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("display_name", sa.String(120), nullable=False),
        sa.Column("avatar_url", sa.String(500), nullable=True),
        sa.Column("role", sa.String(10), server_default="member", nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("group_id", "user_id", name="uq_group_members_group_user"),
        sa.CheckConstraint("role IN ('admin','member')", name="ck_group_members_role"),
    )
    op.create_index("ix_group_members_group_id", "group_members", ["group_id"])
    op.create_index("ix_group_members_user_id", "group_members", ["user_id"])

    op.create_table(
        "vote_sessions",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "group_id",
            sa.UUID(as_uuid=True),
            sa.ForeignKey("groups.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("group_name", sa.String(50), nullable=False),
        sa.Column(
            "created_by_user_id",
            sa.UUID(as_uuid=True),
            sa.ForeignKey("users.id"),
            nullable=False,
        ),
        sa.Column("movie_ids", JSONB, server_default=sa.text("'[]'::jsonb"), nullable=False),
        sa.Column("movie_metadata", JSONB, server_default=sa.text("'[]'::jsonb"), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), server_default="active", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("duration_minutes BETWEEN 1 AND 120", name="ck_vote_sessions_duration"),
        sa.CheckConstraint("status IN ('active','finished')", name="ck_vote_sessions_status"),
    )
    op.create_index("ix_vote_sessions_group_id", "vote_sessions", ["group_id"])
    op.create_index("ix_vote_sessions_created_by_user_id", "vote_sessions", ["created_by_user_id"])
    op.create_index("ix_vote_sessions_end_time", "vote_sessions", ["end_time"])
    op.create_index("ix_vote_sessions_status", "vote_sessions", ["status"])

    op.create_table(
        "session_votes",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "session_id",
            sa.UUID(as_uuid=True),
            sa.ForeignKey("vote_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_name", sa.String(120), nullable=False),
        sa.Column("movie_id", sa.Integer(), nullable=False),
        sa.Column("voted_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("movie_id > 0", name="ck_session_votes_movie_id"),
        sa.UniqueConstraint("session_id", "user_id", name="uq_session_votes_session_user"),
    )
    op.create_index("ix_session_votes_session_id", "session_votes", ["session_id"])
    op.create_index("ix_session_votes_user_id", "session_votes", ["user_id"])
    op.create_index("ix_session_votes_session_movie", "session_votes", ["session_id", "movie_id"])


def downgrade():
    op.drop_index("ix_session_votes_session_movie", table_name="session_votes")
    op.drop_index("ix_session_votes_user_id", table_name="session_votes")
    op.drop_index("ix_session_votes_session_id", table_name="session_votes")
    op.drop_table("session_votes")

    op.drop_index("ix_vote_sessions_status", table_name="vote_sessions")
    op.drop_index("ix_vote_sessions_end_time", table_name="vote_sessions")
    op.drop_index("ix_vote_sessions_created_by_user_id", table_name="vote_sessions")
    op.drop_index("ix_vote_sessions_group_id", table_name="vote_sessions")
    op.drop_table("vote_sessions")

    op.drop_index("ix_group_members_user_id", table_name="group_members")
    op.drop_index("ix_group_members_group_id", table_name="group_members")
    op.drop_table("group_members")

    op.drop_index("ix_groups_created_by_user_id", table_name="groups")
    op.drop_index("ix_groups_code", table_name="groups")
    op.drop_table("groups")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
