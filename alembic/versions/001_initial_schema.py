"""Initial schema: users, sessions, interactions and chats.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


user_type = postgresql.ENUM("bot", "real", name="user_type", create_type=False)
interaction_action = postgresql.ENUM(
    "like", "reject", "match", name="interaction_action", create_type=False
)
chat_status = postgresql.ENUM(
    "active", "blocked", "deleted", name="chat_status", create_type=False
)


def upgrade() -> None:
    bind = op.get_bind()
    user_type.create(bind, checkfirst=True)
    interaction_action.create(bind, checkfirst=True)
    chat_status.create(bind, checkfirst=True)

    # ── 1. pb_users ─────────────────────────────────────────────────
    op.create_table(
        "pb_users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(50), nullable=False),
        sa.Column("email", sa.String(100), nullable=False),
        sa.Column("type", user_type, server_default="real", nullable=False),
        sa.Column("avatar", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean, server_default="true", nullable=False),
        sa.Column("total_likes", sa.Integer, server_default="0", nullable=False),
        sa.Column("total_matches", sa.Integer, server_default="0", nullable=False),
        sa.Column("total_rejects", sa.Integer, server_default="0", nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("total_likes >= 0", name="ck_users_total_likes_non_negative"),
        sa.CheckConstraint("total_matches >= 0", name="ck_users_total_matches_non_negative"),
        sa.CheckConstraint("total_rejects >= 0", name="ck_users_total_rejects_non_negative"),
    )
    op.create_index("ix_pb_users_username", "pb_users", ["username"], unique=True)
    op.create_index("ix_pb_users_email", "pb_users", ["email"], unique=True)
    op.create_index("ix_pb_users_type", "pb_users", ["type"])
    op.create_index("ix_pb_users_is_active", "pb_users", ["is_active"])

    # ── 2. pb_user_sessions ─────────────────────────────────────────
    op.create_table(
        "pb_user_sessions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "user_id",
            sa.Integer,
            sa.ForeignKey("pb_users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("session_token", sa.String(255), nullable=False),
        sa.Column(
            "status",
            sa.SmallInteger,
            server_default="1",
            nullable=False,
            comment="1 active / 2 expired",
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_pb_user_sessions_user_id", "pb_user_sessions", ["user_id"])
    op.create_index(
        "ix_pb_user_sessions_session_token",
        "pb_user_sessions",
        ["session_token"],
        unique=True,
    )

    # ── 3. pb_user_interactions ─────────────────────────────────────
    op.create_table(
        "pb_user_interactions",
        sa.Column(
            "actor_id",
            sa.Integer,
            sa.ForeignKey("pb_users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "target_id",
            sa.Integer,
            sa.ForeignKey("pb_users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("action", interaction_action, nullable=False),
        sa.Column("is_mutual", sa.Boolean, server_default="false", nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("actor_id <> target_id", name="ck_interaction_not_self"),
        sa.CheckConstraint(
            "(action = 'match') = is_mutual", name="ck_interaction_mutual_iff_match"
        ),
    )
    op.create_index(
        "ix_pb_user_interactions_target_id", "pb_user_interactions", ["target_id"]
    )

    # ── 4. pb_chats ─────────────────────────────────────────────────
    op.create_table(
        "pb_chats",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "participant_1_id",
            sa.Integer,
            sa.ForeignKey("pb_users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "participant_2_id",
            sa.Integer,
            sa.ForeignKey("pb_users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("last_message_id", sa.Integer, nullable=True),
        sa.Column("last_message_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("unread_count_p1", sa.Integer, server_default="0", nullable=False),
        sa.Column("unread_count_p2", sa.Integer, server_default="0", nullable=False),
        sa.Column("is_pin_p1", sa.Boolean, server_default="false", nullable=False),
        sa.Column("is_pin_p2", sa.Boolean, server_default="false", nullable=False),
        sa.Column("is_block", sa.Boolean, server_default="false", nullable=False),
        sa.Column("chat_status_p1", chat_status, server_default="active", nullable=False),
        sa.Column("chat_status_p2", chat_status, server_default="active", nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "participant_1_id", "participant_2_id", name="uq_chat_participants"
        ),
        sa.CheckConstraint(
            "participant_1_id <> participant_2_id", name="ck_chat_distinct_participants"
        ),
    )
    op.create_index("ix_pb_chats_participant_1_id", "pb_chats", ["participant_1_id"])
    op.create_index("ix_pb_chats_participant_2_id", "pb_chats", ["participant_2_id"])
    op.create_index("ix_pb_chats_last_message_time", "pb_chats", ["last_message_time"])
    op.create_index("ix_pb_chats_chat_status_p1", "pb_chats", ["chat_status_p1"])
    op.create_index("ix_pb_chats_chat_status_p2", "pb_chats", ["chat_status_p2"])


def downgrade() -> None:
    op.drop_table("pb_chats")
    op.drop_table("pb_user_interactions")
    op.drop_table("pb_user_sessions")
    op.drop_table("pb_users")

    bind = op.get_bind()
    chat_status.drop(bind, checkfirst=True)
    interaction_action.drop(bind, checkfirst=True)
    user_type.drop(bind, checkfirst=True)
