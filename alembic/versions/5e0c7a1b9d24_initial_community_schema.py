"""Initial community schema

Revision ID: 5e0c7a1b9d24
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '5e0c7a1b9d24'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamp(name: str = "created_at") -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def upgrade() -> None:
    """Create profiles, content, chat, follow and moderation tables."""

    # --- profiles ---
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("username", sa.String(50), nullable=True, unique=True),
        sa.Column("full_name", sa.String(100), nullable=True),
        sa.Column("avatar_url", sa.String(500), nullable=True),
        sa.Column("banner_type", sa.String(20), nullable=True),
        sa.Column("banner_value", sa.String(500), nullable=True),
        sa.Column("status_message", sa.String(200), nullable=True),
        sa.Column("profile_alignment", sa.String(10), nullable=True),
        sa.Column("font", sa.String(50), nullable=True),
        _timestamp(),
        _timestamp("updated_at"),
    )

    # --- discussions ---
    op.create_table(
        "discussions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "author_id", sa.String(36),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("body", sa.Text, nullable=False),
        _timestamp(),
        _timestamp("updated_at"),
    )
    op.create_index("ix_discussions_created_at", "discussions", ["created_at"])
    op.create_index("ix_discussions_author", "discussions", ["author_id"])

    op.create_table(
        "discussion_tags",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "discussion_id", sa.String(36),
            sa.ForeignKey("discussions.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("tag", sa.String(50), nullable=False),
        _timestamp(),
        sa.UniqueConstraint("discussion_id", "tag", name="uq_discussion_tags_pair"),
    )

    # --- replies ---
    op.create_table(
        "replies",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "discussion_id", sa.String(36),
            sa.ForeignKey("discussions.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "author_id", sa.String(36),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("content", sa.Text, nullable=False),
        _timestamp(),
    )
    op.create_index(
        "ix_replies_discussion_time", "replies", ["discussion_id", "created_at"],
    )

    # --- likes ---
    op.create_table(
        "likes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "user_id", sa.String(36),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "discussion_id", sa.String(36),
            sa.ForeignKey("discussions.id", ondelete="CASCADE"), nullable=True,
        ),
        sa.Column(
            "reply_id", sa.String(36),
            sa.ForeignKey("replies.id", ondelete="CASCADE"), nullable=True,
        ),
        _timestamp(),
        sa.CheckConstraint(
            "(discussion_id IS NULL) <> (reply_id IS NULL)",
            name="ck_likes_single_target",
        ),
        sa.UniqueConstraint("user_id", "discussion_id", name="uq_likes_user_discussion"),
        sa.UniqueConstraint("user_id", "reply_id", name="uq_likes_user_reply"),
    )
    op.create_index("ix_likes_discussion", "likes", ["discussion_id"])
    op.create_index("ix_likes_reply", "likes", ["reply_id"])

    # --- bounties ---
    op.create_table(
        "bounties",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "author_id", sa.String(36),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("status", sa.String(20), nullable=False, server_default="open"),
        _timestamp(),
        _timestamp("updated_at"),
        sa.CheckConstraint("price > 0", name="ck_bounties_price_positive"),
    )
    op.create_index("ix_bounties_created_at", "bounties", ["created_at"])

    op.create_table(
        "bounty_tags",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "bounty_id", sa.String(36),
            sa.ForeignKey("bounties.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("tag", sa.String(50), nullable=False),
        sa.UniqueConstraint("bounty_id", "tag", name="uq_bounty_tags_pair"),
    )

    # --- chats ---
    op.create_table(
        "chats",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("type", sa.String(10), nullable=False),
        sa.Column("name", sa.String(100), nullable=True),
        sa.Column("created_by", sa.String(36), nullable=False),
        sa.Column("direct_key", sa.String(80), nullable=True, unique=True),
        _timestamp(),
        _timestamp("updated_at"),
    )
    op.create_index("ix_chats_updated_at", "chats", ["updated_at"])

    op.create_table(
        "chat_participants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "chat_id", sa.String(36),
            sa.ForeignKey("chats.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("user_id", sa.String(36), nullable=False),
        _timestamp("joined_at"),
        sa.UniqueConstraint("chat_id", "user_id", name="uq_chat_participants_pair"),
    )
    op.create_index("ix_chat_participants_user", "chat_participants", ["user_id"])

    op.create_table(
        "messages",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "chat_id", sa.String(36),
            sa.ForeignKey("chats.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("sender_id", sa.String(36), nullable=False),
        sa.Column("content", sa.Text, nullable=True),
        sa.Column("message_type", sa.String(10), nullable=False, server_default="text"),
        sa.Column("file_url", sa.String(1000), nullable=True),
        sa.Column("file_name", sa.String(255), nullable=True),
        sa.Column("file_size", sa.BigInteger, nullable=True),
        _timestamp(),
    )
    op.create_index("ix_messages_chat_time", "messages", ["chat_id", "created_at"])

    # --- follows ---
    op.create_table(
        "follows",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("follower_id", sa.String(36), nullable=False),
        sa.Column("following_id", sa.String(36), nullable=False),
        _timestamp(),
        sa.UniqueConstraint("follower_id", "following_id", name="uq_follows_pair"),
        sa.CheckConstraint("follower_id <> following_id", name="ck_follows_not_self"),
    )
    op.create_index("ix_follows_following", "follows", ["following_id"])

    # --- roles & moderation ---
    op.create_table(
        "user_roles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False, unique=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="user"),
        sa.Column("assigned_by", sa.String(36), nullable=True),
        _timestamp("assigned_at"),
    )

    op.create_table(
        "custom_roles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(50), nullable=False, unique=True),
        sa.Column("color", sa.String(7), nullable=False, server_default="#6366f1"),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("created_by", sa.String(36), nullable=False),
        _timestamp(),
    )

    op.create_table(
        "user_custom_roles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column(
            "custom_role_id", sa.String(36),
            sa.ForeignKey("custom_roles.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("assigned_by", sa.String(36), nullable=False),
        _timestamp("assigned_at"),
        sa.UniqueConstraint(
            "user_id", "custom_role_id", name="uq_user_custom_roles_pair",
        ),
    )

    op.create_table(
        "user_moderation",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("moderator_id", sa.String(36), nullable=False),
        sa.Column("action_type", sa.String(10), nullable=False),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        _timestamp(),
    )
    op.create_index(
        "ix_user_moderation_user_active", "user_moderation", ["user_id", "is_active"],
    )

    # --- admin_log ---
    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.String(36), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("before_snapshot", sa.JSON, nullable=True),
        sa.Column("after_snapshot", sa.JSON, nullable=True),
        sa.Column("reason", sa.Text, nullable=True),
        _timestamp("timestamp"),
    )
    op.create_index(
        "ix_admin_log_actor_time", "admin_log", ["actor_id", "timestamp"],
    )
    op.create_index(
        "ix_admin_log_target", "admin_log", ["target_table", "target_id", "timestamp"],
    )


def downgrade() -> None:
    """Drop every table in reverse dependency order."""
    for table in (
        "admin_log",
        "user_moderation",
        "user_custom_roles",
        "custom_roles",
        "user_roles",
        "follows",
        "messages",
        "chat_participants",
        "chats",
        "bounty_tags",
        "bounties",
        "likes",
        "replies",
        "discussion_tags",
        "discussions",
        "profiles",
    ):
        op.drop_table(table)
