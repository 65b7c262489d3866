"""
agora.database.models — SQLAlchemy 2.0 Data Models
===================================================

Tables:
- profiles           — One row per account (id owned by the identity provider)
- discussions        — Forum posts
- discussion_tags    — Tag rows per discussion
- replies            — Append-only replies to a discussion
- likes              — user → (discussion XOR reply)
- bounties           — Priced task requests
- bounty_tags        — Tag rows per bounty
- chats              — Direct (2-party) or group threads
- chat_participants  — Membership join table
- messages           — Chat messages and attachments
- follows            — Directed follower → following edges
- user_roles         — Coarse access role per user (upsert)
- custom_roles       — Cosmetic admin-defined badges
- user_custom_roles  — Badge assignments
- user_moderation    — Append-mostly ban/mute log
- admin_log          — Append-only audit trail
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from agora.constants import BountyStatus, MessageType, Role


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Agora ORM models."""


# ---------------------------------------------------------------------------
# Profiles — one row per account
# ---------------------------------------------------------------------------
class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    username: Mapped[str | None] = mapped_column(String(50), unique=True, default=None)
    full_name: Mapped[str | None] = mapped_column(String(100), default=None)
    avatar_url: Mapped[str | None] = mapped_column(String(500), default=None)
    banner_type: Mapped[str | None] = mapped_column(String(20), default=None)
    banner_value: Mapped[str | None] = mapped_column(String(500), default=None)
    status_message: Mapped[str | None] = mapped_column(String(200), default=None)
    profile_alignment: Mapped[str | None] = mapped_column(String(10), default=None)
    font: Mapped[str | None] = mapped_column(String(50), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<Profile id={self.id} username={self.username!r}>"


# ---------------------------------------------------------------------------
# Discussions
# ---------------------------------------------------------------------------
class Discussion(Base):
    __tablename__ = "discussions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    author_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    author: Mapped[Profile] = relationship()
    tags: Mapped[list[DiscussionTag]] = relationship(
        back_populates="discussion", cascade="all, delete-orphan"
    )
    replies: Mapped[list[Reply]] = relationship(
        back_populates="discussion", cascade="all, delete-orphan"
    )
    likes: Mapped[list[Like]] = relationship(
        back_populates="discussion", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_discussions_created_at", "created_at"),
        Index("ix_discussions_author", "author_id"),
    )

    def __repr__(self) -> str:
        return f"<Discussion id={self.id} title={self.title!r}>"


class DiscussionTag(Base):
    __tablename__ = "discussion_tags"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    discussion_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("discussions.id", ondelete="CASCADE"), nullable=False
    )
    tag: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    discussion: Mapped[Discussion] = relationship(back_populates="tags")

    __table_args__ = (
        UniqueConstraint("discussion_id", "tag", name="uq_discussion_tags_pair"),
    )


# ---------------------------------------------------------------------------
# Replies — append-only
# ---------------------------------------------------------------------------
class Reply(Base):
    __tablename__ = "replies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    discussion_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("discussions.id", ondelete="CASCADE"), nullable=False
    )
    author_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    discussion: Mapped[Discussion] = relationship(back_populates="replies")
    author: Mapped[Profile] = relationship()
    likes: Mapped[list[Like]] = relationship(
        back_populates="reply", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_replies_discussion_time", "discussion_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Reply id={self.id} discussion={self.discussion_id}>"


# ---------------------------------------------------------------------------
# Likes — user → discussion XOR reply
# ---------------------------------------------------------------------------
class Like(Base):
    __tablename__ = "likes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    discussion_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("discussions.id", ondelete="CASCADE"), nullable=True
    )
    reply_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("replies.id", ondelete="CASCADE"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    discussion: Mapped[Discussion | None] = relationship(back_populates="likes")
    reply: Mapped[Reply | None] = relationship(back_populates="likes")

    __table_args__ = (
        CheckConstraint(
            "(discussion_id IS NULL) <> (reply_id IS NULL)",
            name="ck_likes_single_target",
        ),
        UniqueConstraint("user_id", "discussion_id", name="uq_likes_user_discussion"),
        UniqueConstraint("user_id", "reply_id", name="uq_likes_user_reply"),
        Index("ix_likes_discussion", "discussion_id"),
        Index("ix_likes_reply", "reply_id"),
    )

    def __repr__(self) -> str:
        target = self.discussion_id or self.reply_id
        return f"<Like user={self.user_id} target={target}>"


# ---------------------------------------------------------------------------
# Bounties
# ---------------------------------------------------------------------------
class Bounty(Base):
    __tablename__ = "bounties"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    author_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BountyStatus.OPEN.value
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    author: Mapped[Profile] = relationship()
    tags: Mapped[list[BountyTag]] = relationship(
        back_populates="bounty", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("price > 0", name="ck_bounties_price_positive"),
        Index("ix_bounties_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Bounty id={self.id} title={self.title!r} status={self.status}>"


class BountyTag(Base):
    __tablename__ = "bounty_tags"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    bounty_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("bounties.id", ondelete="CASCADE"), nullable=False
    )
    tag: Mapped[str] = mapped_column(String(50), nullable=False)

    bounty: Mapped[Bounty] = relationship(back_populates="tags")

    __table_args__ = (
        UniqueConstraint("bounty_id", "tag", name="uq_bounty_tags_pair"),
    )


# ---------------------------------------------------------------------------
# Chats
# ---------------------------------------------------------------------------
class Chat(Base):
    __tablename__ = "chats"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    type: Mapped[str] = mapped_column(String(10), nullable=False)
    name: Mapped[str | None] = mapped_column(String(100), default=None)
    created_by: Mapped[str] = mapped_column(String(36), nullable=False)
    # "lo:hi" participant ids for direct chats; NULL for groups
    direct_key: Mapped[str | None] = mapped_column(String(80), unique=True, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    participants: Mapped[list[ChatParticipant]] = relationship(
        back_populates="chat", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_chats_updated_at", "updated_at"),
    )

    def __repr__(self) -> str:
        return f"<Chat id={self.id} type={self.type} name={self.name!r}>"


class ChatParticipant(Base):
    __tablename__ = "chat_participants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    chat_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    chat: Mapped[Chat] = relationship(back_populates="participants")

    __table_args__ = (
        UniqueConstraint("chat_id", "user_id", name="uq_chat_participants_pair"),
        Index("ix_chat_participants_user", "user_id"),
    )


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    chat_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[str] = mapped_column(String(36), nullable=False)
    content: Mapped[str | None] = mapped_column(Text, default=None)
    message_type: Mapped[str] = mapped_column(
        String(10), nullable=False, default=MessageType.TEXT.value
    )
    file_url: Mapped[str | None] = mapped_column(String(1000), default=None)
    file_name: Mapped[str | None] = mapped_column(String(255), default=None)
    file_size: Mapped[int | None] = mapped_column(BigInteger, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_messages_chat_time", "chat_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Message id={self.id} chat={self.chat_id} type={self.message_type}>"


# ---------------------------------------------------------------------------
# Follows — directed edges
# ---------------------------------------------------------------------------
class Follow(Base):
    __tablename__ = "follows"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    follower_id: Mapped[str] = mapped_column(String(36), nullable=False)
    following_id: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("follower_id", "following_id", name="uq_follows_pair"),
        CheckConstraint("follower_id <> following_id", name="ck_follows_not_self"),
        Index("ix_follows_following", "following_id"),
    )


# ---------------------------------------------------------------------------
# Roles & moderation
# ---------------------------------------------------------------------------
class UserRole(Base):
    __tablename__ = "user_roles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=Role.USER.value)
    assigned_by: Mapped[str | None] = mapped_column(String(36), default=None)
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<UserRole user={self.user_id} role={self.role}>"


class CustomRole(Base):
    __tablename__ = "custom_roles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    color: Mapped[str] = mapped_column(String(7), nullable=False, default="#6366f1")
    description: Mapped[str | None] = mapped_column(Text, default=None)
    created_by: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<CustomRole id={self.id} name={self.name!r}>"


class UserCustomRole(Base):
    __tablename__ = "user_custom_roles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    custom_role_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("custom_roles.id", ondelete="CASCADE"), nullable=False
    )
    assigned_by: Mapped[str] = mapped_column(String(36), nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    custom_role: Mapped[CustomRole] = relationship()

    __table_args__ = (
        UniqueConstraint("user_id", "custom_role_id", name="uq_user_custom_roles_pair"),
    )


class UserModeration(Base):
    """Append-mostly ban/mute log.  Deactivation flips ``is_active``."""
    __tablename__ = "user_moderation"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    moderator_id: Mapped[str] = mapped_column(String(36), nullable=False)
    action_type: Mapped[str] = mapped_column(String(10), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, default=None)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_user_moderation_user_active", "user_id", "is_active"),
    )

    def __repr__(self) -> str:
        return (
            f"<UserModeration id={self.id} user={self.user_id} "
            f"action={self.action_type} active={self.is_active}>"
        )


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[str] = mapped_column(String(36), nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"
