"""
agora.services.follow_service — Follow graph
=============================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from agora.database.engine import get_session
from agora.database.models import Follow
from agora.errors import InvalidInputError

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from agora.session import SessionContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FollowState:
    following: bool
    followers_count: int


def _follow_dict(row: Follow) -> dict[str, Any]:
    return {
        "id": row.id,
        "follower_id": row.follower_id,
        "following_id": row.following_id,
        "created_at": row.created_at,
    }


def list_followers(engine: Engine, user_id: str) -> list[dict[str, Any]]:
    """Edges pointing at *user_id*, newest first."""
    with Session(engine) as session:
        rows = session.scalars(
            select(Follow).where(Follow.following_id == user_id).order_by(Follow.created_at.desc())
        ).all()
        return [_follow_dict(r) for r in rows]


def list_following(engine: Engine, user_id: str) -> list[dict[str, Any]]:
    """Edges leaving *user_id*, newest first."""
    with Session(engine) as session:
        rows = session.scalars(
            select(Follow).where(Follow.follower_id == user_id).order_by(Follow.created_at.desc())
        ).all()
        return [_follow_dict(r) for r in rows]


def is_following(engine: Engine, ctx: SessionContext, user_id: str) -> bool:
    """Whether the viewer follows *user_id* (always False for anonymous/self)."""
    if not ctx.user_id or ctx.user_id == user_id:
        return False
    with Session(engine) as session:
        return session.scalar(
            select(Follow.id).where(
                Follow.follower_id == ctx.user_id, Follow.following_id == user_id
            )
        ) is not None


def toggle_follow(engine: Engine, ctx: SessionContext, user_id: str) -> FollowState:
    """Follow or unfollow *user_id*, reading the current edge from the store."""
    viewer = ctx.require_user()
    if viewer == user_id:
        raise InvalidInputError("You cannot follow yourself")

    try:
        with get_session(engine) as session:
            existing = session.scalar(
                select(Follow).where(
                    Follow.follower_id == viewer, Follow.following_id == user_id
                )
            )
            if existing is not None:
                session.delete(existing)
                following = False
            else:
                session.add(Follow(follower_id=viewer, following_id=user_id))
                session.flush()
                following = True
    except IntegrityError:
        logger.info("Concurrent follow of %s by %s resolved as following", user_id, viewer)
        following = True

    with Session(engine) as session:
        count = session.scalar(
            select(func.count(Follow.id)).where(Follow.following_id == user_id)
        ) or 0
    return FollowState(following=following, followers_count=count)
