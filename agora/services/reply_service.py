"""
agora.services.reply_service — Reply threads
=============================================

Replies are append-only: there is no edit or delete path.  A thread is read
oldest-first with each reply's author and like state resolved in batched
queries.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from agora.constants import ModerationAction
from agora.database.engine import get_session
from agora.database.models import Discussion, Like, Reply
from agora.errors import InvalidInputError, NotFoundError
from agora.services.discussion_service import LikeState, toggle_like_row
from agora.services.profile_service import author_summary, load_profiles
from agora.services.rpc import ensure_not_moderated

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from agora.session import SessionContext

logger = logging.getLogger(__name__)


def _aggregate(session: Session, replies: list[Reply], viewer_id: str | None) -> list[dict[str, Any]]:
    ids = [r.id for r in replies]
    if not ids:
        return []
    likes = dict(session.execute(
        select(Like.reply_id, func.count(Like.id))
        .where(Like.reply_id.in_(ids))
        .group_by(Like.reply_id)
    ).all())
    liked: set[str] = set()
    if viewer_id:
        liked = set(session.scalars(
            select(Like.reply_id).where(Like.user_id == viewer_id, Like.reply_id.in_(ids))
        ))
    profiles = load_profiles(session, {r.author_id for r in replies})
    return [
        {
            "id": r.id,
            "discussion_id": r.discussion_id,
            "author_id": r.author_id,
            "author": author_summary(profiles.get(r.author_id)),
            "content": r.content,
            "created_at": r.created_at,
            "likes_count": likes.get(r.id, 0),
            "user_liked": r.id in liked,
        }
        for r in replies
    ]


def list_replies(engine: Engine, ctx: SessionContext, discussion_id: str) -> list[dict[str, Any]]:
    """Replies of one discussion, oldest first."""
    with Session(engine) as session:
        rows = list(session.scalars(
            select(Reply)
            .where(Reply.discussion_id == discussion_id)
            .order_by(Reply.created_at, Reply.id)
        ))
        return _aggregate(session, rows, ctx.user_id)


def create_reply(
    engine: Engine, ctx: SessionContext, discussion_id: str, content: str
) -> dict[str, Any]:
    """Append a reply.

    Raises
    ------
    InvalidInputError
        Blank content.
    NotFoundError
        The discussion does not exist.
    PermissionDeniedError
        The viewer is banned or muted.
    """
    user_id = ctx.require_user()
    content = (content or "").strip()
    if not content:
        raise InvalidInputError("Reply must not be blank")

    with get_session(engine) as session:
        ensure_not_moderated(session, user_id, ModerationAction.BAN, ModerationAction.MUTE)
        if session.get(Discussion, discussion_id) is None:
            raise NotFoundError(f"Discussion {discussion_id} not found")
        reply = Reply(discussion_id=discussion_id, author_id=user_id, content=content)
        session.add(reply)
        session.flush()
        logger.debug("Reply %s posted to %s", reply.id, discussion_id)
        return _aggregate(session, [reply], user_id)[0]


def toggle_reply_like(engine: Engine, ctx: SessionContext, reply_id: str) -> LikeState:
    return toggle_like_row(engine, ctx.require_user(), reply_id=reply_id)
