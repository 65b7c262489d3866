"""
agora.services.discussion_service — Discussion aggregation and likes
=====================================================================

Discussions are returned fully aggregated: author, tags, like and reply
counts, and whether the viewer liked each one.  Every aggregate is one
grouped query over the whole page, never one query per discussion.

Mutations check existence and ownership explicitly before writing; a miss is
raised as :class:`NotFoundError` / :class:`PermissionDeniedError` and never
reported as success.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from agora.constants import ModerationAction
from agora.database.engine import get_session
from agora.database.models import Discussion, DiscussionTag, Like, Reply
from agora.errors import InvalidInputError, NotFoundError, PermissionDeniedError
from agora.services.profile_service import author_summary, load_profiles
from agora.services.rpc import ensure_not_moderated
from agora.services.tags import normalize_tags, sync_tags

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from agora.session import SessionContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LikeState:
    """Authoritative like state of one discussion or reply after a toggle."""

    target_id: str
    liked: bool
    likes_count: int


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------
def _aggregate(
    session: Session, discussions: list[Discussion], viewer_id: str | None
) -> list[dict[str, Any]]:
    ids = [d.id for d in discussions]
    if not ids:
        return []

    tags: dict[str, list[str]] = defaultdict(list)
    for discussion_id, tag in session.execute(
        select(DiscussionTag.discussion_id, DiscussionTag.tag)
        .where(DiscussionTag.discussion_id.in_(ids))
        .order_by(DiscussionTag.created_at, DiscussionTag.tag)
    ):
        tags[discussion_id].append(tag)

    likes = dict(session.execute(
        select(Like.discussion_id, func.count(Like.id))
        .where(Like.discussion_id.in_(ids))
        .group_by(Like.discussion_id)
    ).all())
    replies = dict(session.execute(
        select(Reply.discussion_id, func.count(Reply.id))
        .where(Reply.discussion_id.in_(ids))
        .group_by(Reply.discussion_id)
    ).all())

    liked: set[str] = set()
    if viewer_id:
        liked = set(session.scalars(
            select(Like.discussion_id).where(
                Like.user_id == viewer_id, Like.discussion_id.in_(ids)
            )
        ))

    profiles = load_profiles(session, {d.author_id for d in discussions})
    return [
        {
            "id": d.id,
            "title": d.title,
            "body": d.body,
            "author_id": d.author_id,
            "author": author_summary(profiles.get(d.author_id)),
            "created_at": d.created_at,
            "updated_at": d.updated_at,
            "tags": tags.get(d.id, []),
            "likes_count": likes.get(d.id, 0),
            "replies_count": replies.get(d.id, 0),
            "user_liked": d.id in liked,
        }
        for d in discussions
    ]


def list_discussions(engine: Engine, ctx: SessionContext) -> list[dict[str, Any]]:
    """Every discussion, newest first, fully aggregated for the viewer."""
    with Session(engine) as session:
        rows = list(session.scalars(
            select(Discussion).order_by(Discussion.created_at.desc())
        ))
        return _aggregate(session, rows, ctx.user_id)


def list_user_discussions(
    engine: Engine, ctx: SessionContext, author_id: str
) -> list[dict[str, Any]]:
    with Session(engine) as session:
        rows = list(session.scalars(
            select(Discussion)
            .where(Discussion.author_id == author_id)
            .order_by(Discussion.created_at.desc())
        ))
        return _aggregate(session, rows, ctx.user_id)


def get_discussion(engine: Engine, ctx: SessionContext, discussion_id: str) -> dict[str, Any]:
    with Session(engine) as session:
        row = session.get(Discussion, discussion_id)
        if row is None:
            raise NotFoundError(f"Discussion {discussion_id} not found")
        return _aggregate(session, [row], ctx.user_id)[0]


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------
def _require_text(value: str | None, field: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise InvalidInputError(f"{field} must not be blank")
    return cleaned


def _owned_discussion(session: Session, discussion_id: str, user_id: str) -> Discussion:
    row = session.get(Discussion, discussion_id)
    if row is None:
        raise NotFoundError(f"Discussion {discussion_id} not found")
    if row.author_id != user_id:
        raise PermissionDeniedError("Only the author can change this discussion")
    return row


def create_discussion(
    engine: Engine,
    ctx: SessionContext,
    title: str,
    body: str,
    tags: list[str] | None = None,
) -> dict[str, Any]:
    """Insert a discussion and its tags in one transaction.

    Raises
    ------
    NotAuthenticatedError
        Anonymous viewer.
    InvalidInputError
        Blank title or body.
    PermissionDeniedError
        The viewer is banned.
    """
    user_id = ctx.require_user()
    title = _require_text(title, "Title")
    body = _require_text(body, "Body")

    with get_session(engine) as session:
        ensure_not_moderated(session, user_id, ModerationAction.BAN)
        discussion = Discussion(author_id=user_id, title=title, body=body)
        discussion.tags = [DiscussionTag(tag=t) for t in normalize_tags(tags)]
        session.add(discussion)
        session.flush()
        logger.info("Discussion %s created by %s", discussion.id, user_id)
        return _aggregate(session, [discussion], user_id)[0]


def update_discussion(
    engine: Engine,
    ctx: SessionContext,
    discussion_id: str,
    *,
    title: str | None = None,
    body: str | None = None,
    tags: list[str] | None = None,
) -> dict[str, Any]:
    """Edit the viewer's own discussion.  ``tags=None`` leaves tags alone."""
    user_id = ctx.require_user()
    with get_session(engine) as session:
        discussion = _owned_discussion(session, discussion_id, user_id)
        if title is not None:
            discussion.title = _require_text(title, "Title")
        if body is not None:
            discussion.body = _require_text(body, "Body")
        if tags is not None:
            sync_tags(discussion, tags, DiscussionTag)
        session.flush()
        return _aggregate(session, [discussion], user_id)[0]


def delete_discussion(engine: Engine, ctx: SessionContext, discussion_id: str) -> None:
    """Delete the viewer's discussion with its tags, replies and likes."""
    user_id = ctx.require_user()
    with get_session(engine) as session:
        discussion = _owned_discussion(session, discussion_id, user_id)
        # Reply likes cascade through Reply.likes; discussion likes through Discussion.likes
        session.delete(discussion)
    logger.info("Discussion %s deleted by %s", discussion_id, user_id)


# ---------------------------------------------------------------------------
# Likes
# ---------------------------------------------------------------------------
def toggle_like_row(
    engine: Engine,
    user_id: str,
    *,
    discussion_id: str | None = None,
    reply_id: str | None = None,
) -> LikeState:
    """Flip the viewer's like on exactly one target, reading state from the store.

    A unique-constraint violation means a concurrent request already
    inserted the like; that race resolves to "liked".
    """
    if (discussion_id is None) == (reply_id is None):
        raise ValueError("Exactly one of discussion_id / reply_id is required")
    if discussion_id is not None:
        model, target_id, column = Discussion, discussion_id, Like.discussion_id
    else:
        model, target_id, column = Reply, reply_id, Like.reply_id

    try:
        with get_session(engine) as session:
            if session.get(model, target_id) is None:
                raise NotFoundError(f"{model.__name__} {target_id} not found")
            existing = session.scalar(
                select(Like).where(Like.user_id == user_id, column == target_id)
            )
            if existing is not None:
                session.delete(existing)
                liked = False
            else:
                session.add(Like(user_id=user_id, discussion_id=discussion_id, reply_id=reply_id))
                session.flush()
                liked = True
    except IntegrityError:
        logger.info("Concurrent like on %s %s resolved as liked", model.__name__, target_id)
        liked = True

    with Session(engine) as session:
        count = session.scalar(
            select(func.count(Like.id)).where(column == target_id)
        ) or 0
    return LikeState(target_id=target_id, liked=liked, likes_count=count)


def toggle_like(engine: Engine, ctx: SessionContext, discussion_id: str) -> LikeState:
    return toggle_like_row(engine, ctx.require_user(), discussion_id=discussion_id)
