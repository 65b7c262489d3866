"""
agora.services.search_service — Global search
===============================================

One query string, two result kinds: discussions (title/body) first, then
users (username/full name).  Matching is case-insensitive substring; LIKE
wildcards typed by the user are matched literally.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from agora.constants import DEFAULT_SEARCH_LIMIT
from agora.database.models import Discussion, Profile

if TYPE_CHECKING:
    from sqlalchemy import Engine


def like_pattern(query: str) -> str:
    """``%query%`` with ``\\``, ``%`` and ``_`` escaped (pair with ``escape="\\\\"``)."""
    escaped = (
        query.strip()
        .replace("\\", "\\\\")
        .replace("%", "\\%")
        .replace("_", "\\_")
    )
    return f"%{escaped}%"


def search(
    engine: Engine, query: str | None, *, limit: int = DEFAULT_SEARCH_LIMIT
) -> list[dict[str, Any]]:
    """Return up to *limit* discussions followed by up to *limit* users.

    Discussion results carry ``title``, ``body``, ``author`` (full name, then
    username, then ``"Anonymous"``), ``author_id`` and ``created_at``; user
    results carry ``username`` and ``full_name``.  Every result has ``type``
    (``"discussion"`` or ``"user"``) and ``id``.  A blank query returns ``[]``.
    """
    if not query or not query.strip():
        return []
    pattern = like_pattern(query)

    with Session(engine) as session:
        discussions = session.execute(
            select(
                Discussion.id,
                Discussion.title,
                Discussion.body,
                Discussion.author_id,
                Discussion.created_at,
                Profile.full_name,
                Profile.username,
            )
            .outerjoin(Profile, Profile.id == Discussion.author_id)
            .where(or_(
                Discussion.title.ilike(pattern, escape="\\"),
                Discussion.body.ilike(pattern, escape="\\"),
            ))
            .order_by(Discussion.created_at.desc())
            .limit(limit)
        ).all()
        users = session.execute(
            select(Profile.id, Profile.username, Profile.full_name)
            .where(or_(
                Profile.username.ilike(pattern, escape="\\"),
                Profile.full_name.ilike(pattern, escape="\\"),
            ))
            .order_by(Profile.username)
            .limit(limit)
        ).all()

    results: list[dict[str, Any]] = [
        {
            "type": "discussion",
            "id": row.id,
            "title": row.title,
            "body": row.body,
            "author": row.full_name or row.username or "Anonymous",
            "author_id": row.author_id,
            "created_at": row.created_at,
        }
        for row in discussions
    ]
    results.extend(
        {"type": "user", "id": row.id, "username": row.username, "full_name": row.full_name}
        for row in users
    )
    return results
