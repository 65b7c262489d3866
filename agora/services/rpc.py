"""
agora.services.rpc — Scalar server-side procedures
===================================================

Small lookups callable without a full feed: a user's coarse role, their
cosmetic badges, and whether a ban/mute currently applies.  The session-level
helpers (``role_of``, ``active_moderation``, ``ensure_not_moderated``) are
shared by the other services so every write path enforces moderation the
same way.

``get_or_create_direct_chat`` lives in :mod:`agora.services.chat_service`
and is re-exported here so the RPC surface is in one place.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from agora.constants import ModerationAction, Role
from agora.database.models import CustomRole, UserCustomRole, UserModeration, UserRole, utcnow
from agora.errors import InvalidInputError, PermissionDeniedError

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Session-level helpers
# ---------------------------------------------------------------------------
def role_of(session: Session, user_id: str | None) -> Role:
    if not user_id:
        return Role.USER
    value = session.scalar(select(UserRole.role).where(UserRole.user_id == user_id))
    return Role(value) if value else Role.USER


def active_moderation(
    session: Session, user_id: str, action: ModerationAction | str
) -> UserModeration | None:
    """Newest active, unexpired ban/mute row for *user_id*, if any."""
    return session.scalar(
        select(UserModeration)
        .where(
            UserModeration.user_id == user_id,
            UserModeration.action_type == str(action),
            UserModeration.is_active.is_(True),
            or_(UserModeration.expires_at.is_(None), UserModeration.expires_at > utcnow()),
        )
        .order_by(UserModeration.created_at.desc())
        .limit(1)
    )


def ensure_not_moderated(
    session: Session, user_id: str, *actions: ModerationAction
) -> None:
    """Raise :class:`PermissionDeniedError` if any of *actions* applies."""
    for action in actions:
        row = active_moderation(session, user_id, action)
        if row is not None:
            verb = "banned" if action is ModerationAction.BAN else "muted"
            logger.info("Blocked write by %s user %s", verb, user_id)
            raise PermissionDeniedError(f"You are {verb}" + (f": {row.reason}" if row.reason else ""))


# ---------------------------------------------------------------------------
# RPCs
# ---------------------------------------------------------------------------
def get_user_role(engine: Engine, user_id: str) -> str:
    """Return ``"user"``, ``"moderator"`` or ``"admin"``."""
    with Session(engine) as session:
        return str(role_of(session, user_id))


def get_user_custom_role(engine: Engine, user_id: str) -> list[dict]:
    """Badges assigned to *user_id* as ``{"name", "color"}`` dicts."""
    with Session(engine) as session:
        rows = session.execute(
            select(CustomRole.name, CustomRole.color)
            .join(UserCustomRole, UserCustomRole.custom_role_id == CustomRole.id)
            .where(UserCustomRole.user_id == user_id)
            .order_by(UserCustomRole.assigned_at)
        ).all()
    return [{"name": name, "color": color} for name, color in rows]


def is_user_moderated(engine: Engine, user_id: str, action: str) -> bool:
    """True if an active, unexpired *action* (``ban``/``mute``) applies."""
    try:
        action = ModerationAction(action)
    except ValueError as exc:
        raise InvalidInputError(f"Unknown moderation action: {action!r}") from exc
    with Session(engine) as session:
        return active_moderation(session, user_id, action) is not None


def get_or_create_direct_chat(engine: Engine, ctx, other_user_id: str) -> str:
    from agora.services.chat_service import get_or_create_direct_chat as _impl

    return _impl(engine, ctx, other_user_id)
