"""
agora.services.admin_service — Admin aggregation and audited mutations
=======================================================================

Every staff write follows the pattern:
  1. Begin transaction
  2. Check the actor's role
  3. Read "before" snapshot
  4. Apply change
  5. Write admin_log with before/after JSON
  6. Commit (change capture publishes the row change)

Moderators may moderate; only admins may change roles or manage custom
roles.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from agora.constants import HEX_COLOR_RE, STAFF_ROLES, ModerationAction, Role
from agora.database.engine import get_session
from agora.database.models import (
    AdminLog,
    CustomRole,
    Profile,
    UserCustomRole,
    UserModeration,
    UserRole,
)
from agora.errors import ConflictError, InvalidInputError, NotFoundError, PermissionDeniedError
from agora.services.profile_service import load_profiles
from agora.services.rpc import role_of

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from agora.session import SessionContext

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Generic audit helpers
# ---------------------------------------------------------------------------
def _row_to_dict(obj: Any) -> dict | None:
    """Convert a SQLAlchemy model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key, None)
        if isinstance(val, datetime):
            val = val.isoformat()
        elif isinstance(val, Decimal):
            val = str(val)
        result[col.name] = val
    return result


def _log_admin_action(
    session: Session,
    *,
    actor_id: str,
    action_type: str,
    target_table: str,
    target_id: str | None,
    before: dict | None,
    after: dict | None,
    reason: str | None = None,
) -> None:
    """Insert a row into admin_log within the current transaction."""
    session.add(AdminLog(
        actor_id=actor_id,
        action_type=action_type,
        target_table=target_table,
        target_id=target_id,
        before_snapshot=before,
        after_snapshot=after,
        reason=reason,
    ))


def _require_role(session: Session, ctx: SessionContext, allowed: frozenset[str]) -> str:
    user_id = ctx.require_user()
    role = role_of(session, user_id)
    if role not in allowed:
        logger.warning("%s (%s) denied staff action", user_id, role)
        raise PermissionDeniedError("Insufficient role for this action")
    return user_id


_ADMIN_ONLY: frozenset[str] = frozenset({Role.ADMIN})


# ---------------------------------------------------------------------------
# Overview
# ---------------------------------------------------------------------------
def get_admin_overview(engine: Engine, ctx: SessionContext) -> dict[str, list[dict]]:
    """Users with roles, custom roles and active moderation actions.

    Returns
    -------
    dict
        ``{"users": [...], "custom_roles": [...], "moderation_actions": [...]}``
        where each user carries ``role`` (``"user"`` when unassigned) and each
        moderation action carries the target's ``username``/``full_name``.
    """
    with Session(engine) as session:
        _require_role(session, ctx, STAFF_ROLES)

        roles = dict(session.execute(select(UserRole.user_id, UserRole.role)).all())
        users = [
            {
                "id": p.id,
                "username": p.username,
                "full_name": p.full_name,
                "role": roles.get(p.id, Role.USER.value),
            }
            for p in session.scalars(select(Profile).order_by(Profile.created_at))
        ]

        custom_roles = [
            {
                "id": r.id,
                "name": r.name,
                "description": r.description,
                "color": r.color,
                "created_at": r.created_at,
            }
            for r in session.scalars(
                select(CustomRole).order_by(CustomRole.created_at.desc())
            )
        ]

        actions = list(session.scalars(
            select(UserModeration)
            .where(UserModeration.is_active.is_(True))
            .order_by(UserModeration.created_at.desc())
        ))
        profiles = load_profiles(session, {a.user_id for a in actions})
        moderation = []
        for a in actions:
            profile = profiles.get(a.user_id)
            moderation.append({
                "id": a.id,
                "user_id": a.user_id,
                "moderator_id": a.moderator_id,
                "action_type": a.action_type,
                "reason": a.reason,
                "expires_at": a.expires_at,
                "created_at": a.created_at,
                "is_active": a.is_active,
                "username": profile.username if profile else None,
                "full_name": profile.full_name if profile else None,
            })

    return {"users": users, "custom_roles": custom_roles, "moderation_actions": moderation}


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------
def update_user_role(engine: Engine, ctx: SessionContext, user_id: str, role: str) -> dict:
    """Upsert *user_id*'s coarse role (admin only)."""
    try:
        new_role = Role(role)
    except ValueError as exc:
        raise InvalidInputError(f"Unknown role: {role!r}") from exc

    with get_session(engine) as session:
        actor_id = _require_role(session, ctx, _ADMIN_ONLY)
        row = session.scalar(select(UserRole).where(UserRole.user_id == user_id))
        before = _row_to_dict(row)
        if row is None:
            row = UserRole(user_id=user_id)
            session.add(row)
        row.role = new_role.value
        row.assigned_by = actor_id
        session.flush()
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type="UPDATE" if before else "CREATE",
            target_table="user_roles",
            target_id=user_id,
            before=before,
            after=_row_to_dict(row),
        )
        logger.info("%s set role of %s → %s", actor_id, user_id, new_role)
        return _row_to_dict(row)


# ---------------------------------------------------------------------------
# Moderation
# ---------------------------------------------------------------------------
def moderate_user(
    engine: Engine,
    ctx: SessionContext,
    user_id: str,
    action: str,
    *,
    reason: str | None = None,
    expires_at: datetime | None = None,
) -> dict:
    """Record a new active ban or mute (moderator or admin)."""
    try:
        action_type = ModerationAction(action)
    except ValueError as exc:
        raise InvalidInputError(f"Unknown moderation action: {action!r}") from exc

    with get_session(engine) as session:
        actor_id = _require_role(session, ctx, STAFF_ROLES)
        if user_id == actor_id:
            raise InvalidInputError("You cannot moderate yourself")
        row = UserModeration(
            user_id=user_id,
            moderator_id=actor_id,
            action_type=action_type.value,
            reason=(reason or "").strip() or None,
            expires_at=expires_at,
            is_active=True,
        )
        session.add(row)
        session.flush()
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type="CREATE",
            target_table="user_moderation",
            target_id=row.id,
            before=None,
            after=_row_to_dict(row),
            reason=row.reason,
        )
        logger.info("%s applied %s to %s", actor_id, action_type, user_id)
        return _row_to_dict(row)


def deactivate_moderation_action(engine: Engine, ctx: SessionContext, action_id: str) -> dict:
    """Flip an action to inactive.  Already-inactive rows succeed unchanged.

    There is no reactivation; a new :func:`moderate_user` row is required.
    """
    with get_session(engine) as session:
        actor_id = _require_role(session, ctx, STAFF_ROLES)
        row = session.get(UserModeration, action_id)
        if row is None:
            raise NotFoundError(f"Moderation action {action_id} not found")
        if not row.is_active:
            return _row_to_dict(row)
        before = _row_to_dict(row)
        row.is_active = False
        session.flush()
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type="UPDATE",
            target_table="user_moderation",
            target_id=row.id,
            before=before,
            after=_row_to_dict(row),
        )
        logger.info("%s deactivated moderation action %s", actor_id, action_id)
        return _row_to_dict(row)


# ---------------------------------------------------------------------------
# Custom roles
# ---------------------------------------------------------------------------
def create_custom_role(
    engine: Engine,
    ctx: SessionContext,
    name: str,
    *,
    color: str = "#6366f1",
    description: str | None = None,
) -> dict:
    name = (name or "").strip()
    if not name:
        raise InvalidInputError("Role name must not be blank")
    if not HEX_COLOR_RE.match(color or ""):
        raise InvalidInputError(f"Color must be #rrggbb, got {color!r}")

    try:
        with get_session(engine) as session:
            actor_id = _require_role(session, ctx, _ADMIN_ONLY)
            row = CustomRole(
                name=name,
                color=color,
                description=(description or "").strip() or None,
                created_by=actor_id,
            )
            session.add(row)
            session.flush()
            _log_admin_action(
                session,
                actor_id=actor_id,
                action_type="CREATE",
                target_table="custom_roles",
                target_id=row.id,
                before=None,
                after=_row_to_dict(row),
            )
            return _row_to_dict(row)
    except IntegrityError as exc:
        raise ConflictError(f"Custom role {name!r} already exists") from exc


def assign_custom_role(
    engine: Engine, ctx: SessionContext, user_id: str, custom_role_id: str
) -> dict:
    """Give *user_id* a badge.  Assigning an existing badge is a no-op."""
    with get_session(engine) as session:
        actor_id = _require_role(session, ctx, _ADMIN_ONLY)
        if session.get(CustomRole, custom_role_id) is None:
            raise NotFoundError(f"Custom role {custom_role_id} not found")
        existing = session.scalar(
            select(UserCustomRole).where(
                UserCustomRole.user_id == user_id,
                UserCustomRole.custom_role_id == custom_role_id,
            )
        )
        if existing is not None:
            return _row_to_dict(existing)
        row = UserCustomRole(
            user_id=user_id, custom_role_id=custom_role_id, assigned_by=actor_id
        )
        session.add(row)
        session.flush()
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type="CREATE",
            target_table="user_custom_roles",
            target_id=row.id,
            before=None,
            after=_row_to_dict(row),
        )
        return _row_to_dict(row)


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------
def get_audit_log(
    engine: Engine, ctx: SessionContext, *, page: int = 1, page_size: int = 25
) -> dict[str, Any]:
    """Paginated admin audit log, newest first (admin only)."""
    with Session(engine) as session:
        _require_role(session, ctx, _ADMIN_ONLY)
        total = session.scalar(select(func.count()).select_from(AdminLog)) or 0
        rows = session.scalars(
            select(AdminLog)
            .order_by(AdminLog.timestamp.desc(), AdminLog.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return {
            "total": total,
            "page": page,
            "page_size": page_size,
            "entries": [
                {
                    "id": r.id,
                    "actor_id": r.actor_id,
                    "action_type": r.action_type,
                    "target_table": r.target_table,
                    "target_id": r.target_id,
                    "before_snapshot": r.before_snapshot,
                    "after_snapshot": r.after_snapshot,
                    "reason": r.reason,
                    "timestamp": r.timestamp.isoformat() if r.timestamp else None,
                }
                for r in rows
            ],
        }
