"""
agora.services.profile_service — Profiles
==========================================

One :class:`Profile` per account, created on first sign-in and edited only by
its owner.  Other services use :func:`load_profiles` to resolve every author
or participant of a result set in a single query.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from agora.constants import DEFAULT_PROFILE_LIST_LIMIT, Alignment, BannerType
from agora.database.engine import get_session
from agora.database.models import Profile
from agora.errors import ConflictError, InvalidInputError, NotFoundError
from agora.services.search_service import like_pattern

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from agora.session import SessionContext

logger = logging.getLogger(__name__)

# Columns an owner may change through update_profile()
EDITABLE_FIELDS: frozenset[str] = frozenset({
    "username",
    "full_name",
    "avatar_url",
    "banner_type",
    "banner_value",
    "status_message",
    "profile_alignment",
    "font",
})


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------
def author_summary(profile: Profile | None) -> dict[str, Any]:
    """Public author fields; all ``None`` when the profile is missing."""
    if profile is None:
        return {"username": None, "full_name": None, "avatar_url": None}
    return {
        "username": profile.username,
        "full_name": profile.full_name,
        "avatar_url": profile.avatar_url,
    }


def profile_to_dict(profile: Profile) -> dict[str, Any]:
    return {
        "id": profile.id,
        "username": profile.username,
        "full_name": profile.full_name,
        "avatar_url": profile.avatar_url,
        "banner_type": profile.banner_type,
        "banner_value": profile.banner_value,
        "status_message": profile.status_message,
        "profile_alignment": profile.profile_alignment,
        "font": profile.font,
        "created_at": profile.created_at,
        "updated_at": profile.updated_at,
    }


def load_profiles(session: Session, user_ids: Iterable[str]) -> dict[str, Profile]:
    """Resolve *user_ids* to profiles in one query (missing ids are absent)."""
    ids = {uid for uid in user_ids if uid}
    if not ids:
        return {}
    rows = session.scalars(select(Profile).where(Profile.id.in_(ids))).all()
    return {p.id: p for p in rows}


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------
def ensure_profile(
    engine: Engine,
    user_id: str,
    *,
    username: str | None = None,
    full_name: str | None = None,
) -> Profile:
    """Create the profile for a new account; return the existing one otherwise."""
    with get_session(engine) as session:
        profile = session.get(Profile, user_id)
        if profile is not None:
            return profile
    try:
        with get_session(engine) as session:
            profile = Profile(id=user_id, username=username, full_name=full_name)
            session.add(profile)
        logger.info("Created profile for %s", user_id)
        return profile
    except IntegrityError:
        # Lost a first-sign-in race; the other writer's row wins.
        with get_session(engine) as session:
            profile = session.get(Profile, user_id)
        if profile is None:
            raise
        return profile


def get_profile(engine: Engine, user_id: str) -> dict[str, Any]:
    with Session(engine) as session:
        profile = session.get(Profile, user_id)
        if profile is None:
            raise NotFoundError(f"Profile {user_id} not found")
        return profile_to_dict(profile)


def update_profile(engine: Engine, ctx: SessionContext, **fields: Any) -> dict[str, Any]:
    """Update the viewer's own profile.

    Raises
    ------
    InvalidInputError
        Unknown field, or an invalid ``banner_type``/``profile_alignment``.
    NotFoundError
        The viewer has no profile yet.
    """
    user_id = ctx.require_user()
    unknown = set(fields) - EDITABLE_FIELDS
    if unknown:
        raise InvalidInputError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
    if fields.get("banner_type") is not None:
        try:
            fields["banner_type"] = str(BannerType(fields["banner_type"]))
        except ValueError as exc:
            raise InvalidInputError(f"Invalid banner type: {fields['banner_type']!r}") from exc
    if fields.get("profile_alignment") is not None:
        try:
            fields["profile_alignment"] = str(Alignment(fields["profile_alignment"]))
        except ValueError as exc:
            raise InvalidInputError(
                f"Invalid alignment: {fields['profile_alignment']!r}"
            ) from exc
    if "username" in fields and fields["username"] is not None:
        fields["username"] = fields["username"].strip() or None

    try:
        with get_session(engine) as session:
            profile = session.get(Profile, user_id)
            if profile is None:
                raise NotFoundError(f"Profile {user_id} not found")
            for key, value in fields.items():
                setattr(profile, key, value)
            session.flush()
            return profile_to_dict(profile)
    except IntegrityError as exc:
        raise ConflictError("Username is already taken") from exc


def list_profiles(
    engine: Engine,
    ctx: SessionContext,
    query: str | None = None,
    *,
    limit: int = DEFAULT_PROFILE_LIST_LIMIT,
) -> list[dict[str, Any]]:
    """Profiles other than the viewer's, optionally filtered by name."""
    stmt = select(Profile).order_by(Profile.username).limit(limit)
    if ctx.user_id:
        stmt = stmt.where(Profile.id != ctx.user_id)
    if query and query.strip():
        pattern = like_pattern(query)
        stmt = stmt.where(or_(
            Profile.username.ilike(pattern, escape="\\"),
            Profile.full_name.ilike(pattern, escape="\\"),
        ))
    with Session(engine) as session:
        return [profile_to_dict(p) for p in session.scalars(stmt).all()]
