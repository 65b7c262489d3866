"""
agora.api.routes.profiles — Profiles, avatar/banner uploads, follows
=====================================================================
"""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query, UploadFile
from pydantic import BaseModel
from sqlalchemy import Engine

from agora.api.deps import get_current_user, get_engine, get_storage, get_viewer
from agora.constants import BannerType, DEFAULT_PROFILE_LIST_LIMIT
from agora.database.engine import run_db
from agora.services import follow_service, profile_service
from agora.services.storage_service import ObjectStorage
from agora.session import SessionContext

router = APIRouter(prefix="/profiles", tags=["profiles"])


class ProfileUpdate(BaseModel):
    username: str | None = None
    full_name: str | None = None
    avatar_url: str | None = None
    banner_type: str | None = None
    banner_value: str | None = None
    status_message: str | None = None
    profile_alignment: str | None = None
    font: str | None = None


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------
@router.get("")
def list_profiles(
    q: str | None = None,
    limit: int = Query(DEFAULT_PROFILE_LIST_LIMIT, ge=1, le=100),
    engine: Engine = Depends(get_engine),
    viewer: SessionContext = Depends(get_viewer),
):
    return profile_service.list_profiles(engine, viewer, q, limit=limit)


@router.post("/me")
def ensure_my_profile(
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
):
    """Create the viewer's profile on first sign-in (idempotent)."""
    claims = user.claims
    meta = claims.get("user_metadata") or {}
    profile = profile_service.ensure_profile(
        engine,
        user.require_user(),
        username=meta.get("username") or claims.get("preferred_username"),
        full_name=meta.get("full_name") or claims.get("name"),
    )
    return profile_service.profile_to_dict(profile)


@router.patch("/me")
def update_my_profile(
    body: ProfileUpdate,
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
):
    return profile_service.update_profile(engine, user, **body.model_dump(exclude_unset=True))


@router.post("/me/avatar")
async def upload_avatar(
    file: UploadFile,
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
    storage: ObjectStorage = Depends(get_storage),
):
    content = await file.read()
    url = await run_db(
        storage.upload, user.require_user(), "avatars",
        file.filename or "avatar.png", content, file.content_type,
    )
    return await run_db(profile_service.update_profile, engine, user, avatar_url=url)


@router.post("/me/banner")
async def upload_banner(
    file: UploadFile,
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
    storage: ObjectStorage = Depends(get_storage),
):
    content = await file.read()
    url = await run_db(
        storage.upload, user.require_user(), "banners",
        file.filename or "banner.png", content, file.content_type,
    )
    return await run_db(
        profile_service.update_profile, engine, user,
        banner_type=BannerType.IMAGE.value, banner_value=url,
    )


@router.get("/{user_id}")
def get_profile(user_id: str, engine: Engine = Depends(get_engine)):
    return profile_service.get_profile(engine, user_id)


# ---------------------------------------------------------------------------
# Follows
# ---------------------------------------------------------------------------
@router.get("/{user_id}/follows")
def get_follows(
    user_id: str,
    engine: Engine = Depends(get_engine),
    viewer: SessionContext = Depends(get_viewer),
):
    return {
        "followers": follow_service.list_followers(engine, user_id),
        "following": follow_service.list_following(engine, user_id),
        "is_following": follow_service.is_following(engine, viewer, user_id),
    }


@router.post("/{user_id}/follow")
def toggle_follow(
    user_id: str,
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
):
    return asdict(follow_service.toggle_follow(engine, user, user_id))
