"""
agora.api.routes.admin — Staff endpoints (role-checked in the services)
=========================================================================
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy import Engine

from agora.api.deps import get_current_user, get_engine
from agora.services import admin_service
from agora.session import SessionContext

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class RoleUpdate(BaseModel):
    role: str


class ModerationCreate(BaseModel):
    user_id: str
    action: str
    reason: str | None = None
    expires_at: datetime | None = None


class CustomRoleCreate(BaseModel):
    name: str
    color: str = "#6366f1"
    description: str | None = None


class CustomRoleAssign(BaseModel):
    user_id: str


# ---------------------------------------------------------------------------
# Overview
# ---------------------------------------------------------------------------
@router.get("/overview")
def overview(
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
):
    return admin_service.get_admin_overview(engine, user)


# ---------------------------------------------------------------------------
# Roles & moderation
# ---------------------------------------------------------------------------
@router.put("/users/{user_id}/role")
def update_user_role(
    user_id: str,
    body: RoleUpdate,
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
):
    return admin_service.update_user_role(engine, user, user_id, body.role)


@router.post("/moderation", status_code=status.HTTP_201_CREATED)
def moderate_user(
    body: ModerationCreate,
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
):
    return admin_service.moderate_user(
        engine, user, body.user_id, body.action,
        reason=body.reason, expires_at=body.expires_at,
    )


@router.post("/moderation/{action_id}/deactivate")
def deactivate_moderation_action(
    action_id: str,
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
):
    return admin_service.deactivate_moderation_action(engine, user, action_id)


# ---------------------------------------------------------------------------
# Custom roles
# ---------------------------------------------------------------------------
@router.post("/custom-roles", status_code=status.HTTP_201_CREATED)
def create_custom_role(
    body: CustomRoleCreate,
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
):
    return admin_service.create_custom_role(
        engine, user, body.name, color=body.color, description=body.description,
    )


@router.post("/custom-roles/{custom_role_id}/assign", status_code=status.HTTP_201_CREATED)
def assign_custom_role(
    custom_role_id: str,
    body: CustomRoleAssign,
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
):
    return admin_service.assign_custom_role(engine, user, body.user_id, custom_role_id)


# ---------------------------------------------------------------------------
# Audit Log
# ---------------------------------------------------------------------------
@router.get("/audit")
def get_audit_log(
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=100),
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
):
    """Paginated admin audit log."""
    return admin_service.get_audit_log(engine, user, page=page, page_size=page_size)
