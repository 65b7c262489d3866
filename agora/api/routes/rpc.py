"""
agora.api.routes.rpc — Remote procedure endpoints and search
=============================================================

``POST /api/rpc/<name>`` with a JSON body of named arguments, mirroring the
procedures in :mod:`agora.services.rpc`.  Each returns ``{"data": …}``.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import Engine

from agora.api.deps import get_config, get_current_user, get_engine
from agora.config import AgoraConfig
from agora.services import rpc, search_service
from agora.session import SessionContext

router = APIRouter(tags=["rpc"])


class UserArgs(BaseModel):
    user_uuid: str


class ModerationArgs(BaseModel):
    user_uuid: str
    action: str


class DirectChatArgs(BaseModel):
    other_user_id: str


@router.post("/rpc/get_user_role")
def get_user_role(args: UserArgs, engine: Engine = Depends(get_engine)):
    return {"data": rpc.get_user_role(engine, args.user_uuid)}


@router.post("/rpc/get_user_custom_role")
def get_user_custom_role(args: UserArgs, engine: Engine = Depends(get_engine)):
    return {"data": rpc.get_user_custom_role(engine, args.user_uuid)}


@router.post("/rpc/is_user_moderated")
def is_user_moderated(args: ModerationArgs, engine: Engine = Depends(get_engine)):
    return {"data": rpc.is_user_moderated(engine, args.user_uuid, args.action)}


@router.post("/rpc/get_or_create_direct_chat")
def get_or_create_direct_chat(
    args: DirectChatArgs,
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
):
    return {"data": rpc.get_or_create_direct_chat(engine, user, args.other_user_id)}


@router.get("/search")
def search(
    q: str = Query(""),
    engine: Engine = Depends(get_engine),
    cfg: AgoraConfig = Depends(get_config),
):
    return search_service.search(engine, q, limit=cfg.search_limit)
