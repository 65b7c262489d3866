"""
agora.api.routes.discussions — Discussions, replies and likes
==============================================================
"""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from agora.api.deps import get_current_user, get_engine, get_viewer
from agora.services import discussion_service, reply_service
from agora.session import SessionContext

router = APIRouter(prefix="/discussions", tags=["discussions"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class DiscussionCreate(BaseModel):
    title: str
    body: str
    tags: list[str] = Field(default_factory=list)


class DiscussionUpdate(BaseModel):
    title: str | None = None
    body: str | None = None
    tags: list[str] | None = None


class ReplyCreate(BaseModel):
    content: str


# ---------------------------------------------------------------------------
# Discussions
# ---------------------------------------------------------------------------
@router.get("")
def list_discussions(
    author_id: str | None = None,
    engine: Engine = Depends(get_engine),
    viewer: SessionContext = Depends(get_viewer),
):
    if author_id:
        return discussion_service.list_user_discussions(engine, viewer, author_id)
    return discussion_service.list_discussions(engine, viewer)


@router.get("/{discussion_id}")
def get_discussion(
    discussion_id: str,
    engine: Engine = Depends(get_engine),
    viewer: SessionContext = Depends(get_viewer),
):
    return discussion_service.get_discussion(engine, viewer, discussion_id)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_discussion(
    body: DiscussionCreate,
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
):
    return discussion_service.create_discussion(engine, user, body.title, body.body, body.tags)


@router.patch("/{discussion_id}")
def update_discussion(
    discussion_id: str,
    body: DiscussionUpdate,
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
):
    return discussion_service.update_discussion(
        engine, user, discussion_id, title=body.title, body=body.body, tags=body.tags,
    )


@router.delete("/{discussion_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_discussion(
    discussion_id: str,
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
):
    discussion_service.delete_discussion(engine, user, discussion_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{discussion_id}/like")
def toggle_like(
    discussion_id: str,
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
):
    return asdict(discussion_service.toggle_like(engine, user, discussion_id))


# ---------------------------------------------------------------------------
# Replies
# ---------------------------------------------------------------------------
@router.get("/{discussion_id}/replies")
def list_replies(
    discussion_id: str,
    engine: Engine = Depends(get_engine),
    viewer: SessionContext = Depends(get_viewer),
):
    return reply_service.list_replies(engine, viewer, discussion_id)


@router.post("/{discussion_id}/replies", status_code=status.HTTP_201_CREATED)
def create_reply(
    discussion_id: str,
    body: ReplyCreate,
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
):
    return reply_service.create_reply(engine, user, discussion_id, body.content)


@router.post("/replies/{reply_id}/like")
def toggle_reply_like(
    reply_id: str,
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
):
    return asdict(reply_service.toggle_reply_like(engine, user, reply_id))
