"""
agora.api.routes.chats — Chats, messages and attachments
=========================================================
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, UploadFile, status
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from agora.api.deps import get_current_user, get_engine, get_storage
from agora.database.engine import run_db
from agora.services import chat_service, message_service
from agora.services.storage_service import ObjectStorage
from agora.session import SessionContext

router = APIRouter(prefix="/chats", tags=["chats"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class DirectChatCreate(BaseModel):
    other_user_id: str


class GroupChatCreate(BaseModel):
    name: str
    participant_ids: list[str] = Field(default_factory=list)


class MessageCreate(BaseModel):
    content: str


class FileMessageCreate(BaseModel):
    file_name: str
    mime_type: str | None = None
    file_size: int | None = None
    file_url: str


# ---------------------------------------------------------------------------
# Chats
# ---------------------------------------------------------------------------
@router.get("")
def list_chats(
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
):
    return chat_service.list_chats(engine, user)


@router.post("/direct")
def get_or_create_direct_chat(
    body: DirectChatCreate,
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
):
    return {"chat_id": chat_service.get_or_create_direct_chat(engine, user, body.other_user_id)}


@router.post("/group", status_code=status.HTTP_201_CREATED)
def create_group_chat(
    body: GroupChatCreate,
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
):
    return {"chat_id": chat_service.create_group_chat(engine, user, body.name, body.participant_ids)}


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------
@router.get("/{chat_id}/messages")
def list_messages(
    chat_id: str,
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
    storage: ObjectStorage = Depends(get_storage),
):
    """Messages oldest first; attachment messages carry an ``attachment`` block."""
    messages = message_service.list_messages(engine, user, chat_id)
    for m in messages:
        if m["message_type"] != "text":
            m["attachment"] = message_service.describe_attachment(m, storage)
    return messages


@router.post("/{chat_id}/messages", status_code=status.HTTP_201_CREATED)
def send_message(
    chat_id: str,
    body: MessageCreate,
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
):
    return message_service.send_message(engine, user, chat_id, body.content)


@router.post("/{chat_id}/files", status_code=status.HTTP_201_CREATED)
def send_file_message(
    chat_id: str,
    body: FileMessageCreate,
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
):
    """Record an attachment whose URL the client already has."""
    return message_service.send_file_message(engine, user, chat_id, **body.model_dump())


@router.post("/{chat_id}/upload", status_code=status.HTTP_201_CREATED)
async def upload_file(
    chat_id: str,
    file: UploadFile,
    engine: Engine = Depends(get_engine),
    user: SessionContext = Depends(get_current_user),
    storage: ObjectStorage = Depends(get_storage),
):
    """Store the file and send it as a message with its durable URL."""
    content = await file.read()
    return await run_db(
        message_service.upload_and_send_file,
        engine, user, storage, chat_id,
        file_name=file.filename or "upload.bin",
        content=content,
        mime_type=file.content_type,
    )
