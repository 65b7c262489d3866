"""
agora.services.message_service — Message streams and attachments
=================================================================

Only participants can read or post in a chat.  Every new message bumps the
chat's ``updated_at`` so chat lists re-sort.  Attachments come in two forms:

* :func:`send_file_message` records a URL exactly as the caller gives it
  (which may be a browser-local ``blob:`` URL that nobody else can open).
* :func:`upload_and_send_file` stores the bytes first and records the
  durable storage URL.

:func:`describe_attachment` tells a renderer whether a recorded URL can
actually be opened, without ever raising for a broken link.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from agora.constants import MessageType, ModerationAction, classify_mime
from agora.database.engine import get_session
from agora.database.models import Chat, ChatParticipant, Message, utcnow
from agora.errors import InvalidInputError, NotFoundError, PermissionDeniedError
from agora.services.profile_service import author_summary, load_profiles
from agora.services.rpc import ensure_not_moderated

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from agora.services.storage_service import ObjectStorage
    from agora.session import SessionContext

logger = logging.getLogger(__name__)

# URL schemes that only resolve inside the sender's browser
LOCAL_URL_SCHEMES = ("blob:", "data:")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def is_participant(session: Session, chat_id: str, user_id: str) -> bool:
    return session.scalar(
        select(ChatParticipant.id).where(
            ChatParticipant.chat_id == chat_id, ChatParticipant.user_id == user_id
        )
    ) is not None


def _require_participant(session: Session, chat_id: str, user_id: str) -> Chat:
    chat = session.get(Chat, chat_id)
    if chat is None:
        raise NotFoundError(f"Chat {chat_id} not found")
    if not is_participant(session, chat_id, user_id):
        raise PermissionDeniedError("You are not a participant in this chat")
    return chat


def _message_dict(message: Message, sender: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": message.id,
        "chat_id": message.chat_id,
        "sender_id": message.sender_id,
        "content": message.content,
        "message_type": message.message_type or MessageType.TEXT.value,
        "file_url": message.file_url,
        "file_name": message.file_name,
        "file_size": message.file_size,
        "created_at": message.created_at,
        "sender": sender,
    }


def _post(session: Session, chat: Chat, message: Message) -> dict[str, Any]:
    session.add(message)
    chat.updated_at = utcnow()
    session.flush()
    profiles = load_profiles(session, [message.sender_id])
    return _message_dict(message, author_summary(profiles.get(message.sender_id)))


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def list_messages(engine: Engine, ctx: SessionContext, chat_id: str) -> list[dict[str, Any]]:
    """Messages of one chat, oldest first, with sender profiles.

    Senders without a profile get a blank ``sender`` block.
    """
    user_id = ctx.require_user()
    with Session(engine) as session:
        _require_participant(session, chat_id, user_id)
        messages = list(session.scalars(
            select(Message)
            .where(Message.chat_id == chat_id)
            .order_by(Message.created_at, Message.id)
        ))
        profiles = load_profiles(session, {m.sender_id for m in messages})
    return [
        _message_dict(m, author_summary(profiles.get(m.sender_id))) for m in messages
    ]


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def send_message(engine: Engine, ctx: SessionContext, chat_id: str, content: str) -> dict[str, Any]:
    """Post a text message.

    Raises
    ------
    InvalidInputError
        Blank content.
    NotFoundError
        Unknown chat.
    PermissionDeniedError
        Not a participant, or banned/muted.
    """
    user_id = ctx.require_user()
    content = (content or "").strip()
    if not content:
        raise InvalidInputError("Message must not be blank")
    with get_session(engine) as session:
        chat = _require_participant(session, chat_id, user_id)
        ensure_not_moderated(session, user_id, ModerationAction.BAN, ModerationAction.MUTE)
        return _post(session, chat, Message(
            chat_id=chat_id,
            sender_id=user_id,
            content=content,
            message_type=MessageType.TEXT.value,
        ))


def send_file_message(
    engine: Engine,
    ctx: SessionContext,
    chat_id: str,
    *,
    file_name: str,
    mime_type: str | None,
    file_size: int | None,
    file_url: str,
) -> dict[str, Any]:
    """Record an attachment message; *file_url* is stored as given."""
    user_id = ctx.require_user()
    if not file_url:
        raise InvalidInputError("file_url is required")
    if file_size is not None and file_size < 0:
        raise InvalidInputError("file_size must not be negative")
    message_type = classify_mime(mime_type)
    if file_url.startswith(LOCAL_URL_SCHEMES):
        logger.warning(
            "Chat %s: %s sent a browser-local attachment URL; other participants cannot open it",
            chat_id, user_id,
        )
    with get_session(engine) as session:
        chat = _require_participant(session, chat_id, user_id)
        ensure_not_moderated(session, user_id, ModerationAction.BAN, ModerationAction.MUTE)
        return _post(session, chat, Message(
            chat_id=chat_id,
            sender_id=user_id,
            content=None,
            message_type=message_type.value,
            file_url=file_url,
            file_name=file_name,
            file_size=file_size,
        ))


def upload_and_send_file(
    engine: Engine,
    ctx: SessionContext,
    storage: ObjectStorage,
    chat_id: str,
    *,
    file_name: str,
    content: bytes,
    mime_type: str | None = None,
) -> dict[str, Any]:
    """Store *content* under ``{user}/chat-files/`` and send it as a message.

    Membership is checked before anything is stored; if recording the
    message fails the stored object is removed again.
    """
    user_id = ctx.require_user()
    with Session(engine) as session:
        _require_participant(session, chat_id, user_id)

    url = storage.upload(user_id, "chat-files", file_name, content, mime_type)
    try:
        return send_file_message(
            engine, ctx, chat_id,
            file_name=file_name,
            mime_type=mime_type,
            file_size=len(content),
            file_url=url,
        )
    except Exception:
        storage.delete(url)
        raise


# ---------------------------------------------------------------------------
# Rendering support
# ---------------------------------------------------------------------------
def describe_attachment(message: Mapping[str, Any] | Message, storage: ObjectStorage | None = None) -> dict[str, Any]:
    """Describe a message's attachment for display.

    Returns ``{"url", "name", "size", "type", "available"}``.  ``available``
    is False when there is no URL, when the URL is browser-local, or when it
    points into *storage* and the object is gone.  Other URLs are assumed
    reachable.
    """
    def field(name: str) -> Any:
        if isinstance(message, Mapping):
            return message.get(name)
        return getattr(message, name, None)

    url = field("file_url")
    available = bool(url) and not str(url).startswith(LOCAL_URL_SCHEMES)
    if available and storage is not None and storage.key_for(url) is not None:
        try:
            available = storage.exists(url)
        except OSError:
            logger.warning("Could not check attachment %s", url, exc_info=True)
            available = False
    return {
        "url": url,
        "name": field("file_name"),
        "size": field("file_size"),
        "type": field("message_type") or MessageType.TEXT.value,
        "available": available,
    }
