"""
agora.services.chat_service — Chat lists and chat creation
===========================================================

Two independent compositions produce the viewer's chat list in the same
shape:

* :func:`list_chats` — the client path.  Chats, participants, profiles and
  last messages are each fetched with one batched query and joined in
  Python.
* :func:`get_user_chats` — the server-function path.  One joined query with
  a correlated lookup of each chat's last message.

Each chat is::

    {
        "id", "name", "type", "created_by", "created_at", "updated_at",
        "participants": [{"user_id", "profile": {"username", "full_name", "avatar_url"}}],
        "last_message": {"content", "created_at", "sender_id", "message_type"} | None,
    }

Chats are ordered by ``updated_at`` descending; participants by user id.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from agora.constants import ChatType
from agora.database.engine import get_session
from agora.database.models import Chat, ChatParticipant, Message, Profile
from agora.errors import InvalidInputError, NotFoundError
from agora.services.profile_service import author_summary, load_profiles

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from agora.session import SessionContext

logger = logging.getLogger(__name__)


def direct_key(user_a: str, user_b: str) -> str:
    """Order-independent key identifying the direct chat between two users."""
    lo, hi = sorted((user_a, user_b))
    return f"{lo}:{hi}"


# ---------------------------------------------------------------------------
# Shape helpers
# ---------------------------------------------------------------------------
def _chat_dict(chat: Chat) -> dict[str, Any]:
    return {
        "id": chat.id,
        "name": chat.name,
        "type": chat.type,
        "created_by": chat.created_by,
        "created_at": chat.created_at,
        "updated_at": chat.updated_at,
        "participants": [],
        "last_message": None,
    }


def _last_message_dict(message: Message | None) -> dict[str, Any] | None:
    if message is None:
        return None
    return {
        "content": message.content,
        "created_at": message.created_at,
        "sender_id": message.sender_id,
        "message_type": message.message_type,
    }


def _participant_dict(user_id: str, profile: Profile | None) -> dict[str, Any]:
    return {"user_id": user_id, "profile": author_summary(profile)}


def _viewer_chat_ids(user_id: str):
    return select(ChatParticipant.chat_id).where(ChatParticipant.user_id == user_id)


# ---------------------------------------------------------------------------
# Client path: batched queries joined in Python
# ---------------------------------------------------------------------------
def list_chats(engine: Engine, ctx: SessionContext) -> list[dict[str, Any]]:
    """The viewer's chats with participants and last message."""
    user_id = ctx.require_user()
    with Session(engine) as session:
        chats = list(session.scalars(
            select(Chat)
            .where(Chat.id.in_(_viewer_chat_ids(user_id)))
            .order_by(Chat.updated_at.desc(), Chat.id)
        ))
        if not chats:
            return []
        chat_ids = [c.id for c in chats]

        members: dict[str, list[str]] = defaultdict(list)
        for chat_id, member_id in session.execute(
            select(ChatParticipant.chat_id, ChatParticipant.user_id)
            .where(ChatParticipant.chat_id.in_(chat_ids))
            .order_by(ChatParticipant.user_id)
        ):
            members[chat_id].append(member_id)

        profiles = load_profiles(
            session, {uid for ids in members.values() for uid in ids}
        )

        ranked = (
            select(
                Message.id,
                func.row_number()
                .over(
                    partition_by=Message.chat_id,
                    order_by=(Message.created_at.desc(), Message.id.desc()),
                )
                .label("rn"),
            )
            .where(Message.chat_id.in_(chat_ids))
            .subquery()
        )
        last = {
            m.chat_id: m
            for m in session.scalars(
                select(Message).join(ranked, ranked.c.id == Message.id).where(ranked.c.rn == 1)
            )
        }

        result = []
        for chat in chats:
            item = _chat_dict(chat)
            item["participants"] = [
                _participant_dict(uid, profiles.get(uid)) for uid in members.get(chat.id, [])
            ]
            item["last_message"] = _last_message_dict(last.get(chat.id))
            result.append(item)
        return result


# ---------------------------------------------------------------------------
# Server-function path: one joined query
# ---------------------------------------------------------------------------
def get_user_chats(engine: Engine, user_id: str) -> list[dict[str, Any]]:
    """Same result as :func:`list_chats`, built from a single statement."""
    last_message_id = (
        select(Message.id)
        .where(Message.chat_id == Chat.id)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(1)
        .correlate(Chat)
        .scalar_subquery()
    )
    stmt = (
        select(Chat, ChatParticipant.user_id, Profile, Message)
        .join(ChatParticipant, ChatParticipant.chat_id == Chat.id)
        .outerjoin(Profile, Profile.id == ChatParticipant.user_id)
        .outerjoin(Message, Message.id == last_message_id)
        .where(Chat.id.in_(_viewer_chat_ids(user_id)))
        .order_by(Chat.updated_at.desc(), Chat.id, ChatParticipant.user_id)
    )

    by_id: dict[str, dict[str, Any]] = {}
    with Session(engine) as session:
        for chat, member_id, profile, message in session.execute(stmt):
            item = by_id.get(chat.id)
            if item is None:
                item = by_id[chat.id] = _chat_dict(chat)
                item["last_message"] = _last_message_dict(message)
            item["participants"].append(_participant_dict(member_id, profile))
    return list(by_id.values())


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------
def _find_direct_chat(session: Session, key: str) -> Chat | None:
    return session.scalar(select(Chat).where(Chat.direct_key == key))


def _require_profiles(session: Session, user_ids: list[str]) -> None:
    found = set(session.scalars(select(Profile.id).where(Profile.id.in_(user_ids))))
    missing = [uid for uid in user_ids if uid not in found]
    if missing:
        raise NotFoundError(f"No profile for user(s): {', '.join(missing)}")


def get_or_create_direct_chat(engine: Engine, ctx: SessionContext, other_user_id: str) -> str:
    """Return the id of the direct chat between the viewer and *other_user_id*.

    Concurrent callers converge on one row through the unique
    ``direct_key``: the loser of an insert race re-reads the winner's chat.

    Raises
    ------
    InvalidInputError
        If *other_user_id* is blank or is the viewer.
    NotFoundError
        If *other_user_id* has no profile and no chat with them exists yet.
    """
    user_id = ctx.require_user()
    if not other_user_id:
        raise InvalidInputError("other_user_id is required")
    if other_user_id == user_id:
        raise InvalidInputError("Cannot start a direct chat with yourself")
    key = direct_key(user_id, other_user_id)

    with Session(engine) as session:
        existing = _find_direct_chat(session, key)
        if existing is not None:
            return existing.id
        _require_profiles(session, [other_user_id])

    try:
        with get_session(engine) as session:
            chat = Chat(type=ChatType.DIRECT.value, created_by=user_id, direct_key=key)
            chat.participants = [
                ChatParticipant(user_id=user_id),
                ChatParticipant(user_id=other_user_id),
            ]
            session.add(chat)
            session.flush()
            chat_id = chat.id
        logger.info("Direct chat %s created for %s", chat_id, key)
        return chat_id
    except IntegrityError:
        with Session(engine) as session:
            existing = _find_direct_chat(session, key)
        if existing is None:
            raise
        return existing.id


def create_group_chat(
    engine: Engine, ctx: SessionContext, name: str, participant_ids: list[str]
) -> str:
    """Create a named group with the viewer plus *participant_ids*.

    Raises NotFoundError if any invited user has no profile.
    """
    user_id = ctx.require_user()
    name = (name or "").strip()
    if not name:
        raise InvalidInputError("Group name must not be blank")
    members = list(dict.fromkeys([user_id, *(p for p in participant_ids if p)]))

    with get_session(engine) as session:
        _require_profiles(session, [uid for uid in members if uid != user_id])
        chat = Chat(type=ChatType.GROUP.value, name=name, created_by=user_id)
        chat.participants = [ChatParticipant(user_id=uid) for uid in members]
        session.add(chat)
        session.flush()
        chat_id = chat.id
    logger.info("Group chat %s (%r) created with %d member(s)", chat_id, name, len(members))
    return chat_id
