"""
agora.services.subscription_access — Who may watch which rows
==============================================================

Realtime clients see the routing columns of every row their subscription
matches, so a subscription is authorized the same way a read would be:

* **Public tables** (content any visitor can list over REST) accept any
  viewer and any filter.  ``likes`` is public but never reveals its
  ``user_id`` column and cannot be filtered by another user's id.
* **Chat tables** require a signed-in participant and a filter pinned to
  one chat (``chat_id=eq.<id>``, or ``id=eq.<id>`` on ``chats``).
  ``chat_participants`` also accepts ``user_id=eq.<viewer>`` so a client
  learns when it is added to a new chat.
* **Account tables** (roles, custom-role assignments, moderation) accept
  staff with any filter, and anyone else only with ``user_id=eq.<viewer>``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from agora.constants import STAFF_ROLES
from agora.errors import InvalidInputError, PermissionDeniedError
from agora.realtime.events import RowFilter, parse_filter
from agora.realtime.notify import WATCHED_TABLES
from agora.services.message_service import is_participant
from agora.services.rpc import role_of

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from agora.session import SessionContext

logger = logging.getLogger(__name__)

PUBLIC_TABLES: frozenset[str] = frozenset({
    "profiles",
    "discussions",
    "discussion_tags",
    "replies",
    "likes",
    "bounties",
    "bounty_tags",
    "follows",
    "custom_roles",
})

# table -> column that names the chat
CHAT_TABLES: dict[str, str] = {
    "chats": "id",
    "chat_participants": "chat_id",
    "messages": "chat_id",
}

ACCOUNT_TABLES: frozenset[str] = frozenset({
    "user_roles",
    "user_custom_roles",
    "user_moderation",
})

# Columns never pushed to subscribers, per table
REDACTED_COLUMNS: dict[str, frozenset[str]] = {
    "likes": frozenset({"user_id"}),
}


@dataclass(frozen=True, slots=True)
class SubscriptionGrant:
    """An authorized subscription plus the columns to strip from its pushes."""

    table: str
    row_filter: RowFilter | None
    redacted: frozenset[str] = frozenset()


def _is_viewer_filter(row_filter: RowFilter | None, user_id: str | None) -> bool:
    return (
        user_id is not None
        and row_filter is not None
        and row_filter.column == "user_id"
        and row_filter.value == user_id
    )


def authorize_subscription(
    engine: Engine, ctx: SessionContext, table: str, filter: str | None
) -> SubscriptionGrant:
    """Check that the viewer may watch *table* rows matching *filter*.

    Raises
    ------
    InvalidInputError
        Unknown table or malformed filter.
    NotAuthenticatedError
        A non-public table was requested without a signed-in viewer.
    PermissionDeniedError
        The filter reaches rows the viewer cannot read.
    """
    if table not in WATCHED_TABLES:
        raise InvalidInputError(f"Unknown table: {table!r}")
    try:
        row_filter = parse_filter(filter)
    except ValueError as exc:
        raise InvalidInputError(str(exc)) from exc
    redacted = REDACTED_COLUMNS.get(table, frozenset())

    if table in PUBLIC_TABLES:
        if row_filter is not None and row_filter.column in redacted:
            if not _is_viewer_filter(row_filter, ctx.user_id):
                raise PermissionDeniedError(f"Cannot filter {table} by another user's {row_filter.column}")
        return SubscriptionGrant(table, row_filter, redacted)

    user_id = ctx.require_user()

    if table in CHAT_TABLES:
        if table == "chat_participants" and _is_viewer_filter(row_filter, user_id):
            return SubscriptionGrant(table, row_filter, redacted)
        column = CHAT_TABLES[table]
        if row_filter is None or row_filter.column != column:
            raise PermissionDeniedError(f"Subscriptions to {table} must filter on {column}=eq.<chat id>")
        with Session(engine) as session:
            allowed = is_participant(session, row_filter.value, user_id)
        if not allowed:
            logger.warning("%s refused realtime access to chat %s", user_id, row_filter.value)
            raise PermissionDeniedError("You are not a participant in this chat")
        return SubscriptionGrant(table, row_filter, redacted)

    if table in ACCOUNT_TABLES:
        if _is_viewer_filter(row_filter, user_id):
            return SubscriptionGrant(table, row_filter, redacted)
        with Session(engine) as session:
            role = role_of(session, user_id)
        if role not in STAFF_ROLES:
            raise PermissionDeniedError(f"Subscriptions to {table} must filter on user_id=eq.<your id>")
        return SubscriptionGrant(table, row_filter, redacted)

    raise PermissionDeniedError(f"Realtime access to {table} is not allowed")
