"""
agora.constants — Shared enumerations and limits
=================================================

Single source of truth for the enumerated column values.  Import from here
instead of repeating string literals in services and routes.
"""

from __future__ import annotations

import enum
import re


class Role(enum.StrEnum):
    """Coarse access roles (one active assignment per user)."""
    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"


class ModerationAction(enum.StrEnum):
    BAN = "ban"
    MUTE = "mute"


class BountyStatus(enum.StrEnum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ChatType(enum.StrEnum):
    DIRECT = "direct"
    GROUP = "group"


class MessageType(enum.StrEnum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    VIDEO = "video"


class BannerType(enum.StrEnum):
    COLOR = "color"
    GRADIENT = "gradient"
    IMAGE = "image"


class Alignment(enum.StrEnum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


STAFF_ROLES: frozenset[str] = frozenset({Role.MODERATOR, Role.ADMIN})

# Storage folders under ``{user_id}/``
STORAGE_CATEGORIES: frozenset[str] = frozenset({
    "avatars",
    "banners",
    "discussion-images",
    "chat-files",
})

CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
HEX_COLOR_RE = re.compile(r"^#[0-9a-fA-F]{6}$")

DEFAULT_REPLY_WINDOW = 5
DEFAULT_SEARCH_LIMIT = 10
DEFAULT_PROFILE_LIST_LIMIT = 20


def classify_mime(mime_type: str | None) -> MessageType:
    """Map a MIME type onto a message type by its prefix."""
    mime = (mime_type or "").lower()
    if mime.startswith("image/"):
        return MessageType.IMAGE
    if mime.startswith("video/"):
        return MessageType.VIDEO
    return MessageType.FILE
