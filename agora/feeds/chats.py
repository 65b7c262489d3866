"""
agora.feeds.chats — Chat list and message threads
==================================================

:class:`ChatListFeed` registers one interest set (chats, participants and
new messages); a single commit touching several of those tables rebuilds
the list once.  :class:`MessageFeed` follows new messages of one chat.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from agora.errors import MutationResult
from agora.feeds.base import Interest, LiveFeed
from agora.realtime.events import ALL_EVENTS, ChangeOp
from agora.services import chat_service, message_service

if TYPE_CHECKING:
    from agora.services.storage_service import ObjectStorage

logger = logging.getLogger(__name__)


class ChatListFeed(LiveFeed):
    load_error_title = "Failed to load chats"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.chats: list[dict[str, Any]] = []

    def interests(self) -> list[Interest]:
        return [
            ("chats", None, ALL_EVENTS),
            ("chat_participants", None, ALL_EVENTS),
            ("messages", None, ChangeOp.INSERT),
        ]

    def fetch(self) -> list[dict[str, Any]]:
        if not self.ctx.is_authenticated:
            return []
        return chat_service.list_chats(self.engine, self.ctx)

    def apply(self, data: list[dict[str, Any]]) -> None:
        self.chats = data

    def create_direct_chat(self, other_user_id: str) -> MutationResult:
        """Value is the chat id (existing or new)."""
        return self._mutate(
            chat_service.get_or_create_direct_chat, other_user_id,
            failure="Failed to create chat",
        )

    def create_group_chat(self, name: str, participant_ids: list[str]) -> MutationResult:
        return self._mutate(
            chat_service.create_group_chat, name, participant_ids,
            failure="Failed to create group chat",
        )


class MessageFeed(LiveFeed):
    """Messages of one chat, oldest first.  ``chat_id=None`` is an empty thread."""

    load_error_title = "Failed to load messages"

    def __init__(self, *args: Any, chat_id: str | None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.chat_id = chat_id
        self.messages: list[dict[str, Any]] = []

    def interests(self) -> list[Interest]:
        if self.chat_id is None:
            return []
        return [("messages", f"chat_id=eq.{self.chat_id}", ChangeOp.INSERT)]

    def fetch(self) -> list[dict[str, Any]]:
        if self.chat_id is None or not self.ctx.is_authenticated:
            return []
        return message_service.list_messages(self.engine, self.ctx, self.chat_id)

    def apply(self, data: list[dict[str, Any]]) -> None:
        self.messages = data

    def attachments(self, storage: ObjectStorage | None = None) -> list[dict[str, Any]]:
        """Attachment descriptions for every non-text message."""
        return [
            message_service.describe_attachment(m, storage)
            for m in self.messages
            if m["message_type"] != "text"
        ]

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------
    def _no_chat(self) -> MutationResult:
        self.notify("Error", "No chat selected", destructive=True)
        return MutationResult.rejected("No chat selected", "invalid_input")

    def send(self, content: str) -> MutationResult:
        if self.chat_id is None:
            return self._no_chat()
        return self._mutate(
            message_service.send_message, self.chat_id, content,
            failure="Failed to send message",
        )

    def send_file(
        self, *, file_name: str, mime_type: str | None, file_size: int | None, file_url: str
    ) -> MutationResult:
        if self.chat_id is None:
            return self._no_chat()
        return self._mutate(
            message_service.send_file_message, self.chat_id,
            file_name=file_name, mime_type=mime_type, file_size=file_size, file_url=file_url,
            failure="Failed to send file",
        )

    def upload_file(
        self, storage: ObjectStorage, *, file_name: str, content: bytes, mime_type: str | None = None
    ) -> MutationResult:
        if self.chat_id is None:
            return self._no_chat()

        def _upload(engine, ctx, chat_id):
            return message_service.upload_and_send_file(
                engine, ctx, storage, chat_id,
                file_name=file_name, content=content, mime_type=mime_type,
            )

        _upload.__name__ = "upload_and_send_file"
        return self._mutate(_upload, self.chat_id, failure="Failed to send file")
