"""
agora.feeds.discussions — Discussion list and reply threads
============================================================
"""

from __future__ import annotations

import logging
from typing import Any

from agora.constants import DEFAULT_REPLY_WINDOW
from agora.errors import MutationResult
from agora.feeds.base import Interest, LiveFeed
from agora.realtime.events import ALL_EVENTS
from agora.services import discussion_service, reply_service
from agora.services.discussion_service import LikeState

logger = logging.getLogger(__name__)


class DiscussionFeed(LiveFeed):
    """Every discussion, aggregated for the viewer, kept fresh."""

    load_error_title = "Error loading discussions"

    def __init__(self, *args: Any, author_id: str | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.author_id = author_id
        self.discussions: list[dict[str, Any]] = []

    def interests(self) -> list[Interest]:
        return [
            ("discussions", None, ALL_EVENTS),
            ("discussion_tags", None, ALL_EVENTS),
            ("replies", None, ALL_EVENTS),
            ("likes", None, ALL_EVENTS),
        ]

    def fetch(self) -> list[dict[str, Any]]:
        if self.author_id is not None:
            return discussion_service.list_user_discussions(self.engine, self.ctx, self.author_id)
        return discussion_service.list_discussions(self.engine, self.ctx)

    def apply(self, data: list[dict[str, Any]]) -> None:
        self.discussions = data

    def get(self, discussion_id: str) -> dict[str, Any] | None:
        return next((d for d in self.discussions if d["id"] == discussion_id), None)

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------
    def create(self, title: str, body: str, tags: list[str] | None = None) -> MutationResult:
        return self._mutate(
            discussion_service.create_discussion, title, body, tags,
            success="Discussion created!",
            success_description="Your discussion has been posted successfully.",
            failure="Error creating discussion",
        )

    def update(
        self,
        discussion_id: str,
        *,
        title: str | None = None,
        body: str | None = None,
        tags: list[str] | None = None,
    ) -> MutationResult:
        return self._mutate(
            discussion_service.update_discussion, discussion_id,
            title=title, body=body, tags=tags,
            success="Discussion updated",
            failure="Error updating discussion",
        )

    def delete(self, discussion_id: str) -> MutationResult:
        result = self._mutate(
            discussion_service.delete_discussion, discussion_id,
            success="Discussion deleted",
            failure="Error deleting discussion",
        )
        if result:
            with self._lock:
                self.discussions = [d for d in self.discussions if d["id"] != discussion_id]
        return result

    def toggle_like(self, discussion_id: str) -> MutationResult:
        """Flip the viewer's like; local counts follow the accepted result only."""
        result = self._mutate(
            discussion_service.toggle_like, discussion_id,
            failure="Error updating like",
        )
        if result:
            state: LikeState = result.value
            with self._lock:
                item = self.get(discussion_id)
                if item is not None:
                    item["user_liked"] = state.liked
                    item["likes_count"] = state.likes_count
        return result


class ReplyThread(LiveFeed):
    """Replies of one discussion with a collapsible display window.

    The window is display-only: ``replies`` always holds the full thread,
    ``visible_replies`` the last ``reply_window`` of them until
    :meth:`show_all` is called.
    """

    load_error_title = "Error loading replies"

    def __init__(
        self,
        *args: Any,
        discussion_id: str,
        reply_window: int = DEFAULT_REPLY_WINDOW,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.discussion_id = discussion_id
        self.reply_window = reply_window
        self.expanded = False
        self.replies: list[dict[str, Any]] = []

    def interests(self) -> list[Interest]:
        return [("replies", f"discussion_id=eq.{self.discussion_id}", ALL_EVENTS)]

    def fetch(self) -> list[dict[str, Any]]:
        return reply_service.list_replies(self.engine, self.ctx, self.discussion_id)

    def apply(self, data: list[dict[str, Any]]) -> None:
        self.replies = data

    # -------------------------------------------------------------------
    # Display window
    # -------------------------------------------------------------------
    @property
    def visible_replies(self) -> list[dict[str, Any]]:
        if self.expanded or len(self.replies) <= self.reply_window:
            return list(self.replies)
        return self.replies[-self.reply_window:] if self.reply_window > 0 else []

    @property
    def hidden_count(self) -> int:
        return len(self.replies) - len(self.visible_replies)

    def show_all(self) -> None:
        self.expanded = True

    def collapse(self) -> None:
        self.expanded = False

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------
    def post(self, content: str) -> MutationResult:
        return self._mutate(
            reply_service.create_reply, self.discussion_id, content,
            success="Reply posted!",
            success_description="Your reply has been added successfully.",
            failure="Error posting reply",
        )

    def toggle_like(self, reply_id: str) -> MutationResult:
        result = self._mutate(
            reply_service.toggle_reply_like, reply_id,
            failure="Error updating like",
        )
        if result:
            state: LikeState = result.value
            with self._lock:
                for item in self.replies:
                    if item["id"] == reply_id:
                        item["user_liked"] = state.liked
                        item["likes_count"] = state.likes_count
        return result
