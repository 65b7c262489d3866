"""
agora.feeds.profiles — Profile card and follow panel
=====================================================
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Any

from agora.errors import MutationResult
from agora.feeds.base import Interest, LiveFeed
from agora.realtime.events import ALL_EVENTS
from agora.services import follow_service, profile_service
from agora.services.follow_service import FollowState


class ProfileFeed(LiveFeed):
    """One profile (the viewer's own when ``user_id`` is omitted)."""

    load_error_title = "Error loading profile"

    def __init__(self, *args: Any, user_id: str | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._user_id = user_id
        self.profile: dict[str, Any] | None = None

    @property
    def target_id(self) -> str | None:
        return self._user_id or self.ctx.user_id

    def interests(self) -> list[Interest]:
        if self.target_id is None:
            return []
        return [("profiles", f"id=eq.{self.target_id}", ALL_EVENTS)]

    def fetch(self) -> dict[str, Any] | None:
        if self.target_id is None:
            return None
        return profile_service.get_profile(self.engine, self.target_id)

    def apply(self, data: dict[str, Any] | None) -> None:
        self.profile = data

    def update(self, **fields: Any) -> MutationResult:
        result = self._mutate(
            profile_service.update_profile, **fields,
            success="Profile updated",
            failure="Error updating profile",
        )
        if result and self.target_id == self.ctx.user_id:
            with self._lock:
                self.profile = result.value
        return result


class FollowPanel(LiveFeed):
    """Followers, following and the viewer's follow state for one user.

    The three reads run concurrently on a small thread pool.
    """

    load_error_title = "Error loading follows"

    def __init__(self, *args: Any, user_id: str, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.user_id = user_id
        self.followers: list[dict[str, Any]] = []
        self.following: list[dict[str, Any]] = []
        self.is_following = False

    def interests(self) -> list[Interest]:
        return [
            ("follows", f"following_id=eq.{self.user_id}", ALL_EVENTS),
            ("follows", f"follower_id=eq.{self.user_id}", ALL_EVENTS),
        ]

    def fetch(self) -> tuple[list, list, bool]:
        with ThreadPoolExecutor(max_workers=3, thread_name_prefix="follows") as pool:
            followers = pool.submit(follow_service.list_followers, self.engine, self.user_id)
            following = pool.submit(follow_service.list_following, self.engine, self.user_id)
            state = pool.submit(follow_service.is_following, self.engine, self.ctx, self.user_id)
            return followers.result(), following.result(), state.result()

    def apply(self, data: tuple[list, list, bool]) -> None:
        self.followers, self.following, self.is_following = data

    def toggle(self) -> MutationResult:
        result = self._mutate(follow_service.toggle_follow, self.user_id, failure="Error")
        if result:
            state: FollowState = result.value
            with self._lock:
                self.is_following = state.following
            self.notify(
                "Following" if state.following else "Unfollowed",
                "You are now following this user" if state.following
                else "You have unfollowed this user",
            )
        return result
