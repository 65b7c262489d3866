"""
agora.feeds.bounties — Bounty board
====================================
"""

from __future__ import annotations

from typing import Any

from agora.errors import MutationResult
from agora.feeds.base import Interest, LiveFeed
from agora.realtime.events import ALL_EVENTS
from agora.services import bounty_service


class BountyFeed(LiveFeed):
    load_error_title = "Error loading bounties"

    def __init__(self, *args: Any, status: str | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.status = status
        self.bounties: list[dict[str, Any]] = []

    def interests(self) -> list[Interest]:
        return [("bounties", None, ALL_EVENTS), ("bounty_tags", None, ALL_EVENTS)]

    def fetch(self) -> list[dict[str, Any]]:
        return bounty_service.list_bounties(self.engine, status=self.status)

    def apply(self, data: list[dict[str, Any]]) -> None:
        self.bounties = data

    def create(
        self,
        *,
        title: str,
        description: str,
        price: Any,
        currency: str = "USD",
        tags: list[str] | None = None,
    ) -> MutationResult:
        return self._mutate(
            bounty_service.create_bounty,
            title=title, description=description, price=price, currency=currency, tags=tags,
            success="Bounty created",
            success_description="Your bounty has been posted successfully.",
            failure="Error creating bounty",
        )

    def update(self, bounty_id: str, **changes: Any) -> MutationResult:
        return self._mutate(
            bounty_service.update_bounty, bounty_id, **changes,
            success="Bounty updated",
            failure="Error updating bounty",
        )

    def delete(self, bounty_id: str) -> MutationResult:
        return self._mutate(
            bounty_service.delete_bounty, bounty_id,
            success="Bounty deleted",
            failure="Error deleting bounty",
        )
