"""
agora.feeds.admin — Admin panel and role watcher
=================================================

:class:`AdminPanel` is a one-shot fetch with an explicit :meth:`refetch`;
it holds no subscription.  Its mutations refetch after an accepted result.
:class:`RoleWatcher` tracks the viewer's coarse role and follows every
``user_roles`` change.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from agora.constants import STAFF_ROLES, ModerationAction, Role
from agora.errors import MutationResult
from agora.feeds.base import Interest, LiveFeed
from agora.realtime.events import ALL_EVENTS
from agora.services import admin_service, rpc


class AdminPanel(LiveFeed):
    load_error_title = "Failed to load admin dashboard data"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.users: list[dict[str, Any]] = []
        self.custom_roles: list[dict[str, Any]] = []
        self.moderation_actions: list[dict[str, Any]] = []

    def fetch(self) -> dict[str, list[dict[str, Any]]]:
        return admin_service.get_admin_overview(self.engine, self.ctx)

    def apply(self, data: dict[str, list[dict[str, Any]]]) -> None:
        self.users = data["users"]
        self.custom_roles = data["custom_roles"]
        self.moderation_actions = data["moderation_actions"]

    def _then_refetch(self, result: MutationResult) -> MutationResult:
        if result:
            self.refetch()
        return result

    def update_user_role(self, user_id: str, role: str) -> MutationResult:
        return self._then_refetch(self._mutate(
            admin_service.update_user_role, user_id, role,
            success="Role updated",
            success_description=f"User role has been changed to {role}",
            failure="Error updating role",
        ))

    def moderate_user(
        self,
        user_id: str,
        action: str,
        *,
        reason: str | None = None,
        expires_at: datetime | None = None,
    ) -> MutationResult:
        done = "banned" if action == ModerationAction.BAN else "muted"
        return self._then_refetch(self._mutate(
            admin_service.moderate_user, user_id, action,
            reason=reason, expires_at=expires_at,
            success=f"User {done}",
            success_description=f"User has been {done} successfully",
            failure="Error moderating user",
        ))

    def deactivate_moderation_action(self, action_id: str) -> MutationResult:
        return self._then_refetch(self._mutate(
            admin_service.deactivate_moderation_action, action_id,
            success="Action deactivated",
            success_description="Moderation action has been deactivated",
            failure="Error deactivating action",
        ))

    def create_custom_role(
        self, name: str, *, color: str = "#6366f1", description: str | None = None
    ) -> MutationResult:
        return self._then_refetch(self._mutate(
            admin_service.create_custom_role, name,
            color=color, description=description,
            success="Role created",
            success_description=f'Custom role "{name}" has been created',
            failure="Error creating role",
        ))

    def assign_custom_role(self, user_id: str, custom_role_id: str) -> MutationResult:
        return self._mutate(
            admin_service.assign_custom_role, user_id, custom_role_id,
            success="Role assigned",
            failure="Error assigning role",
        )


class RoleWatcher(LiveFeed):
    """The viewer's role (``"user"`` for anonymous viewers)."""

    load_error_title = "Error fetching user role"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.role: str = Role.USER.value

    def interests(self) -> list[Interest]:
        return [("user_roles", None, ALL_EVENTS)]

    def fetch(self) -> str:
        if not self.ctx.user_id:
            return Role.USER.value
        return rpc.get_user_role(self.engine, self.ctx.user_id)

    def apply(self, data: str) -> None:
        self.role = data

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES
