"""
tests/test_admin_service.py — Roles, Moderation & Audit Trail
===============================================================
"""

from __future__ import annotations

import pytest

from agora.errors import (
    ConflictError,
    InvalidInputError,
    NotFoundError,
    PermissionDeniedError,
)
from agora.services import admin_service, rpc
from conftest import as_user


class TestAccessControl:
    def test_overview_requires_staff(self, db_engine, users):
        with pytest.raises(PermissionDeniedError):
            admin_service.get_admin_overview(db_engine, as_user(users["alice"]))
        overview = admin_service.get_admin_overview(db_engine, as_user(users["mod"]))
        roles = {u["username"]: u["role"] for u in overview["users"]}
        assert roles["alice"] == "user"
        assert roles["root"] == "admin"
        assert roles["mod"] == "moderator"

    def test_role_changes_are_admin_only(self, db_engine, users):
        with pytest.raises(PermissionDeniedError):
            admin_service.update_user_role(db_engine, as_user(users["mod"]), users["alice"], "admin")

    def test_unknown_role_rejected(self, db_engine, users):
        with pytest.raises(InvalidInputError):
            admin_service.update_user_role(db_engine, as_user(users["admin"]), users["alice"], "owner")


class TestRoles:
    def test_upsert_role_and_audit(self, db_engine, users):
        admin = as_user(users["admin"])
        admin_service.update_user_role(db_engine, admin, users["alice"], "moderator")
        admin_service.update_user_role(db_engine, admin, users["alice"], "user")
        assert rpc.get_user_role(db_engine, users["alice"]) == "user"

        log = admin_service.get_audit_log(db_engine, admin)
        assert log["total"] == 2
        newest, oldest = log["entries"]
        assert oldest["action_type"] == "CREATE"
        assert newest["action_type"] == "UPDATE"
        assert newest["before_snapshot"]["role"] == "moderator"
        assert newest["after_snapshot"]["role"] == "user"
        assert newest["actor_id"] == users["admin"]

    def test_rpc_role_defaults_to_user(self, db_engine, users):
        assert rpc.get_user_role(db_engine, "nobody") == "user"


class TestModeration:
    def test_moderate_and_deactivate(self, db_engine, users):
        mod = as_user(users["mod"])
        row = admin_service.moderate_user(db_engine, mod, users["bob"], "ban", reason=" spam ")
        assert row["is_active"] is True
        assert row["reason"] == "spam"
        assert rpc.is_user_moderated(db_engine, users["bob"], "ban") is True
        assert rpc.is_user_moderated(db_engine, users["bob"], "mute") is False

        overview = admin_service.get_admin_overview(db_engine, mod)
        [action] = overview["moderation_actions"]
        assert action["username"] == "bob"
        assert action["full_name"] == "Bob Brown"

        admin_service.deactivate_moderation_action(db_engine, mod, row["id"])
        assert rpc.is_user_moderated(db_engine, users["bob"], "ban") is False
        assert admin_service.get_admin_overview(db_engine, mod)["moderation_actions"] == []

    def test_deactivate_twice_is_noop(self, db_engine, users):
        mod = as_user(users["mod"])
        row = admin_service.moderate_user(db_engine, mod, users["bob"], "mute")
        admin_service.deactivate_moderation_action(db_engine, mod, row["id"])
        again = admin_service.deactivate_moderation_action(db_engine, mod, row["id"])
        assert again["is_active"] is False

    def test_deactivate_missing(self, db_engine, users):
        with pytest.raises(NotFoundError):
            admin_service.deactivate_moderation_action(db_engine, as_user(users["mod"]), "missing")

    def test_cannot_moderate_self(self, db_engine, users):
        with pytest.raises(InvalidInputError):
            admin_service.moderate_user(db_engine, as_user(users["mod"]), users["mod"], "ban")

    def test_plain_user_cannot_moderate(self, db_engine, users):
        with pytest.raises(PermissionDeniedError):
            admin_service.moderate_user(db_engine, as_user(users["alice"]), users["bob"], "ban")

    def test_unknown_action(self, db_engine, users):
        with pytest.raises(InvalidInputError):
            admin_service.moderate_user(db_engine, as_user(users["mod"]), users["bob"], "kick")
        with pytest.raises(InvalidInputError):
            rpc.is_user_moderated(db_engine, users["bob"], "kick")


class TestCustomRoles:
    def test_create_assign_and_lookup(self, db_engine, users):
        admin = as_user(users["admin"])
        role = admin_service.create_custom_role(db_engine, admin, "Helper", color="#22cc88")
        admin_service.assign_custom_role(db_engine, admin, users["alice"], role["id"])
        admin_service.assign_custom_role(db_engine, admin, users["alice"], role["id"])

        assert rpc.get_user_custom_role(db_engine, users["alice"]) == [
            {"name": "Helper", "color": "#22cc88"}
        ]
        assert rpc.get_user_custom_role(db_engine, users["bob"]) == []
        # create + one assignment; the repeat assignment is not audited
        assert admin_service.get_audit_log(db_engine, admin)["total"] == 2

    def test_duplicate_name(self, db_engine, users):
        admin = as_user(users["admin"])
        admin_service.create_custom_role(db_engine, admin, "Helper")
        with pytest.raises(ConflictError):
            admin_service.create_custom_role(db_engine, admin, "Helper")

    @pytest.mark.parametrize("color", ["red", "#12345", "#zzzzzz", ""])
    def test_bad_color(self, db_engine, users, color):
        with pytest.raises(InvalidInputError):
            admin_service.create_custom_role(db_engine, as_user(users["admin"]), "X", color=color)

    def test_assign_unknown_role(self, db_engine, users):
        with pytest.raises(NotFoundError):
            admin_service.assign_custom_role(db_engine, as_user(users["admin"]), users["alice"], "missing")

    def test_audit_log_is_admin_only(self, db_engine, users):
        with pytest.raises(PermissionDeniedError):
            admin_service.get_audit_log(db_engine, as_user(users["mod"]))
