"""
tests/test_discussion_service.py — Discussions, Replies & Likes
=================================================================
"""

from __future__ import annotations

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from agora.database.engine import get_session
from agora.database.models import DiscussionTag, Like, Reply, UserModeration
from agora.errors import (
    InvalidInputError,
    NotAuthenticatedError,
    NotFoundError,
    PermissionDeniedError,
)
from agora.services import discussion_service, reply_service
from agora.session import SessionContext
from conftest import as_user


def _count(engine, model) -> int:
    with Session(engine) as session:
        return session.scalar(select(func.count()).select_from(model))


def _moderate(engine, user_id: str, action: str, moderator: str, *, active: bool = True, expires_at=None):
    with get_session(engine) as session:
        session.add(UserModeration(
            user_id=user_id,
            moderator_id=moderator,
            action_type=action,
            reason="spam",
            is_active=active,
            expires_at=expires_at,
        ))


class TestCreateAndList:
    def test_create_returns_aggregate(self, db_engine, users):
        item = discussion_service.create_discussion(
            db_engine, as_user(users["alice"]), "  Hello  ", "World", ["python", " sql ", "python", ""],
        )
        assert item["title"] == "Hello"
        assert item["author_id"] == users["alice"]
        assert item["author"]["username"] == "alice"
        assert sorted(item["tags"]) == ["python", "sql"]
        assert item["likes_count"] == 0
        assert item["replies_count"] == 0
        assert item["user_liked"] is False

    def test_anonymous_cannot_create(self, db_engine, users):
        with pytest.raises(NotAuthenticatedError):
            discussion_service.create_discussion(db_engine, SessionContext.anonymous(), "t", "b")

    @pytest.mark.parametrize("title, body", [("", "b"), ("t", "   ")])
    def test_blank_fields_rejected_before_write(self, db_engine, users, title, body):
        with pytest.raises(InvalidInputError):
            discussion_service.create_discussion(db_engine, as_user(users["alice"]), title, body)
        assert discussion_service.list_discussions(db_engine, SessionContext.anonymous()) == []

    def test_banned_user_cannot_create(self, db_engine, users):
        _moderate(db_engine, users["alice"], "ban", users["mod"])
        with pytest.raises(PermissionDeniedError, match="banned"):
            discussion_service.create_discussion(db_engine, as_user(users["alice"]), "t", "b")

    def test_expired_or_inactive_ban_does_not_block(self, db_engine, users):
        from datetime import UTC, datetime, timedelta

        _moderate(db_engine, users["alice"], "ban", users["mod"], active=False)
        _moderate(
            db_engine, users["alice"], "ban", users["mod"],
            expires_at=datetime.now(UTC) - timedelta(days=1),
        )
        item = discussion_service.create_discussion(db_engine, as_user(users["alice"]), "t", "b")
        assert item["title"] == "t"

    def test_list_aggregates_counts_per_viewer(self, db_engine, users):
        alice, bob = as_user(users["alice"]), as_user(users["bob"])
        d1 = discussion_service.create_discussion(db_engine, alice, "first", "b")
        d2 = discussion_service.create_discussion(db_engine, bob, "second", "b")
        discussion_service.toggle_like(db_engine, bob, d1["id"])
        discussion_service.toggle_like(db_engine, alice, d1["id"])
        reply_service.create_reply(db_engine, bob, d1["id"], "nice")

        by_id = {d["id"]: d for d in discussion_service.list_discussions(db_engine, bob)}
        assert by_id[d1["id"]]["likes_count"] == 2
        assert by_id[d1["id"]]["replies_count"] == 1
        assert by_id[d1["id"]]["user_liked"] is True
        assert by_id[d2["id"]]["likes_count"] == 0
        assert by_id[d2["id"]]["user_liked"] is False

        anon = {d["id"]: d for d in discussion_service.list_discussions(db_engine, SessionContext.anonymous())}
        assert anon[d1["id"]]["user_liked"] is False

    def test_list_user_discussions(self, db_engine, users):
        alice = as_user(users["alice"])
        discussion_service.create_discussion(db_engine, alice, "mine", "b")
        discussion_service.create_discussion(db_engine, as_user(users["bob"]), "theirs", "b")
        rows = discussion_service.list_user_discussions(db_engine, alice, users["alice"])
        assert [r["title"] for r in rows] == ["mine"]

    def test_get_missing(self, db_engine, users):
        with pytest.raises(NotFoundError):
            discussion_service.get_discussion(db_engine, SessionContext.anonymous(), "missing")


class TestUpdateAndDelete:
    def test_author_updates_and_syncs_tags(self, db_engine, users):
        alice = as_user(users["alice"])
        d = discussion_service.create_discussion(db_engine, alice, "t", "b", ["python", "sql"])
        updated = discussion_service.update_discussion(
            db_engine, alice, d["id"], title="t2", tags=["sql", "rust"],
        )
        assert updated["title"] == "t2"
        assert updated["body"] == "b"
        assert sorted(updated["tags"]) == ["rust", "sql"]
        assert _count(db_engine, DiscussionTag) == 2

    def test_tags_none_leaves_tags_alone(self, db_engine, users):
        alice = as_user(users["alice"])
        d = discussion_service.create_discussion(db_engine, alice, "t", "b", ["python"])
        updated = discussion_service.update_discussion(db_engine, alice, d["id"], body="b2")
        assert updated["tags"] == ["python"]

    def test_non_author_rejected(self, db_engine, users):
        d = discussion_service.create_discussion(db_engine, as_user(users["alice"]), "t", "b")
        with pytest.raises(PermissionDeniedError):
            discussion_service.update_discussion(db_engine, as_user(users["bob"]), d["id"], title="x")
        with pytest.raises(PermissionDeniedError):
            discussion_service.delete_discussion(db_engine, as_user(users["bob"]), d["id"])

    def test_missing_is_not_found(self, db_engine, users):
        with pytest.raises(NotFoundError):
            discussion_service.delete_discussion(db_engine, as_user(users["alice"]), "missing")

    def test_delete_cascades(self, db_engine, users):
        alice, bob = as_user(users["alice"]), as_user(users["bob"])
        d = discussion_service.create_discussion(db_engine, alice, "t", "b", ["x"])
        r = reply_service.create_reply(db_engine, bob, d["id"], "hi")
        discussion_service.toggle_like(db_engine, bob, d["id"])
        reply_service.toggle_reply_like(db_engine, alice, r["id"])

        discussion_service.delete_discussion(db_engine, alice, d["id"])

        assert _count(db_engine, Reply) == 0
        assert _count(db_engine, Like) == 0
        assert _count(db_engine, DiscussionTag) == 0


class TestLikes:
    def test_toggle_flips_and_counts(self, db_engine, users):
        alice = as_user(users["alice"])
        d = discussion_service.create_discussion(db_engine, alice, "t", "b")
        first = discussion_service.toggle_like(db_engine, alice, d["id"])
        assert (first.liked, first.likes_count) == (True, 1)
        second = discussion_service.toggle_like(db_engine, alice, d["id"])
        assert (second.liked, second.likes_count) == (False, 0)

    def test_like_missing_target(self, db_engine, users):
        with pytest.raises(NotFoundError):
            discussion_service.toggle_like(db_engine, as_user(users["alice"]), "missing")

    def test_toggle_row_requires_one_target(self, db_engine, users):
        with pytest.raises(ValueError):
            discussion_service.toggle_like_row(db_engine, users["alice"])


class TestReplies:
    def test_replies_are_ascending_with_like_state(self, db_engine, users):
        alice, bob = as_user(users["alice"]), as_user(users["bob"])
        d = discussion_service.create_discussion(db_engine, alice, "t", "b")
        r1 = reply_service.create_reply(db_engine, bob, d["id"], "one")
        reply_service.create_reply(db_engine, alice, d["id"], "two")
        state = reply_service.toggle_reply_like(db_engine, alice, r1["id"])
        assert state.liked and state.likes_count == 1

        rows = reply_service.list_replies(db_engine, alice, d["id"])
        assert [r["content"] for r in rows] == ["one", "two"]
        assert rows[0]["user_liked"] is True
        assert rows[0]["author"]["username"] == "bob"

    def test_reply_to_missing_discussion(self, db_engine, users):
        with pytest.raises(NotFoundError):
            reply_service.create_reply(db_engine, as_user(users["bob"]), "missing", "hi")

    def test_blank_reply(self, db_engine, users):
        d = discussion_service.create_discussion(db_engine, as_user(users["alice"]), "t", "b")
        with pytest.raises(InvalidInputError):
            reply_service.create_reply(db_engine, as_user(users["bob"]), d["id"], "  ")

    def test_muted_user_cannot_reply(self, db_engine, users):
        d = discussion_service.create_discussion(db_engine, as_user(users["alice"]), "t", "b")
        _moderate(db_engine, users["bob"], "mute", users["mod"])
        with pytest.raises(PermissionDeniedError, match="muted: spam"):
            reply_service.create_reply(db_engine, as_user(users["bob"]), d["id"], "hi")
