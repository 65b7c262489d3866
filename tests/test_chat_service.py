"""
tests/test_chat_service.py — Chats, Messages & Attachments
============================================================

Both chat-list paths (batched client path and the single-statement server
function) must return the same shape and ordering.
"""

from __future__ import annotations

import pytest
from sqlalchemy import delete

from agora.database.engine import get_session
from agora.database.models import Chat, Profile, UserModeration
from agora.errors import InvalidInputError, NotFoundError, PermissionDeniedError
from agora.services import chat_service, message_service
from agora.services.chat_service import direct_key
from conftest import as_user, seed_profile


class TestDirectChats:
    def test_key_is_order_independent(self):
        assert direct_key("b", "a") == direct_key("a", "b") == "a:b"

    def test_get_or_create_is_idempotent(self, db_engine, users):
        first = chat_service.get_or_create_direct_chat(db_engine, as_user(users["alice"]), users["bob"])
        again = chat_service.get_or_create_direct_chat(db_engine, as_user(users["bob"]), users["alice"])
        assert first == again

        chats = chat_service.list_chats(db_engine, as_user(users["alice"]))
        assert len(chats) == 1
        assert chats[0]["type"] == "direct"
        assert sorted(p["user_id"] for p in chats[0]["participants"]) == sorted(
            [users["alice"], users["bob"]]
        )

    @pytest.mark.parametrize("other", ["", None])
    def test_blank_other_rejected(self, db_engine, users, other):
        with pytest.raises(InvalidInputError):
            chat_service.get_or_create_direct_chat(db_engine, as_user(users["alice"]), other)

    def test_self_chat_rejected(self, db_engine, users):
        with pytest.raises(InvalidInputError):
            chat_service.get_or_create_direct_chat(db_engine, as_user(users["alice"]), users["alice"])

    def test_unknown_user_rejected(self, db_engine, users):
        with pytest.raises(NotFoundError):
            chat_service.get_or_create_direct_chat(db_engine, as_user(users["alice"]), "ghost")
        assert chat_service.list_chats(db_engine, as_user(users["alice"])) == []


class TestGroupChats:
    def test_creator_is_always_a_member(self, db_engine, users):
        chat_id = chat_service.create_group_chat(
            db_engine, as_user(users["alice"]), " Team ", [users["bob"], users["bob"], ""],
        )
        chats = chat_service.list_chats(db_engine, as_user(users["bob"]))
        assert [c["id"] for c in chats] == [chat_id]
        assert chats[0]["name"] == "Team"
        assert len(chats[0]["participants"]) == 2

    def test_blank_name_rejected(self, db_engine, users):
        with pytest.raises(InvalidInputError):
            chat_service.create_group_chat(db_engine, as_user(users["alice"]), "  ", [users["bob"]])

    def test_unknown_member_rejected(self, db_engine, users):
        with pytest.raises(NotFoundError):
            chat_service.create_group_chat(
                db_engine, as_user(users["alice"]), "Team", [users["bob"], "ghost"],
            )
        assert chat_service.list_chats(db_engine, as_user(users["bob"])) == []


class TestChatListPaths:
    @pytest.fixture
    def chats(self, db_engine, users):
        alice = as_user(users["alice"])
        direct = chat_service.get_or_create_direct_chat(db_engine, alice, users["bob"])
        group = chat_service.create_group_chat(db_engine, alice, "Team", [users["bob"], users["carol"]])
        empty = chat_service.create_group_chat(db_engine, alice, "Quiet", [])
        message_service.send_message(db_engine, alice, direct, "first")
        message_service.send_message(db_engine, as_user(users["bob"]), direct, "second")
        message_service.send_message(db_engine, alice, group, "hello team")
        return {"direct": direct, "group": group, "empty": empty}

    def test_last_message_and_ordering(self, db_engine, users, chats):
        rows = chat_service.list_chats(db_engine, as_user(users["alice"]))
        # Posting bumps updated_at: group was written last, the empty group never
        assert [r["id"] for r in rows][0] == chats["group"]
        by_id = {r["id"]: r for r in rows}
        assert by_id[chats["direct"]]["last_message"]["content"] == "second"
        assert by_id[chats["direct"]]["last_message"]["sender_id"] == users["bob"]
        assert by_id[chats["empty"]]["last_message"] is None

    def test_server_path_matches_client_path(self, db_engine, users, chats):
        client_side = chat_service.list_chats(db_engine, as_user(users["alice"]))
        server_side = chat_service.get_user_chats(db_engine, users["alice"])
        assert server_side == client_side

    def test_only_own_chats(self, db_engine, users, chats):
        carol = chat_service.list_chats(db_engine, as_user(users["carol"]))
        assert [c["id"] for c in carol] == [chats["group"]]
        assert chat_service.get_user_chats(db_engine, "nobody") == []

    def test_participant_without_profile(self, db_engine, users):
        seed_profile(db_engine, "ghost", "ghost")
        chat_id = chat_service.get_or_create_direct_chat(db_engine, as_user(users["alice"]), "ghost")
        with get_session(db_engine) as session:
            session.execute(delete(Profile).where(Profile.id == "ghost"))
        rows = chat_service.get_user_chats(db_engine, users["alice"])
        ghost = next(p for p in rows[0]["participants"] if p["user_id"] == "ghost")
        assert ghost["profile"] == {"username": None, "full_name": None, "avatar_url": None}
        assert rows[0]["id"] == chat_id


class TestMessages:
    @pytest.fixture
    def chat_id(self, db_engine, users):
        return chat_service.get_or_create_direct_chat(db_engine, as_user(users["alice"]), users["bob"])

    def test_send_and_list(self, db_engine, users, chat_id):
        message_service.send_message(db_engine, as_user(users["alice"]), chat_id, " hi ")
        message_service.send_message(db_engine, as_user(users["bob"]), chat_id, "yo")
        rows = message_service.list_messages(db_engine, as_user(users["bob"]), chat_id)
        assert [m["content"] for m in rows] == ["hi", "yo"]
        assert rows[0]["sender"]["username"] == "alice"
        assert rows[0]["message_type"] == "text"

    def test_send_bumps_chat_updated_at(self, db_engine, users, chat_id):
        with get_session(db_engine) as session:
            before = session.get(Chat, chat_id).updated_at
        message_service.send_message(db_engine, as_user(users["alice"]), chat_id, "hi")
        with get_session(db_engine) as session:
            assert session.get(Chat, chat_id).updated_at > before

    def test_outsider_rejected(self, db_engine, users, chat_id):
        with pytest.raises(PermissionDeniedError):
            message_service.send_message(db_engine, as_user(users["carol"]), chat_id, "hi")
        with pytest.raises(PermissionDeniedError):
            message_service.list_messages(db_engine, as_user(users["carol"]), chat_id)

    def test_unknown_chat(self, db_engine, users):
        with pytest.raises(NotFoundError):
            message_service.send_message(db_engine, as_user(users["alice"]), "missing", "hi")

    def test_blank_message(self, db_engine, users, chat_id):
        with pytest.raises(InvalidInputError):
            message_service.send_message(db_engine, as_user(users["alice"]), chat_id, "   ")

    def test_muted_user_cannot_send(self, db_engine, users, chat_id):
        with get_session(db_engine) as session:
            session.add(UserModeration(
                user_id=users["alice"], moderator_id=users["mod"], action_type="mute",
            ))
        with pytest.raises(PermissionDeniedError, match="muted"):
            message_service.send_message(db_engine, as_user(users["alice"]), chat_id, "hi")

    @pytest.mark.parametrize("mime, expected", [
        ("image/png", "image"),
        ("video/mp4", "video"),
        ("application/pdf", "file"),
        (None, "file"),
    ])
    def test_file_message_type_from_mime(self, db_engine, users, chat_id, mime, expected):
        msg = message_service.send_file_message(
            db_engine, as_user(users["alice"]), chat_id,
            file_name="x", mime_type=mime, file_size=3, file_url="https://cdn.example.com/x",
        )
        assert msg["message_type"] == expected
        assert msg["content"] is None
        assert msg["file_url"] == "https://cdn.example.com/x"

    def test_blob_url_stored_as_given(self, db_engine, users, chat_id, caplog):
        msg = message_service.send_file_message(
            db_engine, as_user(users["alice"]), chat_id,
            file_name="a.png", mime_type="image/png", file_size=10, file_url="blob:http://x/123",
        )
        assert msg["file_url"] == "blob:http://x/123"
        assert "browser-local" in caplog.text
        assert message_service.describe_attachment(msg)["available"] is False

    def test_upload_and_send(self, db_engine, users, chat_id, storage):
        msg = message_service.upload_and_send_file(
            db_engine, as_user(users["alice"]), storage, chat_id,
            file_name="report.pdf", content=b"%PDF", mime_type="application/pdf",
        )
        assert msg["file_url"].startswith(f"/api/storage/{users['alice']}/chat-files/")
        assert msg["file_url"].endswith(".pdf")
        assert msg["file_size"] == 4
        info = message_service.describe_attachment(msg, storage)
        assert info["available"] is True

        storage.delete(msg["file_url"])
        assert message_service.describe_attachment(msg, storage)["available"] is False

    def test_upload_by_outsider_stores_nothing(self, db_engine, users, chat_id, storage):
        with pytest.raises(PermissionDeniedError):
            message_service.upload_and_send_file(
                db_engine, as_user(users["carol"]), storage, chat_id,
                file_name="x.txt", content=b"x",
            )
        assert not (storage.root / users["carol"]).exists()

    def test_describe_text_message(self):
        info = message_service.describe_attachment({"message_type": "text", "content": "hi"})
        assert info == {"url": None, "name": None, "size": None, "type": "text", "available": False}
