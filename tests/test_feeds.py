"""
tests/test_feeds.py — Live Feed Integration Tests
===================================================

Feeds are opened against a real (SQLite) engine with the change-capture
hooks attached, so every committed write re-fetches the subscribed feeds.
"""

from __future__ import annotations

from agora.feeds.admin import AdminPanel, RoleWatcher
from agora.feeds.bounties import BountyFeed
from agora.feeds.chats import ChatListFeed, MessageFeed
from agora.feeds.discussions import DiscussionFeed, ReplyThread
from agora.feeds.profiles import FollowPanel, ProfileFeed
from agora.services import chat_service, discussion_service, message_service
from agora.session import SessionContext
from conftest import as_user


def _count_refreshes(feed) -> list[int]:
    """Wrap ``feed.refresh`` and return a one-element counter."""
    calls = [0]
    original = feed.refresh

    def counting():
        calls[0] += 1
        return original()

    feed.refresh = counting
    return calls


class TestLiveFeedLifecycle:
    def test_open_subscribes_and_close_releases(self, db_engine, manager, users):
        feed = DiscussionFeed(db_engine, manager, as_user(users["alice"])).open()
        assert feed.is_open
        assert feed.loading is False
        assert manager.refcount("discussions") == 1
        feed.close()
        assert not feed.is_open
        assert manager.topics() == {}

    def test_context_manager(self, db_engine, manager, users):
        with DiscussionFeed(db_engine, manager, as_user(users["alice"])) as feed:
            assert feed.is_open
        assert manager.topics() == {}

    def test_fetch_failure_is_reported_not_raised(self, db_engine, manager, users, notices):
        panel = AdminPanel(db_engine, manager, as_user(users["alice"]), notifier=notices).open()
        assert panel.error == "Insufficient role for this action"
        assert notices.titles == ["Failed to load admin dashboard data"]
        assert notices.notices[0].destructive
        panel.close()


class TestDiscussionFeed:
    def test_commit_from_elsewhere_refreshes(self, db_engine, manager, users):
        feed = DiscussionFeed(db_engine, manager, as_user(users["alice"])).open()
        assert feed.discussions == []
        discussion_service.create_discussion(db_engine, as_user(users["bob"]), "t", "b")
        assert [d["title"] for d in feed.discussions] == ["t"]
        feed.close()

    def test_create_and_like_through_feed(self, db_engine, manager, users, notices):
        feed = DiscussionFeed(db_engine, manager, as_user(users["alice"]), notifier=notices).open()
        created = feed.create("Hello", "World", ["intro"])
        assert created
        assert notices.titles == ["Discussion created!"]
        d_id = created.value["id"]

        liked = feed.toggle_like(d_id)
        assert liked.value.liked is True
        assert feed.get(d_id)["likes_count"] == 1
        assert feed.get(d_id)["user_liked"] is True
        feed.close()

    def test_rejected_mutation_leaves_state(self, db_engine, manager, users, notices):
        feed = DiscussionFeed(db_engine, manager, SessionContext.anonymous(), notifier=notices).open()
        result = feed.create("t", "b")
        assert not result
        assert result.code == "not_authenticated"
        assert notices.notices[-1].title == "Error creating discussion"
        assert notices.notices[-1].destructive
        assert feed.discussions == []
        feed.close()

    def test_delete_removes_locally(self, db_engine, manager, users):
        alice = as_user(users["alice"])
        d = discussion_service.create_discussion(db_engine, alice, "t", "b")
        feed = DiscussionFeed(db_engine, manager, alice).open()
        assert feed.delete(d["id"])
        assert feed.get(d["id"]) is None
        feed.close()

    def test_author_scoped_feed(self, db_engine, manager, users):
        discussion_service.create_discussion(db_engine, as_user(users["alice"]), "mine", "b")
        discussion_service.create_discussion(db_engine, as_user(users["bob"]), "theirs", "b")
        feed = DiscussionFeed(
            db_engine, manager, SessionContext.anonymous(), author_id=users["bob"],
        ).open()
        assert [d["title"] for d in feed.discussions] == ["theirs"]
        feed.close()

    def test_viewer_change_refetches(self, db_engine, manager, users):
        ctx = as_user(users["alice"])
        d = discussion_service.create_discussion(db_engine, ctx, "t", "b")
        discussion_service.toggle_like(db_engine, ctx, d["id"])
        feed = DiscussionFeed(db_engine, manager, ctx).open()
        assert feed.get(d["id"])["user_liked"] is True
        ctx.sign_out()
        assert feed.get(d["id"])["user_liked"] is False
        feed.close()


class TestReplyThread:
    def test_window_and_live_updates(self, db_engine, manager, users):
        alice = as_user(users["alice"])
        d = discussion_service.create_discussion(db_engine, alice, "t", "b")
        other = discussion_service.create_discussion(db_engine, alice, "other", "b")
        thread = ReplyThread(db_engine, manager, alice, discussion_id=d["id"], reply_window=3).open()
        refreshes = _count_refreshes(thread)

        for i in range(5):
            assert thread.post(f"reply {i}")
        assert len(thread.replies) == 5
        assert [r["content"] for r in thread.visible_replies] == ["reply 2", "reply 3", "reply 4"]
        assert thread.hidden_count == 2

        thread.show_all()
        assert len(thread.visible_replies) == 5
        assert thread.hidden_count == 0
        thread.collapse()
        assert thread.hidden_count == 2

        # A reply elsewhere does not touch this thread
        before = refreshes[0]
        ReplyThread(db_engine, manager, alice, discussion_id=other["id"]).post("elsewhere")
        assert refreshes[0] == before
        thread.close()

    def test_reply_like(self, db_engine, manager, users):
        alice = as_user(users["alice"])
        d = discussion_service.create_discussion(db_engine, alice, "t", "b")
        thread = ReplyThread(db_engine, manager, alice, discussion_id=d["id"]).open()
        reply_id = thread.post("hi").value["id"]
        assert thread.toggle_like(reply_id)
        assert thread.replies[0]["likes_count"] == 1
        assert thread.replies[0]["user_liked"] is True
        thread.close()


class TestBountyFeed:
    def test_crud_through_feed(self, db_engine, manager, users, notices):
        feed = BountyFeed(db_engine, manager, as_user(users["alice"]), notifier=notices).open()
        created = feed.create(title="Docs", description="Write them", price="10")
        assert created
        assert len(feed.bounties) == 1

        bad = feed.create(title="Docs", description="x", price="-1")
        assert not bad
        assert bad.code == "invalid_input"

        assert feed.update(created.value["id"], status="in_progress")
        assert feed.bounties[0]["status"] == "in_progress"
        assert feed.delete(created.value["id"])
        assert feed.bounties == []
        feed.close()


class TestChatFeeds:
    def test_one_refetch_per_commit(self, db_engine, manager, users):
        alice = as_user(users["alice"])
        chat_id = chat_service.get_or_create_direct_chat(db_engine, alice, users["bob"])
        feed = ChatListFeed(db_engine, manager, alice).open()
        refreshes = _count_refreshes(feed)

        # Inserts a message and bumps the chat row in the same transaction
        message_service.send_message(db_engine, as_user(users["bob"]), chat_id, "ping")
        assert refreshes[0] == 1
        assert feed.chats[0]["last_message"]["content"] == "ping"
        feed.close()

    def test_anonymous_chat_list_is_empty(self, db_engine, manager, users):
        feed = ChatListFeed(db_engine, manager, SessionContext.anonymous()).open()
        assert feed.chats == []
        assert feed.error is None
        feed.close()

    def test_create_chats_through_feed(self, db_engine, manager, users):
        feed = ChatListFeed(db_engine, manager, as_user(users["alice"])).open()
        direct = feed.create_direct_chat(users["bob"])
        group = feed.create_group_chat("Team", [users["bob"]])
        assert direct and group
        assert {c["id"] for c in feed.chats} == {direct.value, group.value}
        assert not feed.create_direct_chat(users["alice"])
        feed.close()

    def test_message_feed_follows_its_chat_only(self, db_engine, manager, users):
        alice, bob = as_user(users["alice"]), as_user(users["bob"])
        chat_id = chat_service.get_or_create_direct_chat(db_engine, alice, users["bob"])
        other_id = chat_service.get_or_create_direct_chat(db_engine, alice, users["carol"])
        feed = MessageFeed(db_engine, manager, alice, chat_id=chat_id).open()
        refreshes = _count_refreshes(feed)

        message_service.send_message(db_engine, alice, other_id, "not here")
        assert refreshes[0] == 0
        message_service.send_message(db_engine, bob, chat_id, "here")
        assert [m["content"] for m in feed.messages] == ["here"]
        feed.close()

    def test_message_feed_without_chat(self, db_engine, manager, users, notices):
        feed = MessageFeed(db_engine, manager, as_user(users["alice"]), chat_id=None, notifier=notices).open()
        assert feed.messages == []
        result = feed.send("hi")
        assert not result
        assert result.code == "invalid_input"
        assert notices.notices[-1].description == "No chat selected"
        feed.close()

    def test_upload_and_attachments(self, db_engine, manager, users, storage):
        alice = as_user(users["alice"])
        chat_id = chat_service.get_or_create_direct_chat(db_engine, alice, users["bob"])
        feed = MessageFeed(db_engine, manager, alice, chat_id=chat_id).open()
        assert feed.upload_file(storage, file_name="cat.jpg", content=b"jpg", mime_type="image/jpeg")
        assert feed.send_file(
            file_name="local.png", mime_type="image/png", file_size=1, file_url="blob:http://x/1",
        )
        [uploaded, local] = feed.attachments(storage)
        assert uploaded["type"] == "image"
        assert uploaded["available"] is True
        assert local["available"] is False
        feed.close()


class TestProfileFeeds:
    def test_profile_feed_tracks_updates(self, db_engine, manager, users):
        alice = as_user(users["alice"])
        own = ProfileFeed(db_engine, manager, alice).open()
        watcher = ProfileFeed(db_engine, manager, as_user(users["bob"]), user_id=users["alice"]).open()
        assert own.update(status_message="hello")
        assert own.profile["status_message"] == "hello"
        assert watcher.profile["status_message"] == "hello"
        own.close()
        watcher.close()

    def test_follow_panel(self, db_engine, manager, users, notices):
        panel = FollowPanel(
            db_engine, manager, as_user(users["alice"]), user_id=users["bob"], notifier=notices,
        ).open()
        assert panel.followers == []
        assert panel.is_following is False

        assert panel.toggle()
        assert panel.is_following is True
        assert [f["follower_id"] for f in panel.followers] == [users["alice"]]
        assert notices.titles[-1] == "Following"

        assert panel.toggle()
        assert panel.followers == []
        assert notices.titles[-1] == "Unfollowed"
        panel.close()


class TestAdminFeeds:
    def test_role_watcher_follows_role_changes(self, db_engine, manager, users):
        ctx = as_user(users["alice"])
        watcher = RoleWatcher(db_engine, manager, ctx).open()
        assert watcher.role == "user"
        assert not watcher.is_staff

        panel = AdminPanel(db_engine, manager, as_user(users["admin"])).open()
        assert panel.update_user_role(users["alice"], "moderator")
        assert watcher.role == "moderator"
        assert watcher.is_staff and not watcher.is_admin

        ctx.sign_out()
        assert watcher.role == "user"
        watcher.close()
        panel.close()

    def test_admin_panel_refetches_after_mutation(self, db_engine, manager, users):
        panel = AdminPanel(db_engine, manager, as_user(users["mod"])).open()
        assert panel.moderation_actions == []
        result = panel.moderate_user(users["bob"], "mute", reason="flood")
        assert result
        assert [a["username"] for a in panel.moderation_actions] == ["bob"]

        assert panel.deactivate_moderation_action(result.value["id"])
        assert panel.moderation_actions == []
        assert not panel.create_custom_role("Nope")
        panel.close()
