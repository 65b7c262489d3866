"""
tests/test_notify.py — Change Capture & LISTEN Bridge Tests
=============================================================

Verifies that committed writes reach attached managers, rolled-back writes
do not, and that the cross-process listener routes NOTIFY payloads the way
the in-process path does (without a real PG connection).
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from agora.database.engine import get_session
from agora.database.models import AdminLog, Discussion, Profile
from agora.realtime.events import ChangeEvent, ChangeOp
from agora.realtime.notify import (
    PROCESS_ORIGIN,
    WATCHED_TABLES,
    PgChangeListener,
    queue_change,
    routing_columns,
)
from agora.realtime.subscriptions import SubscriptionManager
from conftest import ALICE, seed_profile


class TestCapture:
    def test_commit_publishes_insert(self, db_engine, manager):
        seen = []
        manager.subscribe("profiles", seen.append)
        seed_profile(db_engine, ALICE, "alice")
        assert len(seen) == 1
        assert seen[0].op is ChangeOp.INSERT
        assert seen[0].row["id"] == ALICE
        assert seen[0].origin == PROCESS_ORIGIN

    def test_rollback_publishes_nothing(self, db_engine, manager):
        seen = []
        manager.subscribe("profiles", seen.append)
        with pytest.raises(RuntimeError):
            with get_session(db_engine) as session:
                session.add(Profile(id=ALICE, username="alice"))
                session.flush()
                raise RuntimeError("abort")
        assert seen == []

    def test_update_and_delete_ops(self, db_engine, manager):
        seed_profile(db_engine, ALICE, "alice")
        ops = []
        manager.subscribe("discussions", lambda e: ops.append(e.op))

        with get_session(db_engine) as session:
            d = Discussion(author_id=ALICE, title="t", body="b")
            session.add(d)
        with get_session(db_engine) as session:
            session.get(Discussion, d.id).title = "t2"
        with get_session(db_engine) as session:
            session.delete(session.get(Discussion, d.id))

        assert ops == [ChangeOp.INSERT, ChangeOp.UPDATE, ChangeOp.DELETE]

    def test_unwatched_tables_are_not_published(self, db_engine, manager):
        seen = []
        manager.subscribe("admin_log", seen.append)
        with get_session(db_engine) as session:
            session.add(AdminLog(actor_id=ALICE, action_type="CREATE", target_table="x"))
        assert seen == []

    def test_filtered_subscriber_sees_only_its_rows(self, db_engine, manager):
        seed_profile(db_engine, ALICE, "alice")
        seen = []
        manager.subscribe("discussions", seen.append, filter=f"author_id=eq.{ALICE}")
        manager.subscribe("discussions", lambda e: None, filter="author_id=eq.nobody")
        with get_session(db_engine) as session:
            session.add(Discussion(author_id=ALICE, title="t", body="b"))
        assert len(seen) == 1

    def test_queue_change_rejects_unknown_table(self, db_engine):
        with get_session(db_engine) as session:
            with pytest.raises(ValueError, match="Invalid table name"):
                queue_change(session, "pg_catalog", ChangeOp.INSERT, {})

    def test_queue_change_publishes_on_commit(self, db_engine, manager):
        seen = []
        manager.subscribe("likes", seen.append)
        with get_session(db_engine) as session:
            queue_change(session, "likes", ChangeOp.DELETE, {"id": "l1", "reply_id": "r1"})
        assert [e.row["id"] for e in seen] == ["l1"]


class TestRoutingColumns:
    def test_keeps_ids_and_type_only(self):
        row = {"id": "1", "chat_id": "c", "type": "direct", "content": "hi", "name": "x"}
        assert routing_columns(row) == frozenset({"id", "chat_id", "type"})


class TestPgChangeListener:
    @pytest.fixture
    def listener(self):
        manager = MagicMock(spec=SubscriptionManager)
        return PgChangeListener(MagicMock(), manager)

    def _payload(self, table="replies", origin="other-host:1") -> str:
        return ChangeEvent(
            table=table, op=ChangeOp.INSERT, row={"id": "r1"}, origin=origin,
        ).to_payload()

    def test_foreign_payload_published(self, listener):
        assert listener.handle_payload(self._payload()) is True
        listener._manager.publish.assert_called_once()
        event = listener._manager.publish.call_args.args[0]
        assert event.table == "replies"
        assert event.row == {"id": "r1"}

    def test_own_payload_skipped(self, listener):
        assert listener.handle_payload(self._payload(origin=PROCESS_ORIGIN)) is False
        listener._manager.publish.assert_not_called()

    def test_unknown_table_ignored(self, listener):
        assert listener.handle_payload(self._payload(table="secrets")) is False
        listener._manager.publish.assert_not_called()

    def test_invalid_payload_ignored(self, listener):
        assert listener.handle_payload("{not json") is False
        assert listener.handle_payload(json.dumps({"op": "INSERT"})) is False
        listener._manager.publish.assert_not_called()

    def test_initial_health_state(self, listener):
        assert listener.healthy is False
        assert listener.failed is False

    def test_backoff_grows_and_caps(self):
        listener = PgChangeListener(MagicMock(), MagicMock(), base_backoff=1.0, max_backoff=8.0)
        for attempt, base in [(1, 1.0), (2, 2.0), (3, 4.0), (4, 8.0), (10, 8.0)]:
            delay = listener.backoff_delay(attempt)
            assert base <= delay <= base * 1.5

    def test_every_watched_table_accepted(self, listener):
        for table in WATCHED_TABLES:
            assert listener.handle_payload(self._payload(table=table)) is True
