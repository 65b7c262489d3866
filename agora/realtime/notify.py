"""
agora.realtime.notify — Change capture with PG LISTEN/NOTIFY fan-out
=====================================================================

Row changes to watched tables are captured from every SQLAlchemy
:class:`~sqlalchemy.orm.Session` flush and published once the transaction
commits:

1. ``after_flush``   — record INSERT/UPDATE/DELETE of watched rows.
2. ``before_commit`` — on PostgreSQL, ``pg_notify('agora_changes', …)`` so
   other processes learn about the change (delivered only on commit).
3. ``after_commit``  — publish the batch to every
   :class:`~agora.realtime.subscriptions.SubscriptionManager` attached to
   the session's engine.
4. ``after_rollback`` — discard the batch.

:class:`PgChangeListener` is the receiving end in other processes: a
background thread LISTENing on the channel that republishes events into the
local manager, skipping events this process already delivered in-process.
"""

from __future__ import annotations

import logging
import os
import random
import select as _select
import socket
import threading
import uuid
import weakref
from typing import TYPE_CHECKING, Any

from sqlalchemy import event, text
from sqlalchemy.orm import Session

from agora.realtime.events import ChangeEvent, ChangeOp

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from agora.realtime.subscriptions import SubscriptionManager

logger = logging.getLogger(__name__)

# The PG channel carrying row-change payloads
NOTIFY_CHANNEL = "agora_changes"

# Tables whose changes are captured and fanned out.
WATCHED_TABLES: frozenset[str] = frozenset({
    "profiles",
    "discussions",
    "discussion_tags",
    "replies",
    "likes",
    "bounties",
    "bounty_tags",
    "chats",
    "chat_participants",
    "messages",
    "follows",
    "user_roles",
    "custom_roles",
    "user_custom_roles",
    "user_moderation",
})

# Identifies this process in NOTIFY payloads
PROCESS_ORIGIN = f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"

_PENDING_KEY = "agora_pending_changes"
_NOTIFIED_KEY = "agora_notified_count"

_managers: weakref.WeakKeyDictionary[Engine, list[SubscriptionManager]] = (
    weakref.WeakKeyDictionary()
)
_managers_lock = threading.Lock()


# ---------------------------------------------------------------------------
# Manager registry
# ---------------------------------------------------------------------------
def attach_manager(engine: Engine, manager: SubscriptionManager) -> None:
    """Deliver committed changes on *engine* to *manager*."""
    with _managers_lock:
        managers = _managers.setdefault(engine, [])
        if manager not in managers:
            managers.append(manager)


def detach_manager(engine: Engine, manager: SubscriptionManager) -> None:
    with _managers_lock:
        managers = _managers.get(engine, [])
        if manager in managers:
            managers.remove(manager)


def _managers_for(session: Session) -> list[SubscriptionManager]:
    bind = session.bind
    if bind is None:
        return []
    engine = getattr(bind, "engine", bind)
    with _managers_lock:
        return list(_managers.get(engine, []))


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------
def row_snapshot(obj: Any) -> dict[str, Any]:
    """Column values of an ORM instance keyed by column name."""
    return {col.name: getattr(obj, col.key, None) for col in obj.__table__.columns}


def routing_columns(row: dict[str, Any]) -> frozenset[str]:
    """Columns safe to broadcast: ``id``, foreign keys and ``type``."""
    return frozenset(k for k in row if k == "id" or k.endswith("_id") or k == "type")


def queue_change(session: Session, table: str, op: ChangeOp, row: dict[str, Any]) -> None:
    """Record a change for publication when *session* commits.

    Used directly for bulk statements that bypass the ORM flush.

    Raises
    ------
    ValueError
        If *table* is not a watched table.
    """
    if table not in WATCHED_TABLES:
        raise ValueError(
            f"Invalid table name for change capture: '{table}'. "
            f"Allowed: {sorted(WATCHED_TABLES)}"
        )
    session.info.setdefault(_PENDING_KEY, []).append(
        ChangeEvent(table=table, op=op, row=row, origin=PROCESS_ORIGIN)
    )


def _capture(session: Session, objects, op: ChangeOp) -> None:
    for obj in objects:
        table = getattr(obj, "__tablename__", None)
        if table not in WATCHED_TABLES:
            continue
        if op is ChangeOp.UPDATE and not session.is_modified(obj, include_collections=False):
            continue
        queue_change(session, table, op, row_snapshot(obj))


def _after_flush(session: Session, flush_context) -> None:
    _capture(session, list(session.new), ChangeOp.INSERT)
    _capture(session, list(session.dirty), ChangeOp.UPDATE)
    _capture(session, list(session.deleted), ChangeOp.DELETE)


def _before_commit(session: Session) -> None:
    """Emit pending changes through ``pg_notify`` inside the transaction."""
    session.flush()
    pending: list[ChangeEvent] = session.info.get(_PENDING_KEY, [])
    sent = session.info.get(_NOTIFIED_KEY, 0)
    if len(pending) <= sent:
        return
    bind = session.get_bind()
    if bind.dialect.name != "postgresql":
        return
    for change in pending[sent:]:
        payload = change.to_payload(routing_columns(change.row))
        session.execute(
            text("SELECT pg_notify(:channel, :payload)"),
            {"channel": NOTIFY_CHANNEL, "payload": payload},
        )
    session.info[_NOTIFIED_KEY] = len(pending)


def _after_commit(session: Session) -> None:
    pending: list[ChangeEvent] = session.info.pop(_PENDING_KEY, [])
    session.info.pop(_NOTIFIED_KEY, None)
    if not pending:
        return
    for manager in _managers_for(session):
        manager.publish_many(pending)


def _after_rollback(session: Session) -> None:
    dropped = session.info.pop(_PENDING_KEY, [])
    session.info.pop(_NOTIFIED_KEY, None)
    if dropped:
        logger.debug("Discarded %d uncommitted change(s)", len(dropped))


def install_hooks() -> None:
    """Register the session hooks (idempotent)."""
    for name, fn in (
        ("after_flush", _after_flush),
        ("before_commit", _before_commit),
        ("after_commit", _after_commit),
        ("after_rollback", _after_rollback),
    ):
        if not event.contains(Session, name, fn):
            event.listen(Session, name, fn)


install_hooks()


# ---------------------------------------------------------------------------
# Cross-process listener
# ---------------------------------------------------------------------------
class PgChangeListener:
    """Background LISTEN thread feeding a local :class:`SubscriptionManager`.

    Usage::

        listener = PgChangeListener(engine, manager)
        listener.start()
        ...
        listener.stop()
    """

    def __init__(
        self,
        engine: Engine,
        manager: SubscriptionManager,
        *,
        max_reconnect_attempts: int = 10,
        base_backoff: float = 1.0,
        max_backoff: float = 60.0,
    ) -> None:
        self._engine = engine
        self._manager = manager
        self._max_attempts = max_reconnect_attempts
        self._base_backoff = base_backoff
        self._max_backoff = max_backoff
        self._healthy = False
        self._failed = False
        self._thread: threading.Thread | None = None
        self._shutdown = threading.Event()

    @property
    def healthy(self) -> bool:
        """True while the LISTEN connection is alive."""
        return self._healthy and not self._failed

    @property
    def failed(self) -> bool:
        """True once reconnect attempts are exhausted."""
        return self._failed

    def handle_payload(self, raw: str) -> bool:
        """Parse one NOTIFY payload and publish it.  Returns True if published."""
        try:
            change = ChangeEvent.from_payload(raw)
        except ValueError:
            logger.warning("Invalid change payload: %s", raw)
            return False
        if change.origin == PROCESS_ORIGIN:
            return False
        if change.table not in WATCHED_TABLES:
            logger.warning("Unknown table in NOTIFY: %s — ignoring", change.table)
            return False
        self._manager.publish(change)
        return True

    def backoff_delay(self, attempt: int) -> float:
        backoff = min(self._base_backoff * (2 ** (attempt - 1)), self._max_backoff)
        return backoff + random.uniform(0, backoff * 0.5)

    def start(self) -> None:
        import psycopg2

        def _listen_thread() -> None:
            # str(engine.url) masks the password; psycopg2 needs the real one.
            raw_url = self._engine.url.render_as_string(hide_password=False)
            dsn = raw_url.replace("postgresql+psycopg2://", "postgresql://")
            attempt = 0

            while not self._shutdown.is_set():
                conn = None
                try:
                    conn = psycopg2.connect(dsn)
                    conn.set_isolation_level(0)  # autocommit
                    cur = conn.cursor()
                    cur.execute(f"LISTEN {NOTIFY_CHANNEL};")
                    logger.info("PG LISTEN started on channel '%s'", NOTIFY_CHANNEL)
                    attempt = 0
                    self._healthy = True

                    while not self._shutdown.is_set():
                        if _select.select([conn], [], [], 5.0) == ([], [], []):
                            continue
                        conn.poll()
                        while conn.notifies:
                            notify = conn.notifies.pop(0)
                            try:
                                self.handle_payload(notify.payload or "")
                            except Exception:
                                logger.exception(
                                    "Error handling NOTIFY payload: %s", notify.payload,
                                )

                except Exception:
                    self._healthy = False
                    attempt += 1
                    if attempt >= self._max_attempts:
                        logger.critical(
                            "PG LISTEN exhausted %d retries. "
                            "Cross-process change delivery disabled.",
                            self._max_attempts,
                        )
                        self._failed = True
                        break

                    wait = self.backoff_delay(attempt)
                    logger.exception(
                        "PG LISTEN connection lost (attempt %d/%d). "
                        "Reconnecting in %.1fs…",
                        attempt, self._max_attempts, wait,
                    )
                    if self._shutdown.wait(timeout=wait):
                        break
                finally:
                    if conn is not None:
                        try:
                            conn.close()
                        except Exception:
                            logger.debug("Error closing LISTEN connection", exc_info=True)

        thread = threading.Thread(
            target=_listen_thread, daemon=True, name="pg-change-listener",
        )
        self._thread = thread
        thread.start()
        logger.info("PG change listener thread started")

    def stop(self) -> None:
        self._shutdown.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=5)
            logger.info("PG change listener thread stopped")
