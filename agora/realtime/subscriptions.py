"""
agora.realtime.subscriptions — Change-subscription multiplexer
===============================================================

One :class:`SubscriptionManager` per process multiplexes every consumer's
interest in row changes.  Interest is keyed by ``(table, filter)``; handles
with the same key share a topic whose reference count is the number of live
handles.  Publishing a batch of :class:`ChangeEvent` objects dispatches only
to listeners whose topic matches, and each distinct callback runs at most
once per batch even if it is registered under several overlapping topics.

Usage::

    manager = SubscriptionManager()
    sub = manager.subscribe("replies", on_change, filter=f"discussion_id=eq.{d_id}")
    ...
    sub.close()                      # refcount drops, topic removed at zero
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from agora.realtime.events import ALL_EVENTS, ChangeEvent, ChangeOp, RowFilter, parse_filter

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], None]
TopicKey = tuple[str, str | None]


def _normalize_events(events: str | Iterable[str]) -> frozenset[ChangeOp] | None:
    """Return the accepted ops, or ``None`` for "every op"."""
    if isinstance(events, str):
        if events == ALL_EVENTS:
            return None
        events = [events]
    ops = frozenset(ChangeOp(str(e).upper()) for e in events)
    return ops or None


@dataclass(eq=False, slots=True)
class Subscription:
    """Handle for one registered interest.  ``close()`` is idempotent."""

    id: int
    table: str
    row_filter: RowFilter | None
    ops: frozenset[ChangeOp] | None
    callback: ChangeCallback
    manager: SubscriptionManager
    active: bool = True

    @property
    def key(self) -> TopicKey:
        return (self.table, str(self.row_filter) if self.row_filter else None)

    def wants(self, event: ChangeEvent) -> bool:
        if self.ops is not None and event.op not in self.ops:
            return False
        return self.row_filter is None or self.row_filter.matches(event.row)

    def close(self) -> None:
        self.manager.unsubscribe(self)


class SubscriptionManager:
    """Thread-safe (table, filter) → listeners registry with fan-out."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._topics: dict[TopicKey, dict[int, Subscription]] = {}
        self._ids = itertools.count(1)

    # -------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------
    def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        *,
        filter: str | None = None,
        events: str | Iterable[str] = ALL_EVENTS,
    ) -> Subscription:
        """Register *callback* for changes to *table* matching *filter*.

        Raises
        ------
        ValueError
            If *filter* is malformed or *events* names an unknown op.
        """
        sub = Subscription(
            id=next(self._ids),
            table=table,
            row_filter=parse_filter(filter),
            ops=_normalize_events(events),
            callback=callback,
            manager=self,
        )
        with self._lock:
            listeners = self._topics.setdefault(sub.key, {})
            listeners[sub.id] = sub
            refs = len(listeners)
        logger.debug("Subscribed #%d to %s (refs=%d)", sub.id, sub.key, refs)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            if not sub.active:
                return
            sub.active = False
            listeners = self._topics.get(sub.key)
            if listeners is None:
                return
            listeners.pop(sub.id, None)
            if not listeners:
                del self._topics[sub.key]
                logger.debug("Topic %s closed", sub.key)

    def close(self) -> None:
        """Drop every topic (process teardown)."""
        with self._lock:
            for listeners in self._topics.values():
                for sub in listeners.values():
                    sub.active = False
            self._topics.clear()

    # -------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------
    def refcount(self, table: str, filter: str | None = None) -> int:
        row_filter = parse_filter(filter)
        key = (table, str(row_filter) if row_filter else None)
        with self._lock:
            return len(self._topics.get(key, {}))

    def topics(self) -> dict[TopicKey, int]:
        with self._lock:
            return {key: len(listeners) for key, listeners in self._topics.items()}

    @property
    def watched_tables(self) -> frozenset[str]:
        with self._lock:
            return frozenset(table for table, _ in self._topics)

    # -------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------
    def publish(self, event: ChangeEvent) -> int:
        return self.publish_many([event])

    def publish_many(self, events: Iterable[ChangeEvent]) -> int:
        """Dispatch a committed batch.  Returns the number of callbacks run.

        Each distinct callback receives the last matching event of the batch
        exactly once.  Exceptions raised by a callback are logged and do not
        reach the publisher or the other listeners.
        """
        events = list(events)
        if not events:
            return 0

        with self._lock:
            snapshot = [
                (key[0], list(listeners.values()))
                for key, listeners in self._topics.items()
            ]

        pending: dict[ChangeCallback, ChangeEvent] = {}
        for event in events:
            for table, listeners in snapshot:
                if table != event.table:
                    continue
                for sub in listeners:
                    if sub.wants(event):
                        pending[sub.callback] = event

        for callback, event in pending.items():
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Change callback failed for %s %s", event.op, event.table,
                )
        return len(pending)


class SubscriptionGroup:
    """All of one consumer's subscriptions, sharing a single callback.

    Because the manager dispatches per distinct callback, a change that
    matches several of the group's topics in one batch triggers one call.
    """

    def __init__(self, manager: SubscriptionManager, callback: ChangeCallback) -> None:
        self._manager = manager
        self._callback = callback
        self._subs: list[Subscription] = []

    def add(
        self,
        table: str,
        *,
        filter: str | None = None,
        events: str | Iterable[str] = ALL_EVENTS,
    ) -> Subscription:
        sub = self._manager.subscribe(table, self._callback, filter=filter, events=events)
        self._subs.append(sub)
        return sub

    def close(self) -> None:
        for sub in self._subs:
            sub.close()
        self._subs.clear()

    def __len__(self) -> int:
        return len(self._subs)
