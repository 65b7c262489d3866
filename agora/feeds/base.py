"""
agora.feeds.base — Live, subscribed views
==========================================

A feed is the data behind one screen: it fetches through the service layer,
registers its interest with the :class:`SubscriptionManager`, and re-fetches
when a matching change is committed or the viewer changes.

Failures never escape a feed.  They are logged, announced through the
notifier as a :class:`Notice`, and returned as a rejected
:class:`MutationResult` so callers can branch on the outcome.

Lifecycle::

    feed = DiscussionFeed(engine, manager, ctx).open()
    result = feed.toggle_like(discussion_id)
    if not result:
        ...
    feed.close()
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from agora.errors import AgoraError, MutationResult
from agora.realtime.events import ALL_EVENTS, ChangeEvent
from agora.realtime.subscriptions import SubscriptionGroup, SubscriptionManager

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from agora.session import SessionContext

logger = logging.getLogger(__name__)

# (table, filter, events)
Interest = tuple[str, str | None, str]


@dataclass(frozen=True, slots=True)
class Notice:
    """User-facing notification (the toast of a UI)."""

    title: str
    description: str = ""
    variant: str = "default"  # "default" | "destructive"

    @property
    def destructive(self) -> bool:
        return self.variant == "destructive"


Notifier = Callable[[Notice], None]


def log_notifier(notice: Notice) -> None:
    """Default notifier: write notices to the log."""
    level = logging.WARNING if notice.destructive else logging.INFO
    logger.log(level, "%s: %s", notice.title, notice.description)


class LiveFeed:
    """Base class for every feed.

    Subclasses implement :meth:`fetch` (read through the services),
    :meth:`apply` (store the result) and :meth:`interests` (which tables and
    filters keep the data fresh).
    """

    #: Title of the notice shown when a fetch fails
    load_error_title = "Error loading data"

    def __init__(
        self,
        engine: Engine,
        manager: SubscriptionManager,
        ctx: SessionContext,
        *,
        notifier: Notifier | None = None,
    ) -> None:
        self.engine = engine
        self.manager = manager
        self.ctx = ctx
        self.notifier: Notifier = notifier or log_notifier
        self.loading = True
        self.error: str | None = None
        self._lock = threading.RLock()
        self._group: SubscriptionGroup | None = None

    # -------------------------------------------------------------------
    # Subclass hooks
    # -------------------------------------------------------------------
    def interests(self) -> Iterable[Interest]:
        return ()

    def fetch(self) -> Any:
        raise NotImplementedError

    def apply(self, data: Any) -> None:
        raise NotImplementedError

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    @property
    def is_open(self) -> bool:
        return self._group is not None

    def open(self):
        """Fetch once, then subscribe.  Returns ``self`` for chaining."""
        if self._group is not None:
            return self
        self.refresh()
        group = SubscriptionGroup(self.manager, self._on_change)
        for table, row_filter, events in self.interests():
            group.add(table, filter=row_filter, events=events or ALL_EVENTS)
        self._group = group
        self.ctx.add_listener(self._on_viewer_change)
        logger.debug("%s opened with %d subscription(s)", type(self).__name__, len(group))
        return self

    def close(self) -> None:
        if self._group is not None:
            self._group.close()
            self._group = None
        self.ctx.remove_listener(self._on_viewer_change)

    def __enter__(self):
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()

    # -------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------
    def _on_change(self, event: ChangeEvent) -> None:
        logger.debug("%s: %s on %s → refetch", type(self).__name__, event.op, event.table)
        self.refresh()

    def _on_viewer_change(self, ctx: SessionContext) -> None:
        self.refresh()

    def refresh(self) -> bool:
        """Re-fetch and replace the local copy.  Returns False on failure."""
        try:
            data = self.fetch()
        except (AgoraError, SQLAlchemyError) as exc:
            logger.exception("%s fetch failed", type(self).__name__)
            self.error = str(exc)
            self.notify(self.load_error_title, str(exc), destructive=True)
            return False
        finally:
            self.loading = False
        with self._lock:
            self.apply(data)
            self.error = None
        return True

    refetch = refresh

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------
    def notify(self, title: str, description: str = "", *, destructive: bool = False) -> None:
        notice = Notice(title, description, "destructive" if destructive else "default")
        try:
            self.notifier(notice)
        except Exception:
            logger.exception("Notifier failed for %r", notice.title)

    def _mutate(
        self,
        func: Callable[..., Any],
        *args: Any,
        success: str | None = None,
        success_description: str = "",
        failure: str = "Something went wrong",
        **kwargs: Any,
    ) -> MutationResult:
        """Call ``func(engine, ctx, *args, **kwargs)`` and wrap the outcome."""
        try:
            value = func(self.engine, self.ctx, *args, **kwargs)
        except AgoraError as exc:
            logger.warning("%s: %s rejected: %s", type(self).__name__, func.__name__, exc)
            self.notify(failure, str(exc), destructive=True)
            return MutationResult.rejected(str(exc), exc.code)
        except SQLAlchemyError as exc:
            logger.exception("%s: %s failed", type(self).__name__, func.__name__)
            self.notify(failure, str(exc), destructive=True)
            return MutationResult.rejected(str(exc), "database_error")
        if success:
            self.notify(success, success_description)
        return MutationResult.ok(value)
