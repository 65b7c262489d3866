"""
agora.api.routes.realtime — Change-subscription websocket
==========================================================

Clients connect to ``/api/realtime?token=<jwt>`` and manage their interest
with JSON messages::

    {"type": "subscribe", "table": "messages", "filter": "chat_id=eq.42"}
    {"type": "unsubscribe", "table": "messages", "filter": "chat_id=eq.42"}
    {"type": "ping"}

Every subscription is authorized first (see
:mod:`agora.services.subscription_access`): public content is open to any
viewer, chat rows only to participants, account rows to their owner or
staff.  Matching commits are pushed as ``{"type": "change", "table", "op",
"row"}`` with routing columns only (``id``, foreign keys, ``type``); clients
re-fetch content through the REST endpoints.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError

from agora.api.deps import JWT_SECRET, get_engine, get_manager
from agora.database.engine import run_db
from agora.errors import AgoraError, NotAuthenticatedError
from agora.realtime.events import ALL_EVENTS, ChangeEvent
from agora.realtime.notify import routing_columns
from agora.realtime.subscriptions import Subscription, SubscriptionManager
from agora.services.subscription_access import SubscriptionGrant, authorize_subscription
from agora.session import SessionContext

router = APIRouter(tags=["realtime"])
logger = logging.getLogger(__name__)


def _error(detail: str) -> dict:
    return {"type": "error", "detail": detail}


def _valid_events(events: Any) -> bool:
    if isinstance(events, str):
        return True
    return isinstance(events, list) and all(isinstance(e, str) for e in events)


class RealtimeConnection:
    """One websocket's subscriptions plus its outbound queue.

    Change callbacks run on whichever thread committed the transaction, so
    they hand events to the event loop with ``call_soon_threadsafe``.
    """

    def __init__(
        self,
        websocket: WebSocket,
        manager: SubscriptionManager,
        engine: Engine,
        ctx: SessionContext,
    ) -> None:
        self.websocket = websocket
        self.manager = manager
        self.engine = engine
        self.ctx = ctx
        self.queue: asyncio.Queue[dict] = asyncio.Queue()
        self.loop = asyncio.get_running_loop()
        self.subscriptions: dict[tuple[str, str | None], Subscription] = {}

    def _enqueue(self, message: dict) -> None:
        self.loop.call_soon_threadsafe(self.queue.put_nowait, message)

    def _push(self, grant: SubscriptionGrant, event: ChangeEvent) -> None:
        columns = routing_columns(event.row) - grant.redacted
        self._enqueue({
            "type": "change",
            "table": event.table,
            "op": str(event.op),
            "row": json.loads(event.to_payload(columns))["row"],
        })

    async def subscribe(self, table: str, row_filter: str | None, events: Any = ALL_EVENTS) -> dict:
        key = (table, row_filter or None)
        if key in self.subscriptions:
            return {"type": "subscribed", "table": table, "filter": row_filter}
        try:
            grant = await run_db(authorize_subscription, self.engine, self.ctx, table, row_filter)
        except AgoraError as exc:
            return _error(str(exc))
        except SQLAlchemyError:
            logger.exception("Realtime authorization failed for %s", table)
            return _error("Could not authorize subscription")
        try:
            # One callback per topic so each topic sees its own last event per batch
            sub = self.manager.subscribe(
                table, lambda e: self._push(grant, e), filter=row_filter, events=events,
            )
        except (ValueError, TypeError) as exc:
            return _error(str(exc))
        self.subscriptions[key] = sub
        return {"type": "subscribed", "table": table, "filter": row_filter}

    def unsubscribe(self, table: str, row_filter: str | None) -> dict:
        sub = self.subscriptions.pop((table, row_filter or None), None)
        if sub is not None:
            sub.close()
        return {"type": "unsubscribed", "table": table, "filter": row_filter}

    def close(self) -> None:
        for sub in self.subscriptions.values():
            sub.close()
        self.subscriptions.clear()

    async def handle(self, message: dict) -> dict:
        kind = message.get("type")
        if kind == "ping":
            return {"type": "pong"}
        if kind not in ("subscribe", "unsubscribe"):
            return _error(f"Unknown message type: {kind!r}")

        table = message.get("table")
        row_filter = message.get("filter")
        if not isinstance(table, str) or not table:
            return _error("'table' must be a non-empty string")
        if row_filter is not None and not isinstance(row_filter, str):
            return _error("'filter' must be a string")
        if kind == "unsubscribe":
            return self.unsubscribe(table, row_filter)

        events = message.get("events", ALL_EVENTS)
        if not _valid_events(events):
            return _error("'events' must be a string or a list of strings")
        return await self.subscribe(table, row_filter, events)

    async def receive_loop(self) -> None:
        while True:
            try:
                message = await self.websocket.receive_json()
            except json.JSONDecodeError:
                await self.queue.put(_error("Messages must be JSON"))
                continue
            if not isinstance(message, dict):
                await self.queue.put(_error("Messages must be objects"))
                continue
            await self.queue.put(await self.handle(message))

    async def send_loop(self) -> None:
        while True:
            message = await self.queue.get()
            await self.websocket.send_json(message)


@router.websocket("/realtime")
async def realtime(
    websocket: WebSocket,
    manager: SubscriptionManager = Depends(get_manager),
    engine: Engine = Depends(get_engine),
):
    token = websocket.query_params.get("token")
    try:
        ctx = SessionContext.resolve(token, JWT_SECRET)
    except NotAuthenticatedError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    conn = RealtimeConnection(websocket, manager, engine, ctx)
    logger.info("Realtime connection opened (%s)", ctx.user_id or "anonymous")
    tasks = [
        asyncio.create_task(conn.receive_loop()),
        asyncio.create_task(conn.send_loop()),
    ]
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.error("Realtime connection failed", exc_info=exc)
                await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
    finally:
        conn.close()
        logger.info("Realtime connection closed (%s)", ctx.user_id or "anonymous")
