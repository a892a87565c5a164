"""Realtime change notifications for the cells table.

Speaks the Phoenix channel protocol used by Supabase Realtime: join a topic
with a ``postgres_changes`` filter, keep the socket alive with heartbeats and
hand every change message to a callback as a :class:`ChangeEvent`.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import websockets

from .schemas import ChangeEvent

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]
StatusHandler = Callable[[str], None]

SUBSCRIBED = "SUBSCRIBED"
CHANNEL_ERROR = "CHANNEL_ERROR"
CLOSED = "CLOSED"


def parse_change(payload: Dict[str, Any]) -> ChangeEvent:
    data = payload.get("data") or payload
    return ChangeEvent(
        event_type=str(data.get("type") or data.get("eventType") or ""),
        new=data.get("record") or data.get("new") or None,
        old=data.get("old_record") or data.get("old") or None,
        table=data.get("table"),
        commit_timestamp=data.get("commit_timestamp"),
    )


class RealtimeSubscription:
    """Cancellable subscription handle; ``close()`` releases the socket."""

    def __init__(
        self,
        url: str,
        api_key: str,
        on_change: ChangeHandler,
        *,
        table: str = "cells",
        schema: str = "public",
        channel: str = "cells-changes",
        on_status: Optional[StatusHandler] = None,
        heartbeat_interval: float = 25.0,
        reconnect_delay: float = 5.0,
        connect: Callable[..., Any] = websockets.connect,
    ) -> None:
        self.url = url
        self.api_key = api_key
        self.on_change = on_change
        self.table = table
        self.schema = schema
        self.topic = f"realtime:{channel}"
        self.on_status = on_status
        self.heartbeat_interval = heartbeat_interval
        self.reconnect_delay = reconnect_delay
        self._connect = connect
        self._ref = 0
        self._join_ref: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self.status = CLOSED

    def _next_ref(self) -> str:
        self._ref += 1
        return str(self._ref)

    def _set_status(self, status: str) -> None:
        if status == self.status:
            return
        self.status = status
        logger.info("realtime subscription status", extra={"status": status, "topic": self.topic})
        if self.on_status:
            self.on_status(status)

    def join_message(self) -> Dict[str, Any]:
        self._join_ref = self._next_ref()
        return {
            "topic": self.topic,
            "event": "phx_join",
            "payload": {
                "config": {
                    "postgres_changes": [
                        {"event": "*", "schema": self.schema, "table": self.table}
                    ]
                },
                "access_token": self.api_key,
            },
            "ref": self._join_ref,
        }

    def start(self) -> "RealtimeSubscription":
        if self._task is None:
            self._task = asyncio.create_task(self._run())
        return self

    async def close(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._set_status(CLOSED)

    async def __aenter__(self) -> "RealtimeSubscription":
        return self.start()

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _run(self) -> None:
        while True:
            try:
                await self._listen()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning(
                    "realtime connection lost",
                    extra={"topic": self.topic, "error": str(exc)},
                )
                self._set_status(CHANNEL_ERROR)
            await asyncio.sleep(self.reconnect_delay)

    async def _listen(self) -> None:
        async with self._connect(self.url) as ws:
            await ws.send(json.dumps(self.join_message()))
            heartbeat = asyncio.create_task(self._heartbeat(ws))
            try:
                async for raw in ws:
                    await self.handle_message(json.loads(raw))
            finally:
                heartbeat.cancel()
        self._set_status(CLOSED)

    async def _heartbeat(self, ws: Any) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            await ws.send(
                json.dumps(
                    {"topic": "phoenix", "event": "heartbeat", "payload": {}, "ref": self._next_ref()}
                )
            )

    async def handle_message(self, message: Dict[str, Any]) -> None:
        event = message.get("event")
        payload = message.get("payload") or {}
        if event == "phx_reply" and message.get("ref") == self._join_ref:
            ok = payload.get("status") == "ok"
            self._set_status(SUBSCRIBED if ok else CHANNEL_ERROR)
        elif event == "postgres_changes":
            change = parse_change(payload)
            logger.debug(
                "realtime change received",
                extra={"event_type": change.event_type, "table": change.table},
            )
            await self.on_change(change)
        elif event in {"phx_error", "phx_close"} and message.get("topic") == self.topic:
            self._set_status(CHANNEL_ERROR if event == "phx_error" else CLOSED)


def subscribe_to_cells(
    url: str,
    api_key: str,
    on_change: ChangeHandler,
    *,
    on_status: Optional[StatusHandler] = None,
) -> RealtimeSubscription:
    """Open a subscription on the cells table; the caller owns ``close()``."""
    return RealtimeSubscription(url, api_key, on_change, on_status=on_status).start()
