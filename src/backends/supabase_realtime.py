"""
Supabase Realtime change-feed channel over the Phoenix websocket protocol.

One RealtimeChannel owns one websocket connection and one joined topic. It
keeps the connection alive with heartbeats and reconnects after the
connection drops; callers only see `join()` and `leave()`. A rejoin fetches a
fresh access token first and is reported to the listener as a RESYNC event,
since changes made while disconnected were never delivered.
"""
import asyncio
import json
import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import urlencode

import websockets

from shared.backend import ChangeEvent, ChangeListener
from shared.backend_errors import BackendError

logger = logging.getLogger(__name__)

PHOENIX_PROTOCOL_VERSION = "1.0.0"
CHANGE_TYPES = ("INSERT", "UPDATE", "DELETE")

Connector = Callable[[str], Awaitable[Any]]


def build_socket_url(realtime_url: str, api_key: str) -> str:
    """Build the websocket URL with the API key and protocol version."""
    return f"{realtime_url}?{urlencode({'apikey': api_key, 'vsn': PHOENIX_PROTOCOL_VERSION})}"


def build_join_message(
    topic: str, table: str, access_token: str | None, ref: str, schema: str = "public",
) -> dict[str, Any]:
    """
    Build the phx_join message subscribing to every change on a table.

    No row filter is sent; row-level security decides which rows' events the
    principal receives.
    """
    payload: dict[str, Any] = {
        "config": {
            "broadcast": {"ack": False, "self": False},
            "presence": {"key": ""},
            "postgres_changes": [{"event": "*", "schema": schema, "table": table}],
            "private": False,
        },
    }
    if access_token:
        payload["access_token"] = access_token
    return {"topic": topic, "event": "phx_join", "payload": payload, "ref": ref, "join_ref": ref}


def parse_change_message(message: dict[str, Any]) -> ChangeEvent | None:
    """Extract a ChangeEvent from a postgres_changes message, or None."""
    if message.get("event") != "postgres_changes":
        return None
    data = (message.get("payload") or {}).get("data") or {}
    change_type = data.get("type")
    if change_type not in CHANGE_TYPES:
        return None
    return ChangeEvent(
        type=change_type,
        table=data.get("table", ""),
        record=data.get("record") or {},
        old_record=data.get("old_record") or {},
    )


class RealtimeChannel:
    """A joined change-feed topic on its own websocket connection."""

    def __init__(
        self,
        socket_url: str,
        table: str,
        on_change: ChangeListener,
        access_token: str | None = None,
        heartbeat_interval: float = 25.0,
        reconnect_delay: float = 5.0,
        join_timeout: float = 10.0,
        connector: Connector = websockets.connect,
        token_provider: Callable[[], Awaitable[str | None]] | None = None,
    ) -> None:
        self.id = uuid.uuid4().hex
        self.table = table
        self.topic = f"realtime:{table}-{self.id[:8]}"
        self._socket_url = socket_url
        self._on_change = on_change
        self._access_token = access_token
        self._heartbeat_interval = heartbeat_interval
        self._reconnect_delay = reconnect_delay
        self._join_timeout = join_timeout
        self._connector = connector
        # Called before every rejoin; the cached token may have expired meanwhile
        self._token_provider = token_provider
        self._ref = 0
        self._ws: Any = None
        self._task: asyncio.Task | None = None
        self._closed = False
        # Background tasks set to prevent garbage collection
        self._background_tasks: set[asyncio.Task] = set()

    @property
    def is_closed(self) -> bool:
        """Check if the channel was left."""
        return self._closed

    async def join(self) -> None:
        """
        Connect and join the topic.

        Raises:
            BackendError: If the connection fails or the join is rejected.
        """
        try:
            self._ws = await self._open()
        except (OSError, TimeoutError, websockets.WebSocketException) as e:
            raise BackendError("transport", f"Realtime connection failed: {e}") from e
        self._task = asyncio.get_running_loop().create_task(self._run())

    def leave(self) -> None:
        """Stop delivering events and close the connection. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        ws, self._ws = self._ws, None
        if ws is not None:
            task = asyncio.get_running_loop().create_task(self._close_socket(ws))
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)

    async def update_access_token(self, access_token: str) -> None:
        """Push a refreshed access token so row-level security keeps matching."""
        self._access_token = access_token
        if self._ws is None:
            return
        try:
            await self._send(
                self._ws,
                {"topic": self.topic, "event": "access_token",
                 "payload": {"access_token": access_token}, "ref": self._next_ref()},
            )
        except websockets.ConnectionClosed:
            logger.debug("Connection closed before token update; rejoin will carry it")

    def _next_ref(self) -> str:
        self._ref += 1
        return str(self._ref)

    async def _send(self, ws: Any, message: dict[str, Any]) -> None:
        await ws.send(json.dumps(message))

    async def _open(self) -> Any:
        ws = await self._connector(self._socket_url)
        try:
            ref = self._next_ref()
            await self._send(ws, build_join_message(self.topic, self.table, self._access_token, ref))
            await asyncio.wait_for(self._await_join_reply(ws, ref), timeout=self._join_timeout)
        except BaseException:
            await ws.close()
            raise
        logger.info("Joined realtime topic %s", self.topic)
        return ws

    async def _await_join_reply(self, ws: Any, ref: str) -> None:
        while True:
            message = json.loads(await ws.recv())
            if message.get("event") == "phx_reply" and message.get("ref") == ref:
                payload = message.get("payload") or {}
                if payload.get("status") == "ok":
                    return
                raise BackendError(
                    "forbidden", f"Realtime join rejected: {payload.get('response')}",
                )
            self._dispatch(message)

    async def _run(self) -> None:
        while not self._closed:
            await self._pump(self._ws)
            if self._closed:
                return
            logger.warning(
                "Realtime connection for %s lost; reconnecting in %ss",
                self.topic, self._reconnect_delay,
            )
            self._ws = await self._reconnect()
            if self._ws is not None:
                self._on_change(ChangeEvent(type="RESYNC", table=self.table))

    async def _pump(self, ws: Any) -> None:
        heartbeat = asyncio.get_running_loop().create_task(self._heartbeat(ws))
        try:
            async for raw in ws:
                self._dispatch(json.loads(raw))
        except websockets.ConnectionClosed:
            pass
        finally:
            heartbeat.cancel()

    async def _reconnect(self) -> Any:
        while not self._closed:
            await asyncio.sleep(self._reconnect_delay)
            try:
                if self._token_provider is not None:
                    self._access_token = await self._token_provider()
                return await self._open()
            except (OSError, TimeoutError, websockets.WebSocketException, BackendError) as e:
                logger.warning("Realtime reconnect for %s failed: %s", self.topic, e)
        return None

    async def _heartbeat(self, ws: Any) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            try:
                await self._send(
                    ws, {"topic": "phoenix", "event": "heartbeat", "payload": {},
                         "ref": self._next_ref()},
                )
            except websockets.ConnectionClosed:
                return

    async def _close_socket(self, ws: Any) -> None:
        try:
            await self._send(
                ws, {"topic": self.topic, "event": "phx_leave", "payload": {},
                     "ref": self._next_ref()},
            )
        except websockets.ConnectionClosed:
            pass
        finally:
            await ws.close()
        logger.info("Left realtime topic %s", self.topic)

    def _dispatch(self, message: dict[str, Any]) -> None:
        if self._closed or message.get("topic") != self.topic:
            return
        if message.get("event") == "phx_error":
            logger.warning("Realtime error on %s: %s", self.topic, message.get("payload"))
            return
        if message.get("event") == "system":
            logger.debug("Realtime system message on %s: %s", self.topic, message.get("payload"))
            return
        event = parse_change_message(message)
        if event is not None:
            self._on_change(event)
