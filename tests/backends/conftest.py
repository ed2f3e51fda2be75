"""Fixtures for backend adapter tests."""
import asyncio
import json
from collections.abc import AsyncGenerator
from typing import Any

import httpx
import pytest
import respx
import websockets

from backends.supabase import SupabaseBackend

SUPABASE_URL = "https://project.supabase.co"
REALTIME_URL = "wss://project.supabase.co/realtime/v1/websocket"


class FakeWebSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self, join_status: str = "ok") -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._join_status = join_status
        self._incoming: asyncio.Queue[str | None] = asyncio.Queue()

    async def send(self, raw: str) -> None:
        message = json.loads(raw)
        self.sent.append(message)
        if message["event"] == "phx_join":
            self.push({
                "topic": message["topic"],
                "event": "phx_reply",
                "payload": {"status": self._join_status, "response": {}},
                "ref": message["ref"],
            })

    async def recv(self) -> str:
        raw = await self._incoming.get()
        if raw is None:
            raise websockets.ConnectionClosed(None, None)
        return raw

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)

    def push(self, message: dict[str, Any]) -> None:
        """Deliver a server message."""
        self._incoming.put_nowait(json.dumps(message))

    def drop(self) -> None:
        """Simulate the server closing the connection."""
        self._incoming.put_nowait(None)

    def events(self) -> list[str]:
        """Events of every message sent by the client."""
        return [message["event"] for message in self.sent]

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> str:
        raw = await self._incoming.get()
        if raw is None:
            raise StopAsyncIteration
        return raw


class FakeConnector:
    """Connector handing out FakeWebSockets and recording the URLs used."""

    def __init__(self) -> None:
        self.sockets: list[FakeWebSocket] = []
        self.urls: list[str] = []
        self.join_status = "ok"
        self.fail: Exception | None = None

    async def __call__(self, url: str) -> FakeWebSocket:
        self.urls.append(url)
        if self.fail is not None:
            raise self.fail
        ws = FakeWebSocket(self.join_status)
        self.sockets.append(ws)
        return ws


def change_message(topic: str, change_type: str, record: dict[str, Any]) -> dict[str, Any]:
    """Build a postgres_changes server message."""
    return {
        "topic": topic,
        "event": "postgres_changes",
        "payload": {
            "data": {
                "type": change_type,
                "table": "bookmarks",
                "schema": "public",
                "record": record,
                "old_record": {},
            },
        },
        "ref": None,
    }


@pytest.fixture
def connector() -> FakeConnector:
    """Fake websocket connector."""
    return FakeConnector()


@pytest.fixture
def mock_api() -> respx.MockRouter:
    """Context manager for mocking Supabase HTTP responses."""
    with respx.mock(base_url=SUPABASE_URL, assert_all_called=False) as respx_mock:
        yield respx_mock


@pytest.fixture
async def supabase(
    mock_api: respx.MockRouter, connector: FakeConnector,
) -> AsyncGenerator[SupabaseBackend]:
    """Supabase backend with mocked HTTP and websocket transports."""
    client = httpx.AsyncClient(base_url=SUPABASE_URL)
    backend = SupabaseBackend(
        SUPABASE_URL,
        "anon-key",
        REALTIME_URL,
        http_client=client,
        heartbeat_interval=60.0,
        reconnect_delay=0.0,
        connector=connector,
    )
    yield backend
    await backend.aclose()
