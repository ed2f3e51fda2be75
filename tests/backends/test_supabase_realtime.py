"""Tests for the realtime change-feed channel."""
from typing import Any

import pytest

from backends.supabase_realtime import (
    RealtimeChannel,
    build_join_message,
    build_socket_url,
    parse_change_message,
)
from shared.backend import ChangeEvent
from shared.backend_errors import BackendError

from tests.backends.conftest import REALTIME_URL, FakeConnector, change_message
from tests.conftest import eventually


def _channel(
    connector: FakeConnector, events: list[ChangeEvent], **kwargs: Any,
) -> RealtimeChannel:
    return RealtimeChannel(
        build_socket_url(REALTIME_URL, "anon-key"),
        "bookmarks",
        events.append,
        access_token="access-1",
        connector=connector,
        **kwargs,
    )


def test__build_socket_url() -> None:
    """The socket URL carries the public key and protocol version."""
    assert build_socket_url(REALTIME_URL, "anon-key") == (
        f"{REALTIME_URL}?apikey=anon-key&vsn=1.0.0"
    )


def test__build_join_message__subscribes_to_all_events() -> None:
    """Joins ask for every change kind on the table with no row filter."""
    message = build_join_message("realtime:bookmarks-1", "bookmarks", "token", "1")

    assert message["event"] == "phx_join"
    assert message["ref"] == message["join_ref"] == "1"
    assert message["payload"]["access_token"] == "token"
    assert message["payload"]["config"]["postgres_changes"] == [
        {"event": "*", "schema": "public", "table": "bookmarks"},
    ]


def test__build_join_message__anonymous_has_no_token() -> None:
    """Without a session no access token is sent."""
    message = build_join_message("realtime:bookmarks-1", "bookmarks", None, "1")
    assert "access_token" not in message["payload"]


class TestParseChangeMessage:
    """Tests for parse_change_message."""

    def test__insert(self) -> None:
        """postgres_changes messages become ChangeEvents."""
        event = parse_change_message(change_message("t", "INSERT", {"id": "b1"}))

        assert event == ChangeEvent(type="INSERT", table="bookmarks", record={"id": "b1"})

    @pytest.mark.parametrize(
        "message",
        [
            {"event": "phx_reply", "payload": {"status": "ok"}},
            {"event": "presence_state", "payload": {}},
            change_message("t", "TRUNCATE", {}),
            {"event": "postgres_changes", "payload": None},
        ],
    )
    def test__other_messages__none(self, message: dict) -> None:
        """Anything but a known row change is ignored."""
        assert parse_change_message(message) is None


class TestRealtimeChannel:
    """Tests for the channel lifecycle over a fake websocket."""

    async def test__join__waits_for_ok_reply(self, connector: FakeConnector) -> None:
        """Join completes once the server acknowledges the topic."""
        channel = _channel(connector, [])

        await channel.join()

        ws = connector.sockets[0]
        assert ws.events() == ["phx_join"]
        assert ws.sent[0]["topic"] == channel.topic
        assert channel.topic.startswith("realtime:bookmarks-")
        channel.leave()

    async def test__join_rejected__forbidden(self, connector: FakeConnector) -> None:
        """A rejected join raises and closes the socket."""
        connector.join_status = "error"
        channel = _channel(connector, [])

        with pytest.raises(BackendError) as exc_info:
            await channel.join()

        assert exc_info.value.category == "forbidden"
        assert connector.sockets[0].closed

    async def test__connect_failure__transport(self, connector: FakeConnector) -> None:
        """Connection failures are transport errors."""
        connector.fail = OSError("unreachable")

        with pytest.raises(BackendError) as exc_info:
            await _channel(connector, []).join()

        assert exc_info.value.category == "transport"

    async def test__change_messages__delivered(self, connector: FakeConnector) -> None:
        """Row changes on the joined topic reach the listener."""
        events: list[ChangeEvent] = []
        channel = _channel(connector, events)
        await channel.join()
        ws = connector.sockets[0]

        ws.push(change_message(channel.topic, "INSERT", {"id": "b1"}))
        ws.push(change_message(channel.topic, "DELETE", {}))
        await eventually(lambda: len(events) == 2)

        assert [e.type for e in events] == ["INSERT", "DELETE"]
        channel.leave()

    async def test__other_topics_and_system_messages__ignored(
        self, connector: FakeConnector,
    ) -> None:
        """Messages for other topics, errors and system notices are not changes."""
        events: list[ChangeEvent] = []
        channel = _channel(connector, events)
        await channel.join()
        ws = connector.sockets[0]

        ws.push(change_message("realtime:other", "INSERT", {"id": "x"}))
        ws.push({"topic": channel.topic, "event": "system", "payload": {"status": "ok"}})
        ws.push({"topic": channel.topic, "event": "phx_error", "payload": {}})
        ws.push(change_message(channel.topic, "UPDATE", {"id": "b1"}))
        await eventually(lambda: len(events) == 1)

        assert events[0].type == "UPDATE"
        channel.leave()

    async def test__leave__sends_phx_leave_and_closes(self, connector: FakeConnector) -> None:
        """Leaving is idempotent and nothing is delivered afterwards."""
        events: list[ChangeEvent] = []
        channel = _channel(connector, events)
        await channel.join()
        ws = connector.sockets[0]

        channel.leave()
        channel.leave()
        ws.push(change_message(channel.topic, "INSERT", {"id": "late"}))
        await eventually(lambda: ws.closed)

        assert channel.is_closed
        assert ws.events().count("phx_leave") == 1
        assert events == []

    async def test__heartbeat_sent(self, connector: FakeConnector) -> None:
        """Heartbeats go to the phoenix topic while connected."""
        channel = _channel(connector, [], heartbeat_interval=0.001)
        await channel.join()
        ws = connector.sockets[0]

        await eventually(lambda: "heartbeat" in ws.events())

        heartbeat = next(m for m in ws.sent if m["event"] == "heartbeat")
        assert heartbeat["topic"] == "phoenix"
        channel.leave()

    async def test__reconnects_after_drop(self, connector: FakeConnector) -> None:
        """A dropped connection is re-established, rejoined and reported as a resync."""
        events: list[ChangeEvent] = []
        channel = _channel(connector, events, reconnect_delay=0.0)
        await channel.join()

        connector.sockets[0].drop()
        await eventually(lambda: len(events) == 1)
        second = connector.sockets[1]
        second.push(change_message(channel.topic, "INSERT", {"id": "b1"}))
        await eventually(lambda: len(events) == 2)

        assert events[0] == ChangeEvent(type="RESYNC", table="bookmarks")
        assert events[1].type == "INSERT"
        assert second.sent[0]["event"] == "phx_join"
        assert second.sent[0]["payload"]["access_token"] == "access-1"
        channel.leave()

    async def test__rejoin__asks_for_fresh_token(self, connector: FakeConnector) -> None:
        """Each rejoin attempt carries a token from the provider, not the cached one."""
        issued: list[str] = []

        async def fresh_token() -> str:
            issued.append(f"access-{len(issued) + 2}")
            return issued[-1]

        events: list[ChangeEvent] = []
        channel = _channel(connector, events, reconnect_delay=0.0, token_provider=fresh_token)
        await channel.join()
        connector.join_status = "error"

        connector.sockets[0].drop()
        await eventually(lambda: len(connector.sockets) >= 3)
        connector.join_status = "ok"
        await eventually(lambda: len(events) == 1)

        joins = [ws.sent[0]["payload"].get("access_token") for ws in connector.sockets]
        assert joins[0] == "access-1"
        assert joins[1:] == issued
        assert events[0].type == "RESYNC"
        channel.leave()

    async def test__update_access_token__pushed(self, connector: FakeConnector) -> None:
        """A refreshed token is sent on the open connection."""
        channel = _channel(connector, [])
        await channel.join()

        await channel.update_access_token("access-2")

        message = connector.sockets[0].sent[-1]
        assert message["event"] == "access_token"
        assert message["payload"] == {"access_token": "access-2"}
        channel.leave()
