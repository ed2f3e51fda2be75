"""
In-process stand-in for the managed backend.

LocalBackendServer plays the hosted service: it stores rows with SQLAlchemy,
issues single-use authorization codes, scopes every query to the requesting
principal (the equivalent of the Supabase row-level security policies in
db/migrations) and fans change events out to open channels. Each
LocalBackend returned by `connect()` is one client (one browser tab) with its
own session, so several clients of the same principal can watch each other's
writes arrive through the change feed.

Used for local development and by the test suite.
"""
import asyncio
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlencode

from sqlalchemy import select

from db.session import create_engine, create_session_factory
from models.base import Base
from models.bookmark import Bookmark
from schemas.session import AuthEvent, Principal, Session
from shared.backend import (
    AuthEventEmitter,
    ChangeEvent,
    ChangeListener,
    ChangeType,
    ChannelHandle,
    SessionListener,
    Unsubscribe,
    detect_session_in_url,
)
from shared.backend_errors import BackendError
from shared.oauth_urls import extract_auth_code

logger = logging.getLogger(__name__)

_TABLES: dict[str, type[Bookmark]] = {"bookmarks": Bookmark}
_ORDERABLE_COLUMNS = frozenset({"created_at", "title", "url"})


@dataclass(frozen=True)
class _Channel:
    handle: ChannelHandle
    principal_id: str | None
    listener: ChangeListener


class LocalBackendServer:
    """The shared service behind every LocalBackend client."""

    def __init__(self, database_url: str = "sqlite+aiosqlite://") -> None:
        self._engine = create_engine(database_url)
        self._session_factory = create_session_factory(self._engine)
        # The in-memory engine shares one connection, so transactions take turns
        self._lock = asyncio.Lock()
        self._principals: dict[str, Principal] = {}
        self._codes: dict[str, str] = {}
        self._channels: dict[str, _Channel] = {}
        self._last_created_at: datetime | None = None
        # Principal that consents at the simulated provider; None denies sign-in
        self.oauth_principal: Principal | None = None

    async def start(self) -> None:
        """Create the schema."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Dispose of the engine."""
        self._channels.clear()
        await self._engine.dispose()

    def connect(self, detect_session_in_url: bool = False) -> "LocalBackend":
        """Create a new client with no session."""
        return LocalBackend(self, detect_session_in_url=detect_session_in_url)

    @property
    def open_channel_count(self) -> int:
        """Number of open change-feed channels across all clients."""
        return len(self._channels)

    # Auth

    def register_principal(self, principal: Principal) -> None:
        """Make a principal known to the simulated provider."""
        self._principals[principal.id] = principal

    def issue_code(self, principal_id: str) -> str:
        """Issue a single-use authorization code for a registered principal."""
        if principal_id not in self._principals:
            raise BackendError("not_found", f"Unknown principal {principal_id}")
        code = secrets.token_urlsafe(16)
        self._codes[code] = principal_id
        return code

    def redeem_code(self, code: str) -> Principal:
        """
        Consume an authorization code.

        Raises:
            BackendError: If the code is unknown or was already used.
        """
        principal_id = self._codes.pop(code, None)
        if principal_id is None:
            raise BackendError("auth", "Invalid or already used authorization code")
        return self._principals[principal_id]

    # Tables

    async def select_rows(
        self, principal_id: str | None, table: str, order_by: str, descending: bool,
    ) -> list[dict[str, Any]]:
        """Rows of `table` owned by the principal, in order."""
        model = self._model(table)
        if order_by not in _ORDERABLE_COLUMNS:
            raise BackendError("validation", f"Cannot order by {order_by}")
        if principal_id is None:
            return []
        column = getattr(model, order_by)
        async with self._lock, self._session_factory() as db:
            result = await db.execute(
                select(model)
                .where(model.user_id == principal_id)
                .order_by(column.desc() if descending else column.asc()),
            )
            return [row.to_row() for row in result.scalars().all()]

    async def insert_row(
        self, principal_id: str | None, table: str, record: dict[str, Any],
    ) -> dict[str, Any]:
        """Insert a row owned by the principal and publish INSERT."""
        model = self._model(table)
        if principal_id is None:
            raise BackendError("forbidden", "Anonymous users cannot insert")
        owner = record.get("user_id", principal_id)
        if owner != principal_id:
            raise BackendError("forbidden", "new row violates row-level security policy")
        title, url = record.get("title"), record.get("url")
        if not title or not url:
            raise BackendError("validation", "title and url are required")

        row = model(
            id=str(uuid.uuid4()),
            user_id=owner,
            title=title,
            url=url,
            created_at=self._next_created_at(),
        )
        async with self._lock, self._session_factory() as db:
            db.add(row)
            await db.commit()
        stored = row.to_row()
        self._publish(table, "INSERT", owner, record=stored)
        return stored

    async def delete_row(self, principal_id: str | None, table: str, row_id: str) -> None:
        """Delete a row owned by the principal and publish DELETE."""
        model = self._model(table)
        async with self._lock, self._session_factory() as db:
            result = await db.execute(
                select(model).where(model.id == row_id, model.user_id == principal_id),
            )
            row = result.scalar_one_or_none()
            if row is None:
                # Rows of other principals are invisible, so they are "not found"
                raise BackendError("not_found", f"No {table} row {row_id} for this user")
            await db.delete(row)
            await db.commit()
        self._publish(table, "DELETE", None, old_record={"id": row_id})

    # Change feed

    def open_channel(
        self, principal_id: str | None, table: str, listener: ChangeListener,
    ) -> ChannelHandle:
        """Open a channel receiving every change on `table` visible to the principal."""
        self._model(table)
        handle = ChannelHandle(id=uuid.uuid4().hex, table=table)
        self._channels[handle.id] = _Channel(handle, principal_id, listener)
        logger.debug("Opened channel %s on %s", handle.id, table)
        return handle

    def close_channel(self, handle: ChannelHandle) -> None:
        """Close a channel; unknown handles are ignored."""
        if self._channels.pop(handle.id, None) is not None:
            logger.debug("Closed channel %s", handle.id)

    def _publish(
        self,
        table: str,
        change_type: ChangeType,
        owner_id: str | None,
        record: dict[str, Any] | None = None,
        old_record: dict[str, Any] | None = None,
    ) -> None:
        # DELETE payloads carry only the primary key and cannot be checked
        # against the owner, so every channel on the table receives them.
        event = ChangeEvent(
            type=change_type, table=table, record=record or {}, old_record=old_record or {},
        )
        for channel in list(self._channels.values()):
            if channel.handle.table != table:
                continue
            if owner_id is not None and channel.principal_id != owner_id:
                continue
            try:
                channel.listener(event)
            except Exception:
                logger.exception("Change listener on channel %s failed", channel.handle.id)

    def _model(self, table: str) -> type[Bookmark]:
        model = _TABLES.get(table)
        if model is None:
            raise BackendError("not_found", f"Table {table} does not exist")
        return model

    def _next_created_at(self) -> datetime:
        # Strictly increasing so newest-first ordering never ties
        now = datetime.now(UTC)
        if self._last_created_at is not None and now <= self._last_created_at:
            now = self._last_created_at + timedelta(microseconds=1)
        self._last_created_at = now
        return now


class LocalBackend:
    """One client of a LocalBackendServer, holding its own session."""

    def __init__(self, server: LocalBackendServer, detect_session_in_url: bool = False) -> None:
        self._server = server
        self._session: Session | None = None
        self._events = AuthEventEmitter(initialized=not detect_session_in_url)
        self._channels: dict[str, ChannelHandle] = {}

    @property
    def server(self) -> LocalBackendServer:
        """The server this client talks to."""
        return self._server

    @property
    def open_channel_count(self) -> int:
        """Channels opened by this client that are still open."""
        return len(self._channels)

    @property
    def session_listener_count(self) -> int:
        """Number of registered auth listeners."""
        return self._events.listener_count

    async def initialize(self, url: str | None = None) -> Session | None:
        """Consume a code in `url` when created with session detection."""
        if not self._events.is_initialized:
            try:
                await detect_session_in_url(self.exchange_code_for_session, url)
            finally:
                self._events.finish_initialize(self._session)
        return self._session

    async def exchange_code_for_session(self, url: str) -> Session:
        """Redeem the code in the URL and emit SIGNED_IN."""
        code = extract_auth_code(url)
        if code is None:
            raise BackendError("auth", "No authorization code in URL")
        principal = self._server.redeem_code(code)
        session = Session(access_token=secrets.token_urlsafe(32), principal=principal)
        self._set_session(session, AuthEvent.SIGNED_IN)
        return session

    async def get_session(self) -> Session | None:
        """Return the current session."""
        return self._session

    def on_session_change(self, listener: SessionListener) -> Unsubscribe:
        """Register an auth listener; INITIAL_SESSION follows once initialized."""
        return self._events.add(listener, self._session)

    async def sign_in_with_oauth(self, provider: str, redirect_url: str) -> str:
        """
        Simulate the provider round trip.

        Returns the callback URL the provider would redirect to: with a code
        when `server.oauth_principal` consents, with an access_denied error
        otherwise.
        """
        principal = self._server.oauth_principal
        if principal is None:
            params = {"error": "access_denied",
                      "error_description": f"{provider} sign-in was cancelled"}
        else:
            self._server.register_principal(principal)
            params = {"code": self._server.issue_code(principal.id)}
        return f"{redirect_url}?{urlencode(params)}"

    async def sign_out(self) -> None:
        """Drop the session and emit SIGNED_OUT."""
        if self._session is None:
            return
        self._set_session(None, AuthEvent.SIGNED_OUT)

    async def list_rows(
        self, table: str, *, order_by: str, descending: bool = True,
    ) -> list[dict[str, Any]]:
        """Rows visible to this client's principal."""
        return await self._server.select_rows(self._principal_id(), table, order_by, descending)

    async def insert_row(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        """Insert a row as this client's principal."""
        return await self._server.insert_row(self._principal_id(), table, record)

    async def delete_row(self, table: str, row_id: str) -> None:
        """Delete a row as this client's principal."""
        await self._server.delete_row(self._principal_id(), table, row_id)

    async def subscribe(self, table: str, on_change: ChangeListener) -> ChannelHandle:
        """Open a channel scoped to this client's principal."""
        handle = self._server.open_channel(self._principal_id(), table, on_change)
        self._channels[handle.id] = handle
        return handle

    def unsubscribe(self, handle: ChannelHandle) -> None:
        """Close a channel opened by this client."""
        if self._channels.pop(handle.id, None) is not None:
            self._server.close_channel(handle)

    def _principal_id(self) -> str | None:
        return self._session.principal.id if self._session else None

    def _set_session(self, session: Session | None, event: AuthEvent) -> None:
        self._session = session
        self._events.emit(event, session)
