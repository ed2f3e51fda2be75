"""Backend implementation on Supabase (GoTrue, PostgREST and Realtime)."""
import asyncio
import logging
from typing import Any

import httpx

from backends.supabase_auth import GoTrueClient
from backends.supabase_realtime import Connector, RealtimeChannel, build_socket_url
from backends.supabase_rest import rest_delete, rest_insert, rest_select
from core.config import Settings
from schemas.session import AuthEvent, Session
from shared.backend import (
    AuthEventEmitter,
    ChangeListener,
    ChannelHandle,
    SessionListener,
    Unsubscribe,
    detect_session_in_url,
)
from shared.backend_errors import BackendError
from shared.oauth_urls import extract_auth_code

logger = logging.getLogger(__name__)


class SupabaseBackend:
    """
    Supabase client for one signed-in page.

    Holds the session in memory, emits auth events the way supabase-js does,
    and runs every table request with the session's access token so that
    row-level security scopes it to the principal.
    """

    def __init__(
        self,
        supabase_url: str,
        api_key: str,
        realtime_url: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        heartbeat_interval: float = 25.0,
        reconnect_delay: float = 5.0,
        connector: Connector | None = None,
        detect_session_in_url: bool = False,
    ) -> None:
        self._api_key = api_key
        self._http_client = http_client or httpx.AsyncClient(
            base_url=supabase_url, timeout=timeout,
        )
        self._auth = GoTrueClient(self._http_client, supabase_url, api_key)
        self._socket_url = build_socket_url(realtime_url, api_key)
        self._heartbeat_interval = heartbeat_interval
        self._reconnect_delay = reconnect_delay
        self._connector = connector
        self._session: Session | None = None
        self._events = AuthEventEmitter(initialized=not detect_session_in_url)
        self._refresh_lock = asyncio.Lock()
        self._channels: dict[str, RealtimeChannel] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupabaseBackend":
        """Create a backend from application settings."""
        return cls(
            settings.supabase_url,
            settings.supabase_anon_key,
            settings.realtime_url,
            timeout=settings.http_timeout,
            heartbeat_interval=settings.realtime_heartbeat_interval,
            reconnect_delay=settings.realtime_reconnect_delay,
            detect_session_in_url=settings.redirect_strategy == "passive",
        )

    @property
    def open_channel_count(self) -> int:
        """Number of joined channels."""
        return len(self._channels)

    async def aclose(self) -> None:
        """Leave every channel and close the HTTP client."""
        for channel in list(self._channels.values()):
            channel.leave()
        self._channels.clear()
        await self._http_client.aclose()

    # Auth

    async def initialize(self, url: str | None = None) -> Session | None:
        """
        Finish start-up for the page at `url`.

        With session detection on, a code in the callback URL is exchanged
        before listeners get INITIAL_SESSION; a bad code leaves the page
        signed out.
        """
        if not self._events.is_initialized:
            try:
                await detect_session_in_url(self.exchange_code_for_session, url)
            finally:
                self._events.finish_initialize(self._session)
        return self._session

    async def exchange_code_for_session(self, url: str) -> Session:
        """Exchange the code in the callback URL and emit SIGNED_IN."""
        code = extract_auth_code(url)
        if code is None:
            raise BackendError("auth", "No authorization code in URL")
        session = await self._auth.exchange_code(code)
        self._set_session(session, AuthEvent.SIGNED_IN)
        return session

    async def get_session(self) -> Session | None:
        """
        Return the current session.

        An expired session is refreshed first; if the refresh is rejected the
        session is dropped and SIGNED_OUT emitted. Concurrent callers share one
        refresh request.
        """
        if self._session is None or not self._session.is_expired:
            return self._session
        async with self._refresh_lock:
            # Another caller may have refreshed while this one waited
            if self._session is None or not self._session.is_expired:
                return self._session
            return await self._refresh_session(self._session)

    def on_session_change(self, listener: SessionListener) -> Unsubscribe:
        """Register an auth listener; INITIAL_SESSION follows once initialized."""
        return self._events.add(listener, self._session)

    async def sign_in_with_oauth(self, provider: str, redirect_url: str) -> str:
        """Start the PKCE flow and return the authorization URL."""
        return self._auth.authorize_url(provider, redirect_url)

    async def sign_out(self) -> None:
        """
        Revoke the session and emit SIGNED_OUT.

        The local session is cleared even when the revoke request fails.
        """
        session = self._session
        if session is None:
            return
        try:
            await self._auth.logout(session.access_token)
        finally:
            self._set_session(None, AuthEvent.SIGNED_OUT)

    # Tables

    async def list_rows(
        self, table: str, *, order_by: str, descending: bool = True,
    ) -> list[dict[str, Any]]:
        """Select every row visible to the principal."""
        return await rest_select(
            self._http_client, table, self._api_key, await self._access_token(),
            order_by, descending,
        )

    async def insert_row(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        """Insert a row; the insert policy checks its owner."""
        return await rest_insert(
            self._http_client, table, self._api_key, await self._access_token(), record,
        )

    async def delete_row(self, table: str, row_id: str) -> None:
        """Delete a row; nothing deleted means not found or not owned."""
        deleted = await rest_delete(
            self._http_client, table, self._api_key, await self._access_token(), row_id,
        )
        if not deleted:
            raise BackendError("not_found", f"No {table} row {row_id} for this user")

    # Change feed

    async def subscribe(self, table: str, on_change: ChangeListener) -> ChannelHandle:
        """Join a realtime channel for every change on `table`."""
        kwargs: dict[str, Any] = {}
        if self._connector is not None:
            kwargs["connector"] = self._connector
        channel = RealtimeChannel(
            self._socket_url,
            table,
            on_change,
            access_token=await self._access_token(),
            token_provider=self._access_token,
            heartbeat_interval=self._heartbeat_interval,
            reconnect_delay=self._reconnect_delay,
            **kwargs,
        )
        await channel.join()
        self._channels[channel.id] = channel
        return ChannelHandle(id=channel.id, table=table)

    def unsubscribe(self, handle: ChannelHandle) -> None:
        """Leave a channel."""
        channel = self._channels.pop(handle.id, None)
        if channel is not None:
            channel.leave()

    async def _access_token(self) -> str | None:
        session = await self.get_session()
        return session.access_token if session else None

    async def _refresh_session(self, expired: Session) -> Session | None:
        if not expired.refresh_token:
            self._set_session(None, AuthEvent.SIGNED_OUT)
            return None
        try:
            session = await self._auth.refresh(expired.refresh_token)
        except BackendError as e:
            if e.category != "auth":
                raise
            logger.info("Refresh token rejected; signing out")
            self._set_session(None, AuthEvent.SIGNED_OUT)
            return None
        self._set_session(session, AuthEvent.TOKEN_REFRESHED)
        for channel in list(self._channels.values()):
            await channel.update_access_token(session.access_token)
        return session

    def _set_session(self, session: Session | None, event: AuthEvent) -> None:
        self._session = session
        self._events.emit(event, session)
