"""
Contract between the application and the managed backend.

The application never talks to a module-level client. A Backend instance is
created once by the composition root and passed to the session store,
repository, change feed and redirect handler.
"""
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from schemas.session import AuthEvent, Session
from shared.backend_errors import BackendError
from shared.oauth_urls import extract_auth_code, extract_auth_error

logger = logging.getLogger(__name__)

# RESYNC: the channel rejoined after a gap and changes may have been missed
ChangeType = Literal["INSERT", "UPDATE", "DELETE", "RESYNC"]
SessionListener = Callable[[AuthEvent, Session | None], None]
Unsubscribe = Callable[[], None]


@dataclass(frozen=True)
class ChangeEvent:
    """A single row change delivered by the change feed."""

    type: ChangeType
    table: str
    record: dict[str, Any] = field(default_factory=dict)
    old_record: dict[str, Any] = field(default_factory=dict)


ChangeListener = Callable[[ChangeEvent], None]


@dataclass(frozen=True)
class ChannelHandle:
    """Opaque reference to an open change-feed channel."""

    id: str
    table: str


class Backend(Protocol):
    """Operations the application consumes from the managed backend."""

    async def initialize(self, url: str | None = None) -> Session | None:
        """
        Finish client start-up for the page at `url` and return the session.

        A client created with session detection exchanges the code found in
        `url` (emitting SIGNED_IN) before its listeners receive
        INITIAL_SESSION. Later calls do nothing.
        """
        ...

    async def exchange_code_for_session(self, url: str) -> Session:
        """Exchange the authorization code in `url` for a session."""
        ...

    async def get_session(self) -> Session | None:
        """Return the current session, refreshing it if expired."""
        ...

    def on_session_change(self, listener: SessionListener) -> Unsubscribe:
        """Register an auth listener; INITIAL_SESSION follows once initialized."""
        ...

    async def sign_in_with_oauth(self, provider: str, redirect_url: str) -> str:
        """Return the provider authorization URL the user must visit."""
        ...

    async def sign_out(self) -> None:
        """End the current session."""
        ...

    async def list_rows(
        self, table: str, *, order_by: str, descending: bool = True,
    ) -> list[dict[str, Any]]:
        """Return every row of `table` visible to the current principal."""
        ...

    async def insert_row(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        """Insert a row and return it as stored."""
        ...

    async def delete_row(self, table: str, row_id: str) -> None:
        """Delete a row; raises BackendError(not_found) when nothing was removed."""
        ...

    async def subscribe(self, table: str, on_change: ChangeListener) -> ChannelHandle:
        """Open a change-feed channel for every event kind on `table`."""
        ...

    def unsubscribe(self, handle: ChannelHandle) -> None:
        """Close a channel. No events are delivered after this returns."""
        ...


class AuthEventEmitter:
    """
    Listener registry for the auth event stream.

    Shared by backend implementations. New listeners receive INITIAL_SESSION
    with the current session, matching supabase-js: immediately once the
    client is initialized, otherwise when `finish_initialize()` runs.
    """

    def __init__(self, initialized: bool = True) -> None:
        self._listeners: dict[int, SessionListener] = {}
        self._next_id = 0
        self._initialized = initialized
        # Listeners registered before initialization, still owed INITIAL_SESSION
        self._awaiting_initial: list[int] = []

    @property
    def is_initialized(self) -> bool:
        """Whether INITIAL_SESSION is delivered on registration."""
        return self._initialized

    def add(self, listener: SessionListener, current: Session | None) -> Unsubscribe:
        """Register a listener and deliver the initial session to it."""
        listener_id = self._next_id
        self._next_id += 1
        self._listeners[listener_id] = listener

        def unsubscribe() -> None:
            self._listeners.pop(listener_id, None)

        if self._initialized:
            self._deliver(listener, AuthEvent.INITIAL_SESSION, current)
        else:
            self._awaiting_initial.append(listener_id)
        return unsubscribe

    def finish_initialize(self, session: Session | None) -> None:
        """Mark the client initialized and deliver the deferred INITIAL_SESSION events."""
        if self._initialized:
            return
        self._initialized = True
        awaiting, self._awaiting_initial = self._awaiting_initial, []
        for listener_id in awaiting:
            listener = self._listeners.get(listener_id)
            if listener is not None:
                self._deliver(listener, AuthEvent.INITIAL_SESSION, session)

    def emit(self, event: AuthEvent, session: Session | None) -> None:
        """Deliver an event to every registered listener."""
        for listener in list(self._listeners.values()):
            self._deliver(listener, event, session)

    @property
    def listener_count(self) -> int:
        """Number of registered listeners."""
        return len(self._listeners)

    @staticmethod
    def _deliver(listener: SessionListener, event: AuthEvent, session: Session | None) -> None:
        try:
            listener(event, session)
        except Exception:
            logger.exception("Auth listener failed handling %s", event)


async def detect_session_in_url(
    exchange: Callable[[str], Awaitable[Session]], url: str | None,
) -> None:
    """
    Exchange the authorization code carried by a callback URL.

    Provider errors in the URL and failed exchanges are logged, not raised:
    the page then starts without a session.
    """
    if url is None:
        return
    provider_error = extract_auth_error(url)
    if provider_error:
        logger.warning("Provider rejected sign-in: %s", provider_error)
        return
    if extract_auth_code(url) is None:
        return
    try:
        await exchange(url)
    except BackendError as e:
        logger.warning("Could not exchange the code in the URL (%s): %s", e.category, e.message)
