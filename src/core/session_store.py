"""Session store driven by the backend's auth event stream."""
import logging
from collections.abc import Callable

from schemas.session import AuthEvent, Principal, Session, SessionState
from shared.backend import Backend, Unsubscribe

logger = logging.getLogger(__name__)

StateListener = Callable[[SessionState, Session | None], None]

# Events that carry a session whenever the user is signed in
_SESSION_EVENTS = frozenset(
    {
        AuthEvent.INITIAL_SESSION,
        AuthEvent.SIGNED_IN,
        AuthEvent.TOKEN_REFRESHED,
        AuthEvent.USER_UPDATED,
    },
)


class SessionStore:
    """
    Holds the current authentication state and principal.

    The backend's auth event stream is the only writer: `attach()` registers a
    single listener on the backend and every transition comes from it. Listeners
    added with `add_listener()` are told about state changes and principal
    changes, never about no-op events such as a token refresh for the same user.
    """

    def __init__(self) -> None:
        self._state = SessionState.PENDING
        self._session: Session | None = None
        self._listeners: dict[int, StateListener] = {}
        self._next_listener_id = 0
        self._backend_unsubscribe: Unsubscribe | None = None

    @property
    def state(self) -> SessionState:
        """Current authentication state."""
        return self._state

    @property
    def session(self) -> Session | None:
        """Current session, if authenticated."""
        return self._session

    @property
    def principal(self) -> Principal | None:
        """Authenticated principal, if any."""
        return self._session.principal if self._session else None

    @property
    def is_authenticated(self) -> bool:
        """Check if the session is established."""
        return self._state == SessionState.AUTHENTICATED

    @property
    def is_attached(self) -> bool:
        """Check if the store is listening to a backend."""
        return self._backend_unsubscribe is not None

    def attach(self, backend: Backend) -> None:
        """
        Start listening to a backend's auth events.

        An existing registration is torn down first, so at most one backend
        listener exists per store.
        """
        self.detach()
        self._backend_unsubscribe = backend.on_session_change(self._handle_auth_event)

    def detach(self) -> None:
        """Stop listening to the backend."""
        if self._backend_unsubscribe is not None:
            self._backend_unsubscribe()
            self._backend_unsubscribe = None

    def add_listener(self, listener: StateListener) -> Unsubscribe:
        """Register a state listener and return its unsubscribe callable."""
        listener_id = self._next_listener_id
        self._next_listener_id += 1
        self._listeners[listener_id] = listener

        def unsubscribe() -> None:
            self._listeners.pop(listener_id, None)

        return unsubscribe

    def _handle_auth_event(self, event: AuthEvent, session: Session | None) -> None:
        if event in _SESSION_EVENTS and session is not None:
            self._transition(SessionState.AUTHENTICATED, session)
            return
        if event == AuthEvent.SIGNED_OUT or session is None:
            # Includes INITIAL_SESSION without a session and any event that
            # should have carried one but did not.
            self._transition(SessionState.UNAUTHENTICATED, None)
            return
        logger.debug("Ignoring auth event %s", event)

    def _transition(self, state: SessionState, session: Session | None) -> None:
        previous_state = self._state
        previous_principal = self.principal
        self._state = state
        self._session = session

        principal = self.principal
        principal_changed = (previous_principal and previous_principal.id) != (
            principal and principal.id
        )
        if state == previous_state and not principal_changed:
            return

        logger.info("Session state %s -> %s", previous_state, state)
        for listener in list(self._listeners.values()):
            try:
                listener(state, session)
            except Exception:
                logger.exception("Session listener failed on transition to %s", state)
