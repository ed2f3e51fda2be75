"""
Completion of the OAuth redirect on the callback screen.

Two strategies exist and a handler runs exactly one of them:

- active: exchange the one-time code in the callback URL for a session.
- passive: the backend client consumes the URL during `initialize()` (session
  detection); wait for the session store to report the outcome.

Active is the default because a failed exchange is reported explicitly rather
than inferred from a missing session.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Literal

from core.navigation import Navigator, Route
from core.session_store import SessionStore
from schemas.session import Session, SessionState
from services.exceptions import AuthError
from shared.backend import Backend
from shared.backend_errors import BackendError
from shared.oauth_urls import extract_auth_code, extract_auth_error, strip_auth_params

logger = logging.getLogger(__name__)

RedirectStrategy = Literal["active", "passive"]

SIGNING_IN_STATUS = "Signing you in..."


@dataclass(frozen=True)
class RedirectOutcome:
    """Result of completing the OAuth redirect."""

    authenticated: bool
    destination: Route
    status: str


class RedirectCompletionHandler:
    """
    Turns an OAuth callback URL into a session and leaves the callback screen.

    `complete()` may be called repeatedly (e.g. on re-render); the first call
    does the work and later calls return the same outcome, so a code is never
    exchanged twice and navigation happens once.
    """

    def __init__(
        self,
        backend: Backend,
        session_store: SessionStore,
        navigator: Navigator,
        strategy: RedirectStrategy = "active",
        passive_timeout: float = 10.0,
    ) -> None:
        self._backend = backend
        self._session_store = session_store
        self._navigator = navigator
        self._strategy = strategy
        self._passive_timeout = passive_timeout
        self._completion: asyncio.Task[RedirectOutcome] | None = None
        self.status = SIGNING_IN_STATUS

    @property
    def strategy(self) -> RedirectStrategy:
        """Strategy this handler runs."""
        return self._strategy

    async def complete(self, url: str) -> RedirectOutcome:
        """Complete sign-in from the callback URL and navigate accordingly."""
        if self._completion is None:
            self._completion = asyncio.get_running_loop().create_task(self._complete(url))
        return await asyncio.shield(self._completion)

    async def _complete(self, url: str) -> RedirectOutcome:
        try:
            if self._strategy == "active":
                await self._exchange(url)
            else:
                await self._await_session()
        except AuthError as e:
            logger.warning("Sign-in failed: %s", e)
            outcome = RedirectOutcome(
                authenticated=False, destination=Route.ENTRY, status=e.user_message,
            )
        else:
            outcome = RedirectOutcome(
                authenticated=True, destination=Route.DASHBOARD, status=SIGNING_IN_STATUS,
            )
        finally:
            # The code is single-use; keep it out of history and referrers
            self._navigator.replace_url(strip_auth_params(url))

        self.status = outcome.status
        self._navigator.navigate(outcome.destination)
        return outcome

    async def _exchange(self, url: str) -> Session:
        provider_error = extract_auth_error(url)
        if provider_error:
            raise AuthError(f"Provider rejected sign-in: {provider_error}")
        if extract_auth_code(url) is None:
            raise AuthError("Callback URL has no authorization code")

        try:
            session = await self._backend.exchange_code_for_session(url)
        except BackendError as e:
            raise AuthError(f"Code exchange failed ({e.category}): {e.message}") from e
        logger.info("Signed in as %s", session.principal.id)
        return session

    async def _await_session(self) -> Session:
        loop = asyncio.get_running_loop()
        settled: asyncio.Future[Session | None] = loop.create_future()

        def on_state(state: SessionState, session: Session | None) -> None:
            if not settled.done():
                settled.set_result(session if state == SessionState.AUTHENTICATED else None)

        unsubscribe = self._session_store.add_listener(on_state)
        try:
            if self._session_store.state != SessionState.PENDING:
                on_state(self._session_store.state, self._session_store.session)
            session = await asyncio.wait_for(settled, timeout=self._passive_timeout)
        except TimeoutError as e:
            raise AuthError("Timed out waiting for the session") from e
        finally:
            unsubscribe()

        if session is None:
            raise AuthError("No session was established")
        logger.info("Signed in as %s", session.principal.id)
        return session
