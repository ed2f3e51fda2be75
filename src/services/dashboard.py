"""
Dashboard coordinator: session-gated bookmark list with live sync.

Wires the session store, bookmark repository, change feed and view model
together for the lifetime of the dashboard screen. Nothing is fetched or
subscribed until the session store reports an authenticated principal, and the
change-feed channel is closed before the user is sent back to the entry screen.
"""
import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from core.navigation import Navigator, Route
from core.session_store import SessionStore
from schemas.bookmark import Bookmark
from schemas.session import Session, SessionState
from services.auth_service import sign_out
from services.bookmark_repository import BookmarkRepository
from services.change_feed import ChangeFeedSubscriber
from services.exceptions import FetchError, WriteError
from services.view_model import BookmarkViewModel
from shared.backend import Backend, Unsubscribe

logger = logging.getLogger(__name__)


class DashboardController:
    """Page-level lifecycle for the bookmarks dashboard."""

    def __init__(
        self,
        backend: Backend,
        session_store: SessionStore,
        navigator: Navigator,
        table: str = "bookmarks",
    ) -> None:
        self._backend = backend
        self._session_store = session_store
        self._navigator = navigator
        self.view = BookmarkViewModel()
        self.repository = BookmarkRepository(backend, session_store, table)
        self.feed = ChangeFeedSubscriber(backend, self.refresh, table)
        self._unsubscribe_session: Unsubscribe | None = None
        # Principal the live view was started for; None while not live
        self._live_principal_id: str | None = None
        # Background tasks set to prevent garbage collection
        self._background_tasks: set[asyncio.Task] = set()

    @property
    def is_mounted(self) -> bool:
        """Check if the dashboard is listening to the session store."""
        return self._unsubscribe_session is not None

    def mount(self) -> None:
        """
        Start listening for session changes.

        Mounting twice without unmounting is a no-op, so there is never more
        than one session listener or channel per dashboard.
        """
        if self.is_mounted:
            return
        self._unsubscribe_session = self._session_store.add_listener(self._on_session_state)
        if self._session_store.state != SessionState.PENDING:
            self._on_session_state(self._session_store.state, self._session_store.session)

    def unmount(self) -> None:
        """Close the channel and stop listening. Safe to call repeatedly."""
        self._stop_live_view()
        if self._unsubscribe_session is not None:
            self._unsubscribe_session()
            self._unsubscribe_session = None

    async def wait_idle(self) -> None:
        """Wait for background fetch/subscribe work and feed refreshes to finish."""
        while self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        await self.feed.wait_idle()

    async def refresh(self) -> None:
        """Replace the list with a fresh fetch; keep the stale list on failure."""
        try:
            bookmarks = await self.repository.list()
        except FetchError as e:
            self.view.set_error(e.user_message)
            return
        if self._live_principal_id is None:
            # Signed out while the fetch was in flight
            return
        self.view.replace_bookmarks(bookmarks)

    async def add_bookmark(self) -> Bookmark | None:
        """
        Submit the compose form.

        On success the new bookmark is shown immediately and the form cleared.
        On failure the form keeps its input and the error is shown.
        """
        if not self.view.can_submit:
            return None

        self.view.adding = True
        self.view.dismiss_error()
        try:
            bookmark = await self.repository.insert(self.view.title, self.view.url)
        except WriteError as e:
            self.view.set_error(e.user_message)
            return None
        finally:
            self.view.adding = False

        self.view.prepend_bookmark(bookmark)
        return bookmark

    async def delete_bookmark(self, bookmark_id: str) -> bool:
        """Delete a bookmark; on failure the row stays and the error is shown."""
        self.view.deleting_id = bookmark_id
        self.view.dismiss_error()
        try:
            await self.repository.delete(bookmark_id)
        except WriteError as e:
            self.view.set_error(e.user_message)
            return False
        finally:
            self.view.deleting_id = None

        self.view.remove_bookmark(bookmark_id)
        return True

    async def logout(self) -> None:
        """Close the channel, sign out and return to the entry screen."""
        self.unmount()
        await sign_out(self._backend)
        self._navigator.navigate(Route.ENTRY)

    def _on_session_state(self, state: SessionState, session: Session | None) -> None:
        if state == SessionState.AUTHENTICATED and session is not None:
            principal_id = session.principal.id
            if principal_id == self._live_principal_id:
                return
            if self._live_principal_id is not None:
                logger.info("Principal changed; restarting live view")
                self._stop_live_view()
                self.view.replace_bookmarks([])
            self._live_principal_id = principal_id
            self._spawn(self._start_live_view())
            return

        if state == SessionState.UNAUTHENTICATED:
            self._stop_live_view()
            self.view.replace_bookmarks([])
            self._navigator.navigate(Route.ENTRY)

    async def _start_live_view(self) -> None:
        # Subscribe before the initial fetch so no change falls between them
        try:
            await self.feed.start()
        except FetchError as e:
            self.view.set_error(e.user_message)
        # Queued behind feed-triggered refreshes so results apply in order
        self.feed.request_refresh()

    def _stop_live_view(self) -> None:
        self.feed.close()
        self._live_principal_id = None
        current = asyncio.current_task() if _loop_running() else None
        for task in list(self._background_tasks):
            if task is not current and not task.done():
                task.cancel()

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True
