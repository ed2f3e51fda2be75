"""Change-feed subscriber that re-fetches bookmarks on any table change."""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum

from services.exceptions import FetchError
from shared.backend import Backend, ChangeEvent, ChannelHandle
from shared.backend_errors import BackendError

logger = logging.getLogger(__name__)


class FeedState(StrEnum):
    """Lifecycle of the change-feed channel."""

    IDLE = "idle"
    SUBSCRIBING = "subscribing"
    ACTIVE = "active"


class ChangeFeedSubscriber:
    """
    Keeps one change-feed channel open and re-fetches on every event.

    Events are not diffed: any insert, update or delete triggers a full refresh.
    Events that arrive while a refresh is running coalesce into one follow-up
    refresh. `close()` is synchronous and nothing fires after it returns.

    Each start/close bumps a generation counter; callbacks and joins from an
    older generation are dropped.
    """

    def __init__(
        self,
        backend: Backend,
        refresh: Callable[[], Awaitable[None]],
        table: str = "bookmarks",
    ) -> None:
        self._backend = backend
        self._refresh = refresh
        self._table = table
        self._state = FeedState.IDLE
        self._handle: ChannelHandle | None = None
        self._generation = 0
        self._refresh_task: asyncio.Task | None = None
        self._refresh_pending = False

    @property
    def state(self) -> FeedState:
        """Current lifecycle state."""
        return self._state

    @property
    def handle(self) -> ChannelHandle | None:
        """Open channel, if active."""
        return self._handle

    async def start(self) -> None:
        """
        Open the channel. Does nothing unless idle.

        Raises:
            FetchError: If the backend refuses the subscription.
        """
        if self._state != FeedState.IDLE:
            return

        self._generation += 1
        generation = self._generation
        self._state = FeedState.SUBSCRIBING

        def on_change(event: ChangeEvent) -> None:
            self._handle_event(generation, event)

        try:
            handle = await self._backend.subscribe(self._table, on_change)
        except BackendError as e:
            if generation == self._generation:
                self._state = FeedState.IDLE
            logger.warning("Subscribing to %s failed: %s", self._table, e.message)
            raise FetchError(
                f"Subscribe failed: {e.message}", "Live updates are unavailable.",
            ) from e

        if generation != self._generation:
            # Closed while the join was in flight
            self._backend.unsubscribe(handle)
            logger.info("Discarded channel %s opened after teardown", handle.id)
            return

        self._handle = handle
        self._state = FeedState.ACTIVE
        logger.info("Change feed active on %s (channel %s)", self._table, handle.id)

    def close(self) -> None:
        """Close the channel and cancel any running refresh."""
        self._generation += 1
        self._refresh_pending = False
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        self._refresh_task = None

        if self._handle is not None:
            self._backend.unsubscribe(self._handle)
            logger.info("Change feed closed (channel %s)", self._handle.id)
            self._handle = None
        self._state = FeedState.IDLE

    async def wait_idle(self) -> None:
        """Wait for the running refresh (and any coalesced follow-up) to finish."""
        while self._refresh_task is not None and not self._refresh_task.done():
            await asyncio.gather(self._refresh_task, return_exceptions=True)

    def request_refresh(self) -> None:
        """
        Schedule a refresh outside of any event, e.g. the initial fetch.

        Shares the queue with event-triggered refreshes: if one is running, a
        single follow-up is queued instead of a second concurrent fetch, so a
        fetch that started earlier can never overwrite a later one.
        """
        self._schedule(self._generation)

    def _handle_event(self, generation: int, event: ChangeEvent) -> None:
        if generation != self._generation or self._state == FeedState.IDLE:
            return
        logger.debug("Change on %s: %s", event.table, event.type)
        self._schedule(generation)

    def _schedule(self, generation: int) -> None:
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_pending = True
            return
        self._refresh_task = asyncio.get_running_loop().create_task(
            self._run_refresh(generation),
        )

    async def _run_refresh(self, generation: int) -> None:
        while generation == self._generation:
            self._refresh_pending = False
            try:
                await self._refresh()
            except Exception:
                logger.exception("Feed-triggered refresh failed")
            if not self._refresh_pending:
                return
