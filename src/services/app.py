"""Composition root: builds the backend and screens from settings."""
import logging

from core.config import Settings, get_settings
from core.navigation import Navigator
from core.session_store import SessionStore
from services.auth_service import start_sign_in
from services.dashboard import DashboardController
from services.redirect_handler import RedirectCompletionHandler, RedirectOutcome
from shared.backend import Backend

logger = logging.getLogger(__name__)


class BookmarkApp:
    """
    One application instance per page/process.

    Owns the single backend client and the single session store, and hands
    them to each screen explicitly.
    """

    def __init__(self, settings: Settings, backend: Backend, navigator: Navigator) -> None:
        self.settings = settings
        self.backend = backend
        self.navigator = navigator
        self.session_store = SessionStore()
        self.session_store.attach(backend)

    async def start(self, current_url: str | None = None) -> None:
        """
        Page load: let the backend client finish start-up.

        Clients that detect the session in the URL hold the session store
        pending until this runs.
        """
        await self.backend.initialize(current_url)

    async def login(self, open_browser: bool = False) -> str:
        """Entry screen: start the OAuth flow and return the authorization URL."""
        return await start_sign_in(self.backend, self.settings, open_browser=open_browser)

    def redirect_handler(self) -> RedirectCompletionHandler:
        """Callback screen handler using the configured strategy."""
        return RedirectCompletionHandler(
            self.backend,
            self.session_store,
            self.navigator,
            strategy=self.settings.redirect_strategy,
        )

    async def complete_sign_in(self, callback_url: str) -> RedirectOutcome:
        """Callback screen: finish sign-in from the redirect URL."""
        handler = self.redirect_handler()
        if handler.strategy == "passive":
            # The backend client consumes the code; the handler only waits for the store
            await self.start(callback_url)
        return await handler.complete(callback_url)

    def dashboard(self) -> DashboardController:
        """Dashboard screen controller; the caller mounts and unmounts it."""
        return DashboardController(
            self.backend,
            self.session_store,
            self.navigator,
            table=self.settings.bookmarks_table,
        )

    def close(self) -> None:
        """Stop listening to the backend."""
        self.session_store.detach()


def create_app(
    navigator: Navigator,
    settings: Settings | None = None,
    backend: Backend | None = None,
) -> BookmarkApp:
    """
    Build the application.

    Settings are loaded from the environment when not given; missing backend
    credentials raise a validation error here, before anything else runs.
    Without an explicit backend, the Supabase backend is created from settings.
    """
    settings = settings or get_settings()
    if backend is None:
        from backends.supabase import SupabaseBackend

        backend = SupabaseBackend.from_settings(settings)
    logger.info("Application started against %s", settings.supabase_url)
    return BookmarkApp(settings, backend, navigator)
