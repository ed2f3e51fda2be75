"""Tests for sign-in/sign-out helpers and the application composition root."""
from unittest.mock import patch

import pytest

from backends.local import LocalBackend, LocalBackendServer
from backends.supabase import SupabaseBackend
from core.config import Settings
from core.navigation import Route
from schemas.session import Principal, SessionState
from services.app import BookmarkApp, create_app
from services.auth_service import sign_out, start_sign_in
from services.exceptions import AuthError
from shared.backend_errors import BackendError

from tests.conftest import CALLBACK_URL, RecordingNavigator


class FailingAuthBackend:
    """Backend whose auth calls fail with a transport error."""

    async def sign_in_with_oauth(self, provider: str, redirect_url: str) -> str:
        raise BackendError("transport", "unreachable")

    async def sign_out(self) -> None:
        raise BackendError("transport", "unreachable")


class TestStartSignIn:
    """Tests for start_sign_in."""

    async def test__returns_authorize_url_for_callback(
        self, local_server: LocalBackendServer, backend: LocalBackend,
        settings: Settings, alice: Principal,
    ) -> None:
        """The provider is sent back to the callback route."""
        local_server.oauth_principal = alice

        url = await start_sign_in(backend, settings)

        assert url.startswith(f"{CALLBACK_URL}?code=")

    async def test__open_browser(
        self, local_server: LocalBackendServer, backend: LocalBackend,
        settings: Settings, alice: Principal,
    ) -> None:
        """With open_browser the URL is handed to the system browser."""
        local_server.oauth_principal = alice

        with patch("services.auth_service.webbrowser.open") as mock_open:
            url = await start_sign_in(backend, settings, open_browser=True)

        mock_open.assert_called_once_with(url)

    async def test__backend_failure__auth_error(self, settings: Settings) -> None:
        """A backend that cannot start the flow raises AuthError."""
        with pytest.raises(AuthError) as exc_info:
            await start_sign_in(FailingAuthBackend(), settings)
        assert exc_info.value.user_message == "Could not start sign-in."


class TestSignOut:
    """Tests for sign_out."""

    async def test__failure_swallowed(self) -> None:
        """A failed revoke is logged, not raised."""
        await sign_out(FailingAuthBackend())


class TestBookmarkApp:
    """Tests for the composition root."""

    async def test__full_sign_in_flow(
        self,
        local_server: LocalBackendServer,
        backend: LocalBackend,
        settings: Settings,
        alice: Principal,
    ) -> None:
        """Entry, callback and dashboard screens share one session store."""
        navigator = RecordingNavigator()
        app = create_app(navigator, settings=settings, backend=backend)
        local_server.oauth_principal = alice

        callback_url = await app.login()
        outcome = await app.complete_sign_in(callback_url)

        assert outcome.authenticated
        assert app.session_store.principal == alice
        assert navigator.routes == [Route.DASHBOARD]

        dashboard = app.dashboard()
        dashboard.mount()
        await dashboard.wait_idle()
        assert backend.open_channel_count == 1

        await dashboard.logout()
        assert navigator.routes == [Route.DASHBOARD, Route.ENTRY]
        assert backend.open_channel_count == 0
        app.close()
        assert backend.session_listener_count == 0

    async def test__denied_consent__back_to_entry(
        self, backend: LocalBackend, settings: Settings,
    ) -> None:
        """A cancelled provider sign-in ends on the entry screen."""
        navigator = RecordingNavigator()
        app = BookmarkApp(settings, backend, navigator)

        outcome = await app.complete_sign_in(await app.login())

        assert not outcome.authenticated
        assert app.session_store.state == SessionState.UNAUTHENTICATED
        assert navigator.routes == [Route.ENTRY]

    async def test__redirect_strategy_from_settings(
        self, backend: LocalBackend, settings: Settings,
    ) -> None:
        """The callback handler uses the configured strategy."""
        passive = settings.model_copy(update={"redirect_strategy": "passive"})
        app = BookmarkApp(passive, backend, RecordingNavigator())

        assert app.redirect_handler().strategy == "passive"

    async def test__passive_strategy__full_sign_in_flow(
        self, local_server: LocalBackendServer, settings: Settings, alice: Principal,
    ) -> None:
        """In passive mode the backend client consumes the callback code itself."""
        passive = settings.model_copy(update={"redirect_strategy": "passive"})
        navigator = RecordingNavigator()
        backend = local_server.connect(detect_session_in_url=True)
        app = create_app(navigator, settings=passive, backend=backend)
        local_server.oauth_principal = alice
        assert app.session_store.state == SessionState.PENDING

        outcome = await app.complete_sign_in(await app.login())

        assert outcome.authenticated
        assert app.session_store.principal == alice
        assert navigator.routes == [Route.DASHBOARD]
        assert navigator.replaced_urls == [CALLBACK_URL]
        app.close()

    async def test__passive_strategy__denied_consent(
        self, local_server: LocalBackendServer, settings: Settings,
    ) -> None:
        """A cancelled sign-in settles the store unauthenticated and returns to entry."""
        passive = settings.model_copy(update={"redirect_strategy": "passive"})
        navigator = RecordingNavigator()
        app = create_app(
            navigator, settings=passive, backend=local_server.connect(detect_session_in_url=True),
        )

        outcome = await app.complete_sign_in(await app.login())

        assert not outcome.authenticated
        assert app.session_store.state == SessionState.UNAUTHENTICATED
        assert navigator.routes == [Route.ENTRY]
        app.close()

    async def test__start__settles_store_on_other_pages(
        self, local_server: LocalBackendServer, settings: Settings,
    ) -> None:
        """Loading a page without a callback ends the pending state."""
        backend = local_server.connect(detect_session_in_url=True)
        app = BookmarkApp(settings, backend, RecordingNavigator())
        assert app.session_store.state == SessionState.PENDING

        await app.start()

        assert app.session_store.state == SessionState.UNAUTHENTICATED
        app.close()

    async def test__create_app__defaults_to_supabase(self, settings: Settings) -> None:
        """Without an explicit backend the Supabase adapter is built from settings."""
        app = create_app(RecordingNavigator(), settings=settings)

        assert isinstance(app.backend, SupabaseBackend)
        assert app.session_store.state == SessionState.UNAUTHENTICATED
        app.close()
        await app.backend.aclose()
