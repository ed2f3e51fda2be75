"""Sign-in and sign-out from the entry and dashboard screens."""
import logging
import webbrowser

from core.config import Settings
from services.exceptions import AuthError
from shared.backend import Backend
from shared.backend_errors import BackendError

logger = logging.getLogger(__name__)


async def start_sign_in(
    backend: Backend,
    settings: Settings,
    open_browser: bool = False,
) -> str:
    """
    Begin the OAuth sign-in flow.

    Asks the backend for the provider authorization URL, redirecting back to
    the callback screen. The URL is returned; with `open_browser` it is also
    opened in the system browser.

    Raises:
        AuthError: If the backend cannot start the flow.
    """
    try:
        authorize_url = await backend.sign_in_with_oauth(
            settings.oauth_provider, settings.auth_callback_url,
        )
    except BackendError as e:
        raise AuthError(f"Could not start sign-in: {e.message}", "Could not start sign-in.") from e

    logger.info("Starting %s sign-in", settings.oauth_provider)
    if open_browser:
        webbrowser.open(authorize_url)
    return authorize_url


async def sign_out(backend: Backend) -> None:
    """
    End the session.

    A transport failure is logged and swallowed: the local session is gone
    either way and the user lands on the entry screen.
    """
    try:
        await backend.sign_out()
    except BackendError as e:
        logger.warning("Sign-out request failed (%s): %s", e.category, e.message)
