"""Pytest fixtures for testing."""
import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable, Generator

import pytest

from backends.local import LocalBackend, LocalBackendServer
from core.config import Settings
from core.navigation import Route
from core.session_store import SessionStore
from schemas.session import Principal, Session

CALLBACK_URL = "http://localhost:3000/auth/callback"


class RecordingNavigator:
    """Navigator that records every navigation and URL replacement."""

    def __init__(self) -> None:
        self.routes: list[Route] = []
        self.replaced_urls: list[str] = []

    def navigate(self, route: Route) -> None:
        self.routes.append(route)

    def replace_url(self, url: str) -> None:
        self.replaced_urls.append(url)


async def eventually(predicate: Callable[[], bool], attempts: int = 200) -> None:
    """Yield to the loop until the predicate holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.001)
    raise AssertionError("condition not reached")


@pytest.fixture
def settings() -> Settings:
    """Settings pointing at a fake Supabase project."""
    return Settings(
        _env_file=None,
        SUPABASE_URL="https://project.supabase.co",
        SUPABASE_ANON_KEY="anon-key",
    )


@pytest.fixture
def alice() -> Principal:
    """Primary test principal."""
    return Principal(
        id="11111111-1111-1111-1111-111111111111",
        email="alice@example.com",
        display_name="Alice",
        avatar_url="https://example.com/alice.png",
    )


@pytest.fixture
def bob() -> Principal:
    """Second principal, used to check row-level scoping."""
    return Principal(id="22222222-2222-2222-2222-222222222222", email="bob@example.com")


@pytest.fixture
async def local_server(
    alice: Principal, bob: Principal,
) -> AsyncGenerator[LocalBackendServer]:
    """Start an in-memory local backend with alice and bob registered."""
    server = LocalBackendServer()
    await server.start()
    server.register_principal(alice)
    server.register_principal(bob)
    yield server
    await server.close()


@pytest.fixture
def backend(local_server: LocalBackendServer) -> LocalBackend:
    """A client of the local backend with no session."""
    return local_server.connect()


@pytest.fixture
def session_store(backend: LocalBackend) -> Generator[SessionStore]:
    """Session store attached to the backend client."""
    store = SessionStore()
    store.attach(backend)
    yield store
    store.detach()


@pytest.fixture
def navigator() -> RecordingNavigator:
    """Navigator recording navigation calls."""
    return RecordingNavigator()


@pytest.fixture
def sign_in(
    local_server: LocalBackendServer,
) -> Callable[[LocalBackend, Principal], Awaitable[Session]]:
    """Return a helper that signs a client in as a principal with a fresh code."""

    async def _sign_in(client: LocalBackend, principal: Principal) -> Session:
        code = local_server.issue_code(principal.id)
        return await client.exchange_code_for_session(f"{CALLBACK_URL}?code={code}")

    return _sign_in
