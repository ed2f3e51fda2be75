"""Screens the application navigates between and the navigator contract."""
from enum import StrEnum
from typing import Protocol


class Route(StrEnum):
    """Application screens."""

    ENTRY = "/"
    AUTH_CALLBACK = "/auth/callback"
    DASHBOARD = "/dashboard"


class Navigator(Protocol):
    """
    Moves the user between screens.

    Implemented by whatever hosts the application (a web shell, a TUI, a test
    recorder). `replace_url` rewrites the visible location without adding a
    history entry, and is used to drop one-time OAuth parameters.
    """

    def navigate(self, route: Route) -> None:
        """Show the given screen."""
        ...

    def replace_url(self, url: str) -> None:
        """Replace the current location in place."""
        ...
