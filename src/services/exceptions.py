"""Shared exceptions for service layer operations."""


class BookmarkAppError(Exception):
    """
    Base exception for recoverable application failures.

    `user_message` is the short, dismissible text shown inline; the exception
    message keeps the backend detail for logs.
    """

    user_message = "Something went wrong."

    def __init__(self, message: str, user_message: str | None = None) -> None:
        if user_message is not None:
            self.user_message = user_message
        super().__init__(message)


class AuthError(BookmarkAppError):
    """Raised when code exchange or session retrieval fails."""

    user_message = "Authentication failed. Redirecting..."


class FetchError(BookmarkAppError):
    """Raised when bookmarks cannot be listed or the change feed cannot be opened."""

    user_message = "Failed to load bookmarks."


class WriteError(BookmarkAppError):
    """Raised when a bookmark cannot be added or deleted."""

    user_message = "Failed to save changes."
