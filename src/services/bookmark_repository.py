"""Repository for the bookmarks collection of the current principal."""
import logging

from pydantic import ValidationError

from core.session_store import SessionStore
from schemas.bookmark import Bookmark, BookmarkCreate
from services.exceptions import FetchError, WriteError
from shared.backend import Backend
from shared.backend_errors import BackendError

logger = logging.getLogger(__name__)


class BookmarkRepository:
    """
    CRUD façade over the remote bookmarks table.

    Reads are never filtered by owner here: the backend's row-level security
    scopes every query to the signed-in principal. Inserts carry the owner from
    the session store so the insert policy can check it.
    """

    def __init__(
        self,
        backend: Backend,
        session_store: SessionStore,
        table: str = "bookmarks",
    ) -> None:
        self._backend = backend
        self._session_store = session_store
        self._table = table

    async def list(self) -> list[Bookmark]:
        """
        Return the principal's bookmarks, newest first.

        Raises:
            FetchError: On transport, policy, or malformed-row failure.
        """
        try:
            rows = await self._backend.list_rows(
                self._table, order_by="created_at", descending=True,
            )
        except BackendError as e:
            logger.warning("Listing bookmarks failed (%s): %s", e.category, e.message)
            raise FetchError(f"List failed: {e.message}") from e

        try:
            return [Bookmark.model_validate(row) for row in rows]
        except ValidationError as e:
            logger.warning("Backend returned malformed bookmark rows: %s", e)
            raise FetchError("List returned malformed rows") from e

    async def insert(self, title: str, url: str) -> Bookmark:
        """
        Create a bookmark owned by the current principal.

        The URL is normalized (https:// prefixed when it has no scheme).

        Raises:
            WriteError: On validation failure, missing principal, or backend failure.
        """
        principal = self._session_store.principal
        if principal is None:
            raise WriteError("Insert attempted without an authenticated principal",
                             "Failed to add bookmark.")

        try:
            data = BookmarkCreate(title=title, url=url, owner_id=principal.id)
        except ValidationError as e:
            raise WriteError(f"Invalid bookmark: {e}", "Failed to add bookmark.") from e

        try:
            row = await self._backend.insert_row(self._table, data.model_dump(by_alias=True))
        except BackendError as e:
            logger.warning("Inserting bookmark failed (%s): %s", e.category, e.message)
            raise WriteError(f"Insert failed: {e.message}", "Failed to add bookmark.") from e

        try:
            return Bookmark.model_validate(row)
        except ValidationError as e:
            raise WriteError("Insert returned a malformed row", "Failed to add bookmark.") from e

    async def delete(self, bookmark_id: str) -> None:
        """
        Delete a bookmark of the current principal.

        Raises:
            WriteError: If the bookmark does not exist, is not owned, or the backend fails.
        """
        try:
            await self._backend.delete_row(self._table, bookmark_id)
        except BackendError as e:
            logger.warning(
                "Deleting bookmark %s failed (%s): %s", bookmark_id, e.category, e.message,
            )
            raise WriteError(
                f"Delete failed: {e.message}", "Failed to delete bookmark.",
            ) from e
