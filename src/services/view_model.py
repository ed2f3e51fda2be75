"""In-memory state of the bookmarks dashboard."""
from dataclasses import dataclass, field

from schemas.bookmark import Bookmark


@dataclass
class BookmarkViewModel:
    """
    Ordered bookmark list, compose-form fields, in-flight flags and last error.

    Reducers never touch the list on failure; callers set `error` instead.
    """

    bookmarks: list[Bookmark] = field(default_factory=list)
    title: str = ""
    url: str = ""
    adding: bool = False
    deleting_id: str | None = None
    error: str | None = None

    @property
    def can_submit(self) -> bool:
        """Check if the compose form may be submitted."""
        return bool(self.title.strip() and self.url.strip()) and not self.adding

    def replace_bookmarks(self, bookmarks: list[Bookmark]) -> None:
        """Replace the whole list with a fresh fetch."""
        self.bookmarks = list(bookmarks)

    def prepend_bookmark(self, bookmark: Bookmark) -> None:
        """
        Show a just-created bookmark at the top and clear the form.

        A feed-triggered fetch may already have delivered the row; it is not
        added twice.
        """
        if not any(existing.id == bookmark.id for existing in self.bookmarks):
            self.bookmarks.insert(0, bookmark)
        self.title = ""
        self.url = ""

    def remove_bookmark(self, bookmark_id: str) -> None:
        """Drop exactly the bookmark with this id."""
        self.bookmarks = [b for b in self.bookmarks if b.id != bookmark_id]

    def set_error(self, message: str) -> None:
        """Show an inline error."""
        self.error = message

    def dismiss_error(self) -> None:
        """Clear the inline error."""
        self.error = None
