"""Bookmark model for storing user bookmarks."""
import uuid

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, CreatedAtMixin


class Bookmark(Base, CreatedAtMixin):
    """
    Bookmark model - one URL with a title, owned by one principal.

    user_id holds the auth provider's user id (auth.users.id in Supabase); there
    is no local users table.
    """

    __tablename__ = "bookmarks"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4()),
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)

    def to_row(self) -> dict:
        """Row as the REST API would return it."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "url": self.url,
            "created_at": self.created_at.isoformat(),
        }
