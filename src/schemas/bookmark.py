"""Pydantic schemas for bookmark records."""
import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Anything of the form "scheme://" counts as already having a scheme
# (http://, https://, ftp://, chrome://). Everything else gets https:// prefixed.
URL_SCHEME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*://")


def normalize_url(url: str) -> str:
    """
    Normalize user-supplied URL input.

    Trims whitespace and prefixes `https://` when the input has no scheme.

    Raises:
        ValueError: If the URL is empty after trimming.
    """
    normalized = url.strip()
    if not normalized:
        raise ValueError("URL cannot be empty")
    if not URL_SCHEME_PATTERN.match(normalized):
        normalized = f"https://{normalized}"
    return normalized


def validate_title(title: str) -> str:
    """Trim the title and reject empty values."""
    trimmed = title.strip()
    if not trimmed:
        raise ValueError("Title cannot be empty")
    return trimmed


class BookmarkCreate(BaseModel):
    """
    Schema for creating a new bookmark.

    Serialized with `by_alias=True` so `owner_id` goes over the wire as the
    table's `user_id` column.
    """

    model_config = ConfigDict(populate_by_name=True)

    title: str
    url: str
    owner_id: str = Field(alias="user_id")

    @field_validator("title")
    @classmethod
    def check_title(cls, v: str) -> str:
        """Validate title presence."""
        return validate_title(v)

    @field_validator("url")
    @classmethod
    def check_url(cls, v: str) -> str:
        """Validate and normalize the URL."""
        return normalize_url(v)


class Bookmark(BaseModel):
    """A persisted bookmark as returned by the backend."""

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str
    title: str
    url: str
    owner_id: str = Field(alias="user_id")
    created_at: datetime

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: object) -> object:
        """Identifiers are opaque; accept integer keys as strings."""
        if isinstance(v, int):
            return str(v)
        return v
