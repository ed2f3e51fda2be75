"""Pydantic schemas for authentication sessions and auth events."""
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict


class SessionState(StrEnum):
    """Authentication state of the current page."""

    PENDING = "pending"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


class AuthEvent(StrEnum):
    """Events emitted by the backend's auth subsystem."""

    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"


class Principal(BaseModel):
    """The authenticated identity associated with a session."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str | None = None
    display_name: str | None = None
    avatar_url: str | None = None

    @classmethod
    def from_user_payload(cls, user: dict[str, Any]) -> "Principal":
        """
        Build a principal from a GoTrue user object.

        OAuth providers put the profile in `user_metadata`; Google uses
        `full_name`/`avatar_url`, others use `name`/`picture`.
        """
        metadata = user.get("user_metadata") or {}
        return cls(
            id=user["id"],
            email=user.get("email") or metadata.get("email"),
            display_name=metadata.get("full_name") or metadata.get("name"),
            avatar_url=metadata.get("avatar_url") or metadata.get("picture"),
        )


class Session(BaseModel):
    """An authenticated session issued by the backend."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    principal: Principal

    @property
    def is_expired(self) -> bool:
        """Check if the access token has expired."""
        if self.expires_at is None:
            return False
        return self.expires_at <= datetime.now(UTC)
