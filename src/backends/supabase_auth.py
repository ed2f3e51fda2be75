"""
GoTrue (Supabase Auth) requests for the PKCE OAuth flow.

The provider's own protocol is handled by GoTrue; this module only builds the
authorize URL with a PKCE challenge and talks to the token endpoints.
"""
import base64
import hashlib
import secrets
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlencode

import httpx

from schemas.session import Principal, Session
from shared.backend_errors import BackendError, parse_http_error, transport_error


def generate_code_verifier() -> str:
    """Generate a PKCE code verifier (43-128 unreserved characters)."""
    return secrets.token_urlsafe(64)


def code_challenge(verifier: str) -> str:
    """Derive the S256 code challenge for a verifier."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def session_from_token_response(data: dict[str, Any]) -> Session:
    """
    Build a Session from a GoTrue token response.

    Raises:
        BackendError: If the response has no access token or user.
    """
    if not data.get("access_token") or not isinstance(data.get("user"), dict):
        raise BackendError("auth", "Token response did not contain a session")

    expires_at: datetime | None = None
    if data.get("expires_at"):
        expires_at = datetime.fromtimestamp(int(data["expires_at"]), tz=UTC)
    elif data.get("expires_in"):
        expires_at = datetime.now(UTC) + timedelta(seconds=int(data["expires_in"]))

    return Session(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token"),
        expires_at=expires_at,
        principal=Principal.from_user_payload(data["user"]),
    )


class GoTrueClient:
    """Auth endpoint calls for one browser-tab equivalent."""

    def __init__(self, client: httpx.AsyncClient, base_url: str, api_key: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        # Verifier of the sign-in in progress; consumed by the first exchange
        self._code_verifier: str | None = None

    def authorize_url(self, provider: str, redirect_url: str) -> str:
        """Start a PKCE flow and return the provider authorization URL."""
        self._code_verifier = generate_code_verifier()
        params = {
            "provider": provider,
            "redirect_to": redirect_url,
            "code_challenge": code_challenge(self._code_verifier),
            "code_challenge_method": "s256",
        }
        return f"{self._base_url}/auth/v1/authorize?{urlencode(params)}"

    async def exchange_code(self, auth_code: str) -> Session:
        """
        Exchange an authorization code for a session.

        The verifier is cleared before the request, so a code can only be
        exchanged once per sign-in attempt even if the request fails.

        Raises:
            BackendError: On invalid, expired or reused codes and transport failures.
        """
        verifier = self._code_verifier
        self._code_verifier = None
        if verifier is None:
            raise BackendError("auth", "No sign-in in progress for this authorization code")

        data = await self._post(
            "/auth/v1/token",
            params={"grant_type": "pkce"},
            json={"auth_code": auth_code, "code_verifier": verifier},
        )
        return session_from_token_response(data)

    async def refresh(self, refresh_token: str) -> Session:
        """Trade a refresh token for a new session."""
        data = await self._post(
            "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        return session_from_token_response(data)

    async def logout(self, access_token: str) -> None:
        """Revoke the session's refresh tokens."""
        await self._post("/auth/v1/logout", access_token=access_token)

    async def _post(
        self,
        path: str,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
        access_token: str | None = None,
    ) -> dict[str, Any]:
        headers = {"apikey": self._api_key}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        try:
            response = await self._client.post(path, params=params, json=json, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise parse_http_error(e, "session") from e
        except httpx.TransportError as e:
            raise transport_error(e) from e
        if not response.content:
            return {}
        return response.json()
