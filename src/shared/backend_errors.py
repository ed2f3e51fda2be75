"""
Backend error parsing shared by the backend adapters.

Adapters raise BackendError with a semantic category; services translate the
category into the user-facing AuthError/FetchError/WriteError taxonomy.
"""

from typing import Any, Literal

import httpx

ErrorCategory = Literal[
    "auth",       # 401 / invalid grant - invalid, expired or reused credentials
    "forbidden",  # 403 or row-level security rejection
    "not_found",  # 404 or no row matched
    "validation", # 400/422 - rejected payload
    "conflict",   # 409 - unique constraint
    "transport",  # Network failure, no response
    "internal",   # 5xx or unexpected errors
]


class BackendError(Exception):
    """Raised by backend adapters when an operation fails."""

    def __init__(self, category: ErrorCategory, message: str) -> None:
        self.category = category
        self.message = message
        super().__init__(message)


# PostgREST reports row-level security violations on insert as 42501
_RLS_VIOLATION_CODE = "42501"


def parse_http_error(  # noqa: PLR0911
    e: httpx.HTTPStatusError,
    entity_type: str = "",
) -> BackendError:
    """
    Parse an HTTP error from Supabase (GoTrue or PostgREST) into a BackendError.

    Args:
        e: The HTTP status error from httpx
        entity_type: Type of entity (e.g., "bookmark", "session") for error messages

    Returns:
        BackendError with category and message
    """
    status = e.response.status_code
    body = _safe_get_body(e)

    if status == 401:
        return BackendError("auth", "Invalid or expired credentials")

    if status == 403 or body.get("code") == _RLS_VIOLATION_CODE:
        return BackendError("forbidden", "Access denied")

    if status == 404:
        msg = f"{entity_type.title()} not found" if entity_type else "Not found"
        return BackendError("not_found", msg)

    if status == 409:
        return BackendError("conflict", _extract_message(body, "Conflicting record"))

    if status in (400, 422):
        # GoTrue answers a bad, expired or reused PKCE code with 400 invalid_grant
        error_code = body.get("error_code") or body.get("error")
        if error_code in ("invalid_grant", "bad_code_verifier", "flow_state_not_found",
                          "flow_state_expired"):
            return BackendError("auth", _extract_message(body, "Invalid authorization code"))
        return BackendError("validation", _extract_message(body, "Validation error"))

    return BackendError("internal", f"Backend error {status}")


def transport_error(e: httpx.TransportError) -> BackendError:
    """Wrap a connection-level failure."""
    return BackendError("transport", f"Could not reach backend: {type(e).__name__}")


def _safe_get_body(e: httpx.HTTPStatusError) -> dict[str, Any]:
    """Safely extract the JSON error body."""
    try:
        body = e.response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _extract_message(body: dict[str, Any], default: str) -> str:
    """Pick the most specific message GoTrue/PostgREST provided."""
    for key in ("msg", "message", "error_description"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
    return default
