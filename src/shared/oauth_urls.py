"""Helpers for reading and cleaning OAuth redirect URLs."""
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

# One-time parameters the provider/backend append to the callback URL.
OAUTH_CALLBACK_PARAMS = frozenset(
    {"code", "state", "error", "error_code", "error_description"},
)


def get_query_param(url: str, name: str) -> str | None:
    """Return the first value of a query parameter, or None."""
    for key, value in parse_qsl(urlsplit(url).query, keep_blank_values=True):
        if key == name:
            return value
    return None


def extract_auth_code(url: str) -> str | None:
    """Return the authorization code from a callback URL, if present."""
    code = get_query_param(url, "code")
    return code or None


def extract_auth_error(url: str) -> str | None:
    """
    Return the provider error description from a callback URL, if present.

    Falls back to the bare `error` value when no description is given.
    """
    error = get_query_param(url, "error")
    if not error:
        return None
    return get_query_param(url, "error_description") or error


def strip_auth_params(url: str) -> str:
    """Remove one-time OAuth parameters from a URL, keeping everything else."""
    parts = urlsplit(url)
    kept = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key not in OAUTH_CALLBACK_PARAMS
    ]
    return urlunsplit(parts._replace(query=urlencode(kept)))
