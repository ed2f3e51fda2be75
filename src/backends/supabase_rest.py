"""HTTP client helpers for Supabase PostgREST table requests."""

from typing import Any

import httpx

from shared.backend_errors import BackendError, parse_http_error, transport_error


def _get_headers(api_key: str, access_token: str | None) -> dict[str, str]:
    """
    Get common headers for table requests.

    The access token selects the row-level security context; without one the
    request runs as the anonymous role and sees no private rows.
    """
    return {
        "apikey": api_key,
        "Authorization": f"Bearer {access_token or api_key}",
        "X-Client-Info": "bookmark-sync",
    }


async def _send(
    client: httpx.AsyncClient,
    method: str,
    path: str,
    headers: dict[str, str],
    params: dict[str, Any] | None = None,
    json: Any = None,
    entity_type: str = "",
) -> Any:
    try:
        response = await client.request(method, path, params=params, json=json, headers=headers)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise parse_http_error(e, entity_type) from e
    except httpx.TransportError as e:
        raise transport_error(e) from e
    if not response.content:
        return None
    return response.json()


async def rest_select(
    client: httpx.AsyncClient,
    table: str,
    api_key: str,
    access_token: str | None,
    order_by: str,
    descending: bool = True,
) -> list[dict[str, Any]]:
    """Select every visible row of a table in the given order."""
    direction = "desc" if descending else "asc"
    rows = await _send(
        client,
        "GET",
        f"/rest/v1/{table}",
        _get_headers(api_key, access_token),
        params={"select": "*", "order": f"{order_by}.{direction}"},
        entity_type=table,
    )
    return rows or []


async def rest_insert(
    client: httpx.AsyncClient,
    table: str,
    api_key: str,
    access_token: str | None,
    record: dict[str, Any],
) -> dict[str, Any]:
    """Insert one row and return it as stored."""
    headers = _get_headers(api_key, access_token)
    headers["Prefer"] = "return=representation"
    rows = await _send(
        client, "POST", f"/rest/v1/{table}", headers, json=[record], entity_type=table,
    )
    if not rows:
        raise BackendError("internal", "Insert returned no row")
    return rows[0]


async def rest_delete(
    client: httpx.AsyncClient,
    table: str,
    api_key: str,
    access_token: str | None,
    row_id: str,
) -> list[dict[str, Any]]:
    """
    Delete a row by id and return the deleted rows.

    Row-level security makes rows of other principals invisible, so deleting
    one of them returns an empty list rather than an error.
    """
    headers = _get_headers(api_key, access_token)
    headers["Prefer"] = "return=representation"
    rows = await _send(
        client,
        "DELETE",
        f"/rest/v1/{table}",
        headers,
        params={"id": f"eq.{row_id}"},
        entity_type=table,
    )
    return rows or []
