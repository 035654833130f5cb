"""Supabase client — table-style CRUD over the PostgREST API.

Thin wrapper around `requests`: every call builds a REST request against
`<SUPABASE_URL>/rest/v1/<table>` with the configured key. Callers are
expected to check `is_supabase_configured()` first and to catch
`SupabaseError`; nothing here falls back on its own.

Credentials are re-read from the environment on every call (no cached
client), so setting or clearing them at runtime takes effect immediately.

Filters are a dict of column -> value. A plain value means equality; a
2-tuple `(operator, value)` uses that PostgREST operator, e.g.
`{"public_slug": ("ilike", "joes-pizza")}`.
"""

import logging
import os

import requests
from flask import current_app, has_app_context

logger = logging.getLogger(__name__)

# Newest prefix first: the first non-empty variable wins.
URL_ALIASES = (
    "VITE_SUPABASE_URL",
    "NEXT_PUBLIC_SUPABASE_URL",
    "SUPABASE_URL",
)
KEY_ALIASES = (
    "VITE_SUPABASE_ANON_KEY",
    "NEXT_PUBLIC_SUPABASE_ANON_KEY",
    "SUPABASE_ANON_KEY",
    "SUPABASE_SERVICE_KEY",
)

DEFAULT_TIMEOUT = 15


class SupabaseError(Exception):
    """A Supabase request failed (network, auth, or validation error)."""

    def __init__(self, message, status_code=None, details=None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


def _first_env(names):
    for name in names:
        value = os.environ.get(name)
        if value:
            return value
    return None


def get_supabase_config():
    """Return Supabase REST config if URL and key are both set, else None."""
    url = _first_env(URL_ALIASES)
    key = _first_env(KEY_ALIASES)

    if url and key:
        return {"url": url.rstrip("/"), "key": key}
    return None


def is_supabase_configured():
    """True when both a Supabase URL and key are present."""
    return get_supabase_config() is not None


def _timeout():
    if has_app_context():
        return current_app.config.get("SUPABASE_TIMEOUT", DEFAULT_TIMEOUT)
    return DEFAULT_TIMEOUT


def _filter_params(filters):
    params = {}
    for column, value in (filters or {}).items():
        if isinstance(value, tuple):
            operator, operand = value
        else:
            operator, operand = "eq", value
        if operand is None:
            params[column] = "is.null"
        else:
            params[column] = f"{operator}.{operand}"
    return params


def _request(method, table, params=None, json=None, prefer=None):
    """Send one PostgREST request. Returns decoded JSON (list) or []."""
    config = get_supabase_config()
    if config is None:
        raise SupabaseError("Supabase is not configured.")

    url = f"{config['url']}/rest/v1/{table}"
    headers = {
        "apikey": config["key"],
        "Authorization": f"Bearer {config['key']}",
        "Content-Type": "application/json",
    }
    if prefer:
        headers["Prefer"] = prefer

    try:
        resp = requests.request(
            method,
            url,
            headers=headers,
            params=params or {},
            json=json,
            timeout=_timeout(),
        )
    except requests.RequestException as e:
        raise SupabaseError(f"Supabase {method} {table} failed: {e}") from e

    if resp.status_code >= 400:
        try:
            details = resp.json()
        except ValueError:
            details = resp.text
        raise SupabaseError(
            f"Supabase {method} {table} returned {resp.status_code}",
            status_code=resp.status_code,
            details=details,
        )

    if not resp.content:
        return []
    try:
        return resp.json()
    except ValueError as e:
        raise SupabaseError(f"Supabase {method} {table}: invalid JSON") from e


def select(table, columns="*", filters=None, order=None, limit=None):
    """SELECT rows. `order` is "column" or "column.desc"."""
    params = {"select": columns}
    params.update(_filter_params(filters))
    if order:
        params["order"] = order
    if limit is not None:
        params["limit"] = str(limit)
    return _request("GET", table, params=params)


def insert(table, row):
    """INSERT one row, returning the stored representation."""
    return _request("POST", table, json=row, prefer="return=representation")


def upsert(table, row, on_conflict):
    """INSERT or fully replace the row matching `on_conflict`."""
    return _request(
        "POST",
        table,
        params={"on_conflict": on_conflict},
        json=row,
        prefer="resolution=merge-duplicates,return=representation",
    )


def update(table, values, filters):
    """UPDATE the given columns on rows matching `filters`."""
    if not filters:
        raise SupabaseError("Refusing to update without filters.")
    return _request(
        "PATCH",
        table,
        params=_filter_params(filters),
        json=values,
        prefer="return=representation",
    )


def delete(table, filters):
    """DELETE rows matching `filters`."""
    if not filters:
        raise SupabaseError("Refusing to delete without filters.")
    return _request(
        "DELETE", table, params=_filter_params(filters), prefer="return=minimal"
    )
