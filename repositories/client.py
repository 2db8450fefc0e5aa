"""
Supabase client construction.

This module contains *only* the database connection setup and response
helpers. The client is built once at process start from Settings and handed
to each repository; nothing connects at import time.
"""

from __future__ import annotations

from typing import Any, Optional

# The dependency is `supabase` (supabase-py). If your editor can't resolve it,
# install it in your environment: `pip install supabase`.
from supabase import Client, create_client  # type: ignore[import-not-found]

from config.settings import Settings

UNIQUE_VIOLATION = "23505"


def create_supabase_client(settings: Settings) -> Client:
    """Official Supabase Python client for the configured project."""

    return create_client(settings.supabase_url, settings.supabase_key)


def check_response(response: Any, action: str) -> list[dict[str, Any]]:
    """
    Raise on a PostgREST error payload; otherwise return the row list.

    Older supabase-py versions report errors on `response.error` instead of
    raising, so both are handled.
    """

    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"Failed to {action}: {error}")
    return list(getattr(response, "data", None) or [])


def first_row(response: Any, action: str) -> Optional[dict[str, Any]]:
    rows = check_response(response, action)
    return rows[0] if rows else None


def is_unique_violation(exc: Exception) -> bool:
    """True when a PostgREST APIError wraps a PostgreSQL unique_violation."""

    return str(getattr(exc, "code", "")) == UNIQUE_VIOLATION


def names_constraint(exc: Exception, constraint: str) -> bool:
    """True when a PostgREST APIError message or details mention `constraint`."""

    text = " ".join(str(getattr(exc, attr, "") or "") for attr in ("message", "details"))
    return constraint in text


__all__ = [
    "Client",
    "create_supabase_client",
    "check_response",
    "first_row",
    "is_unique_violation",
    "names_constraint",
]
