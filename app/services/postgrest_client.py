"""Shared helpers for talking to Supabase/PostgREST."""

from __future__ import annotations

from typing import Optional

from postgrest import APIError as PostgrestAPIError


class BearerTokenError(RuntimeError):
    """Raised when the Authorization header does not carry a usable Bearer token."""


def extract_bearer_token(header_value: Optional[str]) -> str:
    """Return the Bearer token from an Authorization header."""

    if not header_value:
        raise BearerTokenError("No authorization header")
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise BearerTokenError("Invalid bearer token")
    token = parts[1].strip()
    if not token:
        raise BearerTokenError("Missing bearer token")
    return token


def postgrest_status(exc: PostgrestAPIError) -> int:
    """Best effort extraction of an HTTP status code from the API error."""

    try:
        return int(exc.code) if exc.code else 502
    except (TypeError, ValueError):
        return 502


__all__ = ["BearerTokenError", "extract_bearer_token", "postgrest_status"]
