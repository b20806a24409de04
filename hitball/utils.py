"""Shared utility helpers for hitball-bot."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

PROVISIONAL_PREFIX = "handle:"


def normalize_handle(handle: str) -> str:
    """Strip a leading '@' and lowercase a username for index lookups."""
    return handle.strip().lstrip("@").lower()


def provisional_id(handle: str) -> str:
    """Synthesize the provisional identity key for a handle."""
    return f"{PROVISIONAL_PREFIX}{normalize_handle(handle)}"


def is_provisional(identity_id: str) -> bool:
    return identity_id.startswith(PROVISIONAL_PREFIX)


def display_name_for(person: dict[str, Any]) -> str:
    """Human-readable label for a Telegram user dict.

    ``@username`` when present, then ``first last``, then ``first``,
    then ``User <id>``.
    """
    username = person.get("username")
    first = person.get("first_name")
    last = person.get("last_name")
    if username:
        return f"@{username}"
    if first and last:
        return f"{first} {last}"
    if first:
        return first
    return f"User {person.get('id')}"


def escape_markdown(text: str) -> str:
    """Escape characters that legacy Telegram Markdown treats as markup."""
    for ch in ("_", "*", "`", "["):
        text = text.replace(ch, f"\\{ch}")
    return text


def parse_timestamp(ts: str | None) -> datetime | None:
    """Parse an ISO-8601 string to a timezone-aware datetime, or None."""
    if not ts:
        return None
    try:
        dt = datetime.fromisoformat(ts)
        # Naive timestamps are stored as UTC
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except (ValueError, TypeError):
        return None


def format_timestamp(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def now_utc() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)
