"""Shared utility functions used across cfptrack modules."""
from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Any


def utc_now() -> datetime:
    return datetime.now(UTC)


def utc_today() -> date:
    return utc_now().date()


def username_from_email(email: str) -> str:
    """Return the local part of an email address (everything before the first ``@``)."""
    return (email or "").partition("@")[0]


def plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def apply_updates(obj, updates: dict[str, Any], fields: tuple[str, ...]) -> None:
    """Apply non-None values from updates dict to an ORM object."""
    for field in fields:
        val = updates.get(field)
        if val is not None:
            setattr(obj, field, val)
