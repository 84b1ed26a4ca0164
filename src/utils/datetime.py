# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""DateTime utilities for the memory core.

All timestamps are timezone-aware UTC. Freshness checks compare document
write times against the last embedding time, so naive and aware values must
never be mixed; SQLite drops tzinfo on read, hence ensure_utc().

Usage:
    from src.utils.datetime import utc_now

    marker = FreshnessMarker(user_id="u-1", last_embedded_at=utc_now())
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Timezone-aware datetime representing current UTC time.
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Ensure a datetime is timezone-aware UTC.

    Args:
        dt: A datetime object (naive or aware) or None.

    Returns:
        Timezone-aware UTC datetime or None.

    Note:
        - If dt is None, returns None
        - If dt is naive, assumes UTC and adds tzinfo
        - If dt is aware, converts to UTC
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def format_iso(dt: datetime | None) -> str | None:
    """Format a datetime as ISO 8601 string.

    Args:
        dt: The datetime to format.

    Returns:
        ISO 8601 string in UTC or None.
    """
    if dt is None:
        return None
    return ensure_utc(dt).isoformat()

