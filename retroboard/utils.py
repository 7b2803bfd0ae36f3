"""Shared utility functions used across Retroboard modules."""
from __future__ import annotations

import re
from datetime import datetime

_WHITESPACE_RE = re.compile(r"\s+")


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an ISO-8601 timestamp as returned by the store, None if unparseable."""
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None


def format_date(value: str | datetime | None) -> str:
    """Render a timestamp like ``March 4, 2026 at 02:30 PM``."""
    dt = parse_timestamp(value)
    if dt is None:
        return ""
    return f"{dt:%B} {dt.day}, {dt.year} at {dt:%I:%M %p}"


def slugify(name: str) -> str:
    return _WHITESPACE_RE.sub("-", name.strip()).lower()
