"""Utility helpers for Happenings."""

from __future__ import annotations

from datetime import UTC, datetime
import re
import unicodedata

_slug_invalid = re.compile(r"[^a-z0-9]+")
_time_pattern = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def slugify(value: str) -> str:
    """Return a canonical slug suitable for URLs."""
    value = (
        unicodedata.normalize("NFKD", value or "")
        .encode("ascii", "ignore")
        .decode("ascii")
    )
    value = value.strip().lower()
    value = _slug_invalid.sub("-", value)
    value = value.strip("-")
    return value


def normalize_time(value: str | None) -> str | None:
    """Return ``HH:MM`` for a civil time string, or ``None`` when unparseable."""
    if not value or not isinstance(value, str):
        return None
    match = _time_pattern.match(value.strip())
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return f"{hours:02d}:{minutes:02d}"


def format_time_12h(value: str | None) -> str:
    """Render ``19:30`` as ``7:30 PM``; unknown times render as ``NA``."""
    normalized = normalize_time(value)
    if not normalized:
        return "NA"
    hours, minutes = (int(part) for part in normalized.split(":"))
    suffix = "AM" if hours < 12 else "PM"
    display_hour = hours % 12 or 12
    return f"{display_hour}:{minutes:02d} {suffix}"
