"""Calendar date key helpers.

Every value handled here is a civil date key (``YYYY-MM-DD``), never an absolute
instant. Weekday and "today" are resolved against one named timezone which
callers pass explicitly through ``tz``; the application boundary supplies
``settings.timezone``.

Malformed input never raises: date keys that do not parse and weekday names that
are not recognised fall back to a harmless value (``None``, the input unchanged,
or today) because these helpers feed listings and date pickers.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "America/Denver"

DATE_KEY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

WEEKDAY_NAMES = (
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
)
WEEKDAY_ABBREVS = ("SU", "MO", "TU", "WE", "TH", "FR", "SA")

_NAME_TO_INDEX: dict[str, int] = {}
for _index, _name in enumerate(WEEKDAY_NAMES):
    _NAME_TO_INDEX[_name.lower()] = _index
    _NAME_TO_INDEX[_name[:3].lower()] = _index
    _NAME_TO_INDEX[WEEKDAY_ABBREVS[_index].lower()] = _index

# Weekday is read at local noon so a UTC midnight never rolls into a neighbour day.
NOON = time(12, 0)

TzLike = str | ZoneInfo | None


def _zone(tz: TzLike) -> ZoneInfo:
    if tz is None:
        return ZoneInfo(DEFAULT_TIMEZONE)
    if isinstance(tz, ZoneInfo):
        return tz
    return ZoneInfo(tz)


def parse_date_key(value: object) -> date | None:
    """Return the calendar date for a strict ``YYYY-MM-DD`` key or ``None``."""
    if not isinstance(value, str) or not DATE_KEY_PATTERN.match(value):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def is_valid_date_key(value: object) -> bool:
    return parse_date_key(value) is not None


def date_key_from_datetime(moment: datetime, *, tz: TzLike = None) -> str:
    """Project an instant onto the civil calendar. Naive values are UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(_zone(tz)).date().isoformat()


def today(*, tz: TzLike = None, now: datetime | None = None) -> str:
    """Return today's date key in the civil timezone."""
    return date_key_from_datetime(now or datetime.now(UTC), tz=tz)


def add_days(date_key: str, days: int) -> str:
    """Calendar arithmetic on a date key; unparseable keys are returned as-is."""
    parsed = parse_date_key(date_key)
    if parsed is None:
        return date_key
    return (parsed + timedelta(days=days)).isoformat()


def days_between(start_key: str, end_key: str) -> int | None:
    start, end = parse_date_key(start_key), parse_date_key(end_key)
    if start is None or end is None:
        return None
    return (end - start).days


def iter_date_keys(start_key: str, end_key: str) -> Iterator[str]:
    """Yield every date key from ``start_key`` to ``end_key`` inclusive."""
    span = days_between(start_key, end_key)
    if span is None:
        return
    for offset in range(span + 1):
        yield add_days(start_key, offset)


def weekday_index_from_name(name: str | None) -> int | None:
    """Return 0 (Sunday) .. 6 (Saturday) for a weekday name or abbreviation."""
    if not name:
        return None
    return _NAME_TO_INDEX.get(name.strip().lower())


def weekday_index_from_date(date_key: str, *, tz: TzLike = None) -> int | None:
    """Return 0 (Sunday) .. 6 (Saturday) for ``date_key``."""
    parsed = parse_date_key(date_key)
    if parsed is None:
        return None
    local_noon = datetime.combine(parsed, NOON, tzinfo=_zone(tz))
    return (local_noon.weekday() + 1) % 7


def weekday_name_from_date(date_key: str, *, tz: TzLike = None) -> str | None:
    index = weekday_index_from_date(date_key, tz=tz)
    if index is None:
        return None
    return WEEKDAY_NAMES[index]


def next_occurrence_of_weekday(
    name: str,
    *,
    include_today: bool = True,
    today_key: str | None = None,
    tz: TzLike = None,
) -> str:
    """Return the earliest date on or after today that falls on ``name``.

    With ``include_today=False`` a match on today itself moves a week ahead.
    Unrecognised names return today.
    """
    today_key = today_key or today(tz=tz)
    target = weekday_index_from_name(name)
    current = weekday_index_from_date(today_key, tz=tz)
    if target is None or current is None:
        return today_key
    days_until = (target - current) % 7
    if days_until == 0 and not include_today:
        days_until = 7
    return add_days(today_key, days_until)


def snap_to_weekday(date_key: str, target_weekday_index: int, *, tz: TzLike = None) -> str:
    """Move ``date_key`` forward (0-6 days) onto ``target_weekday_index``."""
    current = weekday_index_from_date(date_key, tz=tz)
    if current is None or target_weekday_index not in range(7):
        return date_key
    return add_days(date_key, (target_weekday_index - current) % 7)


def format_date_key_short(date_key: str) -> str:
    """``2026-01-17`` -> ``Sat, Jan 17``."""
    parsed = parse_date_key(date_key)
    if parsed is None:
        return date_key
    return f"{parsed:%a, %b} {parsed.day}"


def format_date_key_for_display(date_key: str) -> str:
    """``2026-01-17`` -> ``Saturday, January 17, 2026``."""
    parsed = parse_date_key(date_key)
    if parsed is None:
        return date_key
    return f"{parsed:%A, %B} {parsed.day}, {parsed.year}"


def format_date_key_for_email(date_key: str) -> str:
    """``2026-01-17`` -> ``01-17-2026``."""
    parsed = parse_date_key(date_key)
    if parsed is None:
        return date_key
    return f"{parsed:%m-%d-%Y}"


def format_date_group_header(date_key: str, today_key: str) -> str:
    """Return ``Today``, ``Tomorrow`` or a short date for a timeline header."""
    if date_key == today_key:
        return "Today"
    if date_key == add_days(today_key, 1):
        return "Tomorrow"
    return format_date_key_short(date_key)
