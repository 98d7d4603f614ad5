"""Recurrence interpretation and occurrence expansion.

An event definition is read once by :func:`interpret_recurrence` into a
:class:`NormalizedRecurrence`; both the expander and the human-readable label
consume that one reading so what a card says always matches the dates it shows.

Generation strategy precedence is ``custom_dates`` > ``recurrence_rule`` /
``day_of_week`` > a single ``event_date``. ``event_date`` on a recurring
definition is the *anchor* of the series, not its only date.

``recurrence_rule`` comes in two dialects: legacy text written by the event
forms (``weekly``, ``biweekly``, ``monthly``, ``custom``, ``2nd``, ``1st/3rd``,
``last``...) and RFC 5545 ``RRULE`` strings from calendar imports. Legacy text
is expanded here; RRULE strings are expanded by ``dateutil.rrule``.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, replace
from datetime import date, datetime, time
from typing import Any, Literal

from dateutil.rrule import rrulestr

from .dates import (
    WEEKDAY_ABBREVS,
    WEEKDAY_NAMES,
    TzLike,
    add_days,
    days_between,
    parse_date_key,
    snap_to_weekday,
    weekday_index_from_date,
    weekday_index_from_name,
)

logger = logging.getLogger("uvicorn.error")

Frequency = Literal[
    "weekly", "biweekly", "monthly", "daily", "yearly", "custom", "one-time", "unknown"
]

# Hard ceiling on dates produced for one event in one window.
MAX_PER_EVENT = 40

LEGACY_ORDINALS: dict[str, int] = {
    "1st": 1,
    "2nd": 2,
    "3rd": 3,
    "4th": 4,
    "5th": 5,
    "first": 1,
    "second": 2,
    "third": 3,
    "fourth": 4,
    "fifth": 5,
    "last": -1,
}
ORDINAL_LABELS: dict[int, str] = {1: "1st", 2: "2nd", 3: "3rd", 4: "4th", 5: "5th", -1: "last"}

_ordinal_word = re.compile(r"\b(1st|2nd|3rd|4th|5th|first|second|third|fourth|fifth|last)\b")
_ordinal_split = re.compile(r"[/&,]|\band\b")
_byday_part = re.compile(r"^([+-]?\d+)?([A-Z]{2})$")


def _field(event: Any, name: str) -> Any:
    if isinstance(event, Mapping):
        return event.get(name)
    return getattr(event, name, None)


@dataclass(frozen=True)
class ParsedRRule:
    """The parts of an RRULE that labels and confidence depend on.

    ``text`` is the rule as handed to :func:`dateutil.rrule.rrulestr` for
    expansion: upper-cased, without the ``RRULE:`` prefix, with ``UNTIL``
    reduced to a plain date so it compares against a naive ``DTSTART``.
    """

    freq: str
    interval: int = 1
    byday: tuple[tuple[int | None, str], ...] = ()
    bymonthday: tuple[int, ...] = ()
    count: int | None = None
    until: str | None = None
    text: str = ""


def parse_rrule(rule: str | None) -> ParsedRRule | None:
    """Parse an RFC 5545 RRULE (with or without the ``RRULE:`` prefix).

    Returns ``None`` for legacy text rules, for frequencies below a day and for
    rules dateutil refuses.
    """
    if not rule or "=" not in rule:
        return None
    body = re.sub(r"^RRULE:", "", rule.strip(), flags=re.IGNORECASE)
    freq: str | None = None
    interval = 1
    byday: list[tuple[int | None, str]] = []
    bymonthday: list[int] = []
    count: int | None = None
    until: str | None = None
    parts: list[str] = []
    for part in re.split(r"[;\n]+", body):
        key, _, value = part.partition("=")
        key, value = key.strip().upper(), value.strip().upper()
        if not key or not value:
            continue
        if key == "FREQ":
            freq = value
        elif key == "INTERVAL":
            interval = int(value) if value.isdigit() and int(value) > 0 else 1
        elif key == "BYDAY":
            kept = []
            for chunk in value.split(","):
                match = _byday_part.match(chunk.strip())
                if match and match.group(2) in WEEKDAY_ABBREVS:
                    ordinal = int(match.group(1)) if match.group(1) else None
                    byday.append((ordinal, match.group(2)))
                    kept.append(chunk.strip())
            if not kept:
                continue
            value = ",".join(kept)
        elif key == "BYMONTHDAY":
            bymonthday.extend(
                int(chunk) for chunk in value.split(",") if re.fullmatch(r"[+-]?\d+", chunk)
            )
        elif key == "COUNT":
            count = int(value) if value.isdigit() and int(value) > 0 else None
        elif key == "UNTIL":
            if len(value) >= 8 and value[:8].isdigit():
                candidate = f"{value[:4]}-{value[4:6]}-{value[6:8]}"
                until = candidate if parse_date_key(candidate) else None
            if until is None:
                continue
            value = value[:8]
        elif key in {"DTSTART", "TZID"}:
            continue
        parts.append(f"{key}={value}")
    if freq not in {"DAILY", "WEEKLY", "MONTHLY", "YEARLY"}:
        return None
    text = ";".join(parts)
    try:
        rrulestr(text, dtstart=datetime(2000, 1, 1))
    except (ValueError, KeyError):
        logger.warning("Ignoring recurrence rule dateutil cannot read: %r", rule)
        return None
    return ParsedRRule(
        freq=freq,
        interval=interval,
        byday=tuple(byday),
        bymonthday=tuple(bymonthday),
        count=count,
        until=until,
        text=text,
    )


def is_multi_ordinal_pattern(rule: str | None) -> bool:
    if not rule:
        return False
    lowered = rule.lower().strip()
    if any(separator in lowered for separator in "/&,"):
        return True
    if re.search(r"\band\b", lowered):
        return True
    return len(_ordinal_word.findall(lowered)) > 1


def parse_ordinals(rule: str | None) -> list[int]:
    """``"1st/3rd"`` -> ``[1, 3]``; anything that is not an ordinal pattern -> ``[]``."""
    if not rule:
        return []
    parts = (part.strip() for part in _ordinal_split.split(rule.lower().strip()))
    return [LEGACY_ORDINALS[part] for part in parts if part in LEGACY_ORDINALS]


def build_recurrence_rule_from_ordinals(ordinals: Iterable[int]) -> str:
    """Inverse of :func:`parse_ordinals`: ``[3, 1]`` -> ``"1st/3rd"``, last sorts last."""
    ordered = sorted(set(ordinals), key=lambda value: (value == -1, value))
    return "/".join(ORDINAL_LABELS.get(value, f"{value}th") for value in ordered)


@dataclass(frozen=True)
class NormalizedRecurrence:
    is_recurring: bool
    frequency: Frequency
    day_of_week_index: int | None = None
    ordinals: tuple[int, ...] = ()
    interval: int = 1
    start_date: str | None = None
    end_date: str | None = None
    count: int | None = None
    is_confident: bool = True
    # The weekday was read off the anchor date rather than stated by the host.
    is_inferred: bool = False
    # Every weekday a weekly RRULE names; day_of_week_index is the first.
    weekdays: tuple[int, ...] = ()
    # Normalized RRULE text when dateutil drives the expansion.
    rrule: str | None = None

    @property
    def day_name(self) -> str | None:
        if self.day_of_week_index is None:
            return None
        return WEEKDAY_NAMES[self.day_of_week_index]


def interpret_recurrence(event: Any, *, tz: TzLike = None) -> NormalizedRecurrence:
    """Read the scheduling fields of ``event`` into one normalized form."""
    event_date = _field(event, "event_date")
    event_date = event_date if parse_date_key(event_date) else None
    rule = (_field(event, "recurrence_rule") or "").strip()
    day_index = weekday_index_from_name(_field(event, "day_of_week"))
    is_recurring_flag = _field(event, "is_recurring")
    max_occurrences = _field(event, "max_occurrences")
    count = max_occurrences if isinstance(max_occurrences, int) and max_occurrences > 0 else None

    if _field(event, "custom_dates") or rule.lower() == "custom":
        return NormalizedRecurrence(
            is_recurring=True, frequency="custom", start_date=event_date, count=count
        )

    base = NormalizedRecurrence(
        is_recurring=False, frequency="one-time", start_date=event_date, count=count
    )

    parsed = parse_rrule(rule)
    if parsed:
        return _from_rrule(parsed, base, day_index=day_index, tz=tz)
    if "FREQ=" in rule.upper():
        return NormalizedRecurrence(
            is_recurring=True, frequency="unknown", start_date=event_date, is_confident=False
        )
    if rule:
        return _from_legacy_rule(rule.lower(), base, day_index=day_index, tz=tz)

    if day_index is not None and not (is_recurring_flag is False and event_date):
        return _weekly(base, day_index)
    if is_recurring_flag and event_date:
        return _weekly(base, weekday_index_from_date(event_date, tz=tz), inferred=True)
    if event_date:
        return base
    return NormalizedRecurrence(is_recurring=False, frequency="unknown", is_confident=False)


def _weekly(
    base: NormalizedRecurrence,
    day_index: int | None,
    *,
    interval: int = 1,
    inferred: bool = False,
) -> NormalizedRecurrence:
    return NormalizedRecurrence(
        is_recurring=True,
        frequency="biweekly" if interval == 2 else "weekly",
        day_of_week_index=day_index,
        interval=interval,
        start_date=base.start_date,
        end_date=base.end_date,
        count=base.count,
        is_confident=day_index is not None,
        is_inferred=inferred,
    )


def _monthly(
    base: NormalizedRecurrence,
    day_index: int | None,
    ordinals: Iterable[int],
    *,
    inferred: bool = False,
) -> NormalizedRecurrence:
    ordinals = tuple(ordinals)
    if not ordinals and base.start_date and day_index is not None:
        # Plain "monthly": repeat the anchor's position in its month.
        ordinals = (_ordinal_of(parse_date_key(base.start_date)),)
        inferred = True
    return NormalizedRecurrence(
        is_recurring=True,
        frequency="monthly",
        day_of_week_index=day_index,
        ordinals=ordinals,
        start_date=base.start_date,
        end_date=base.end_date,
        count=base.count,
        is_confident=day_index is not None and bool(ordinals),
        is_inferred=inferred,
    )


def _day_from_anchor(
    base: NormalizedRecurrence, day_index: int | None, tz: TzLike
) -> tuple[int | None, bool]:
    if day_index is not None:
        return day_index, False
    if base.start_date:
        return weekday_index_from_date(base.start_date, tz=tz), True
    return None, False


def _from_rrule(
    parsed: ParsedRRule,
    base: NormalizedRecurrence,
    *,
    day_index: int | None,
    tz: TzLike,
) -> NormalizedRecurrence:
    if parsed.count and not base.count:
        base = replace(base, count=parsed.count)
    if parsed.until:
        base = replace(base, end_date=parsed.until)
    weekdays = tuple(dict.fromkeys(WEEKDAY_ABBREVS.index(code) for _, code in parsed.byday))
    if weekdays:
        day_index = weekdays[0]
    ordinals = tuple(ordinal for ordinal, _ in parsed.byday if ordinal is not None)
    series = NormalizedRecurrence(
        is_recurring=True,
        frequency="unknown",
        interval=parsed.interval,
        start_date=base.start_date,
        end_date=base.end_date,
        count=base.count,
        rrule=parsed.text,
    )

    if parsed.freq == "DAILY":
        return replace(series, frequency="daily")
    if parsed.freq == "YEARLY":
        return replace(
            series,
            frequency="yearly",
            is_confident=base.start_date is not None or "BYMONTH=" in parsed.text,
        )
    if parsed.freq == "MONTHLY":
        if ordinals and day_index is not None:
            monthly = _monthly(base, day_index, ordinals)
            return replace(monthly, interval=parsed.interval, rrule=parsed.text)
        return replace(
            series,
            frequency="monthly",
            day_of_week_index=day_index,
            weekdays=weekdays,
            # Without BYDAY or BYMONTHDAY the anchor's day of month repeats.
            is_confident=bool(weekdays or parsed.bymonthday or base.start_date),
        )
    day_index, inferred = _day_from_anchor(base, day_index, tz)
    weekly = _weekly(base, day_index, interval=parsed.interval, inferred=inferred)
    return replace(
        weekly,
        weekdays=weekdays or ((day_index,) if day_index is not None else ()),
        rrule=parsed.text,
    )


def _from_legacy_rule(
    rule: str,
    base: NormalizedRecurrence,
    *,
    day_index: int | None,
    tz: TzLike,
) -> NormalizedRecurrence:
    day_index, inferred = _day_from_anchor(base, day_index, tz)
    unknown = NormalizedRecurrence(
        is_recurring=True, frequency="unknown", start_date=base.start_date, is_confident=False
    )

    if rule in {"none", ""}:
        if day_index is not None and not inferred:
            return _weekly(base, day_index)
        return base if base.start_date else unknown
    if rule == "weekly":
        return _weekly(base, day_index, inferred=inferred)
    if rule in {"biweekly", "every other week"}:
        return _weekly(base, day_index, interval=2, inferred=inferred)
    if rule == "monthly":
        return _monthly(base, day_index, (), inferred=inferred)
    if rule == "seasonal":
        return unknown
    if is_multi_ordinal_pattern(rule) or rule in LEGACY_ORDINALS:
        ordinals = parse_ordinals(rule)
        if not ordinals:
            return NormalizedRecurrence(
                is_recurring=True, frequency="monthly", is_confident=False
            )
        return _monthly(base, day_index, ordinals, inferred=inferred)
    if day_index is not None:
        return _weekly(base, day_index, inferred=inferred)
    return unknown


# ---------------------------------------------------------------------------
# Expansion
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExpandedOccurrence:
    date_key: str
    is_confident: bool = True


def _ordinal_of(day: date | None) -> int:
    if day is None:
        return 1
    return (day.day - 1) // 7 + 1


def nth_weekday_of_month(year: int, month: int, weekday_index: int, ordinal: int) -> str | None:
    """Date key of the ``ordinal``-th (``-1`` = last) weekday of a month, if any."""
    year += (month - 1) // 12
    month = (month - 1) % 12 + 1
    first = date(year, month, 1)
    # date.weekday(): Monday=0; weekday_index: Sunday=0.
    first_index = (first.weekday() + 1) % 7
    first_match = 1 + (weekday_index - first_index) % 7
    if ordinal > 0:
        day = first_match + 7 * (ordinal - 1)
    else:
        next_month = date(year + month // 12, month % 12 + 1, 1)
        last_day = (next_month.toordinal() - first.toordinal())
        day = first_match + 7 * ((last_day - first_match) // 7) + 7 * (ordinal + 1)
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def _stepped(first: str, from_key: str, step_days: int) -> Iterator[str]:
    current = first
    gap = days_between(first, from_key) or 0
    if gap > 0:
        current = add_days(first, -(-gap // step_days) * step_days)
    while True:
        yield current
        current = add_days(current, step_days)


def _monthly_dates(rec: NormalizedRecurrence, from_key: str) -> Iterator[str]:
    start = parse_date_key(from_key)
    year, month = start.year, start.month
    # A bounded scan: a month without the requested ordinal just yields nothing.
    for _ in range(1200):
        keys = sorted(
            key
            for key in (
                nth_weekday_of_month(year, month, rec.day_of_week_index, ordinal)
                for ordinal in rec.ordinals
            )
            if key and key >= from_key
        )
        yield from dict.fromkeys(keys)
        month += 1
        if month > 12:
            month, year = 1, year + 1


def _yearly_dates(rec: NormalizedRecurrence, anchor: str, from_key: str) -> Iterator[str]:
    anchor_day = parse_date_key(anchor)
    year = anchor_day.year
    while True:
        try:
            key = anchor_day.replace(year=year).isoformat()
        except ValueError:
            key = None
        if key and key >= from_key:
            yield key
        year += rec.interval
        if year > 9999 - rec.interval:
            return


def _midnight(date_key: str) -> datetime:
    return datetime.combine(parse_date_key(date_key), time())


def _rrule_dates(
    rec: NormalizedRecurrence, anchor: str, from_key: str, end_key: str, *, tz: TzLike
) -> list[str]:
    dtstart = anchor
    # Weekly rules without BYDAY repeat the weekday of DTSTART.
    if "BYDAY=" not in rec.rrule and rec.day_of_week_index is not None:
        if rec.frequency in {"weekly", "biweekly"}:
            dtstart = snap_to_weekday(anchor, rec.day_of_week_index, tz=tz)
    rule = rrulestr(rec.rrule, dtstart=_midnight(dtstart))
    return [
        moment.date().isoformat()
        for moment in rule.between(_midnight(from_key), _midnight(end_key), inc=True)
    ]


def _series_dates(
    rec: NormalizedRecurrence, anchor: str, from_key: str, end_key: str, *, tz: TzLike
) -> Iterable[str]:
    if rec.rrule:
        return _rrule_dates(rec, anchor, from_key, end_key, tz=tz)
    if rec.frequency in {"weekly", "biweekly"}:
        first = snap_to_weekday(anchor, rec.day_of_week_index, tz=tz)
        return _stepped(first, from_key, 7 * rec.interval)
    if rec.frequency == "daily":
        return _stepped(anchor, from_key, rec.interval)
    if rec.frequency == "monthly":
        return _monthly_dates(rec, max(anchor, from_key))
    if rec.frequency == "yearly":
        return _yearly_dates(rec, anchor, from_key)
    return iter(())


def expand_occurrences(
    event: Any,
    start_key: str,
    end_key: str,
    *,
    max_per_event: int | None = None,
    tz: TzLike = None,
) -> list[ExpandedOccurrence]:
    """Return the candidate dates of ``event`` inside ``[start_key, end_key]``.

    The result is ascending and free of duplicates. Overrides play no part here.
    ``max_occurrences`` (or an RRULE ``COUNT``) is counted from the series
    anchor, so dates before ``start_key`` still use up the allowance.
    """
    limit = MAX_PER_EVENT if max_per_event is None else max_per_event
    if limit <= 0:
        return []
    if not parse_date_key(start_key) or not parse_date_key(end_key) or start_key > end_key:
        return []

    custom_dates = _field(event, "custom_dates")
    if custom_dates:
        keys = sorted({key for key in custom_dates if parse_date_key(key)})
        return [
            ExpandedOccurrence(key) for key in keys if start_key <= key <= end_key
        ][:limit]

    rec = interpret_recurrence(event, tz=tz)
    if not rec.is_recurring:
        event_date = rec.start_date
        if event_date and start_key <= event_date <= end_key:
            return [ExpandedOccurrence(event_date)]
        return []
    if not rec.is_confident or rec.frequency in {"custom", "unknown"}:
        return []

    anchor = rec.start_date or start_key
    # Counted series walk from the anchor; open-ended ones can skip ahead.
    from_key = anchor if rec.count else max(anchor, start_key)
    confident = not rec.is_inferred

    occurrences: list[ExpandedOccurrence] = []
    produced = 0
    for key in _series_dates(rec, anchor, from_key, end_key, tz=tz):
        if key > end_key or (rec.end_date and key > rec.end_date):
            break
        produced += 1
        if rec.count and produced > rec.count:
            break
        if key < start_key:
            continue
        if len(occurrences) >= limit:
            break
        occurrences.append(ExpandedOccurrence(key, confident))
    return occurrences


def expand_dates(
    event: Any,
    start_key: str,
    end_key: str,
    *,
    max_per_event: int | None = None,
    tz: TzLike = None,
) -> list[str]:
    return [
        occurrence.date_key
        for occurrence in expand_occurrences(
            event, start_key, end_key, max_per_event=max_per_event, tz=tz
        )
    ]


@dataclass(frozen=True)
class NextOccurrence:
    date_key: str
    is_today: bool
    is_tomorrow: bool
    is_confident: bool


def compute_next_occurrence(
    event: Any, *, today_key: str, horizon_days: int = 366, tz: TzLike = None
) -> NextOccurrence:
    """Return the first occurrence on or after ``today_key``.

    One-time events report their date even when it has passed; schedules that
    cannot be computed report today with ``is_confident=False``.
    """
    tomorrow_key = add_days(today_key, 1)
    upcoming = expand_occurrences(
        event, today_key, add_days(today_key, horizon_days), max_per_event=1, tz=tz
    )
    if upcoming:
        first = upcoming[0]
        return NextOccurrence(
            first.date_key,
            first.date_key == today_key,
            first.date_key == tomorrow_key,
            first.is_confident,
        )
    rec = interpret_recurrence(event, tz=tz)
    if not rec.is_recurring and rec.start_date:
        return NextOccurrence(
            rec.start_date,
            rec.start_date == today_key,
            rec.start_date == tomorrow_key,
            True,
        )
    return NextOccurrence(today_key, True, False, False)


def label_from_recurrence(rec: NormalizedRecurrence) -> str:
    """Human label that always agrees with what the expander generates."""
    if not rec.is_recurring:
        return "One-time" if rec.frequency == "one-time" else "Schedule TBD"
    day_name = rec.day_name
    if len(rec.weekdays) > 1:
        day_name = " & ".join(WEEKDAY_NAMES[index] for index in rec.weekdays)
    if rec.frequency == "weekly":
        if rec.interval > 2:
            return f"Every {rec.interval} Weeks" + (f" on {day_name}" if day_name else "")
        return f"Every {day_name}" if day_name else "Weekly"
    if rec.frequency == "biweekly":
        return f"Every Other {day_name}" if day_name else "Every Other Week"
    if rec.frequency == "monthly":
        every = "" if rec.interval == 1 else f" (Every {rec.interval} Months)"
        if rec.ordinals and day_name:
            words = [ORDINAL_LABELS.get(o, f"{o}th").capitalize() for o in rec.ordinals]
            if len(words) == 1:
                return f"{words[0]} {day_name} of the Month{every}"
            return f"{' & '.join(words)} {day_name}s{every}"
        if day_name:
            return f"{day_name} (Monthly)" if not every else f"{day_name}{every}"
        return "Monthly" if not every else every.strip(" ()")
    if rec.frequency == "daily":
        return "Every Day" if rec.interval == 1 else f"Every {rec.interval} Days"
    if rec.frequency == "yearly":
        return "Yearly" if rec.interval == 1 else f"Every {rec.interval} Years"
    if rec.frequency == "custom":
        return "Custom Schedule"
    return f"Every {day_name}" if day_name else "Recurring"
