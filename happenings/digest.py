"""Weekly happenings digest.

The digest covers seven days starting on the day it runs (Sunday through
Saturday when run on its normal schedule). Only ``active`` listings are
included. Cancelled occurrences are left out entirely; rescheduled ones are
listed on the day they moved to.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from .config import settings
from .crud import get_discovery_events, get_overrides_in_range
from .database import get_session
from .dates import add_days, format_date_key_for_display, parse_date_key, today
from .discovery import DIGEST_STATUS_FILTER
from .timeline import (
    OccurrenceEntry,
    active_entries,
    build_timeline,
    sort_entries_by_start_time,
)
from .utils import format_time_12h

logger = logging.getLogger("uvicorn.error")


@dataclass
class DigestData:
    start_key: str
    end_key: str
    by_date: dict[str, list[OccurrenceEntry]] = field(default_factory=dict)
    total_count: int = 0
    venue_count: int = 0


def get_digest_date_range(today_key: str | None = None) -> tuple[str, str]:
    start = today_key or today(tz=settings.timezone)
    return start, add_days(start, 6)


def format_day_header(date_key: str) -> str:
    """``2026-01-27`` -> ``TUESDAY, JANUARY 27``."""
    parsed = parse_date_key(date_key)
    if parsed is None:
        return date_key
    return f"{parsed:%A, %B} {parsed.day}".upper()


def get_upcoming_happenings(session: Session, *, today_key: str | None = None) -> DigestData:
    start_key, end_key = get_digest_date_range(today_key)
    events = get_discovery_events(session, statuses=DIGEST_STATUS_FILTER)
    overrides = get_overrides_in_range(
        session,
        start_key,
        add_days(end_key, settings.window_days),
        event_ids=[event.id for event in events],
    )
    timeline = build_timeline(
        events,
        overrides,
        start_key=start_key,
        end_key=end_key,
        lookahead_days=settings.window_days,
        max_events=settings.expansion_max_events,
        max_total_occurrences=settings.expansion_max_total_occurrences,
        max_per_event=settings.expansion_max_per_event,
        tz=settings.timezone,
    )

    data = DigestData(start_key=start_key, end_key=end_key)
    venues: set[str] = set()
    for date_key, entries in timeline.groups.items():
        remaining = sort_entries_by_start_time(active_entries(entries))
        if not remaining:
            continue
        data.by_date[date_key] = remaining
        data.total_count += len(remaining)
        venues.update(
            entry.event.venue_id for entry in remaining if entry.event.venue_id
        )
    data.venue_count = len(venues)
    return data


def _venue_name(event: Any) -> str | None:
    venue = getattr(event, "venue", None)
    return getattr(venue, "name", None) if venue is not None else None


def render_digest_text(data: DigestData) -> str:
    lines = [
        "Happenings this week",
        f"{format_date_key_for_display(data.start_key)} - "
        f"{format_date_key_for_display(data.end_key)}",
        "",
    ]
    if not data.by_date:
        lines.append("Nothing is scheduled this week.")
        return "\n".join(lines) + "\n"

    for date_key, entries in data.by_date.items():
        lines.append(format_day_header(date_key))
        for entry in entries:
            venue = _venue_name(entry.event)
            line = f"  {format_time_12h(entry.start_time)}  {entry.event.title}"
            lines.append(f"{line} @ {venue}" if venue else line)
        lines.append("")
    lines.append(
        f"{data.total_count} happenings across {data.venue_count} venues."
    )
    return "\n".join(lines) + "\n"


def run_weekly_digest() -> str:
    """Build this week's digest and log it; returns the rendered text."""
    with get_session() as session:
        data = get_upcoming_happenings(session)
        text = render_digest_text(data)
    logger.info(
        "Weekly digest built for %s..%s: %s happenings at %s venues",
        data.start_key,
        data.end_key,
        data.total_count,
        data.venue_count,
    )
    return text
