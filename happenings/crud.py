"""CRUD helpers for venues, events, and occurrence overrides."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from .dates import is_valid_date_key, weekday_index_from_name, WEEKDAY_NAMES
from .discovery import DISCOVERY_STATUS_FILTER, discovery_events_statement
from .models import Event, OccurrenceOverride, Venue
from .overrides import (
    VALID_OVERRIDE_STATUSES,
    OverridePatchError,
    sanitize_override_patch,
)
from .utils import normalize_time, slugify, utcnow

VALID_EVENT_STATUSES = {
    "active",
    "needs_verification",
    "unverified",
    "draft",
    "cancelled",
    "duplicate",
}


def _now() -> datetime:
    return utcnow()


def get_venue_by_slug(session: Session, slug: str) -> Venue | None:
    normalized = (slug or "").strip().lower()
    if not normalized:
        return None
    stmt = select(Venue).where(Venue.slug == normalized)
    return session.scalars(stmt).first()


def create_venue(
    session: Session,
    *,
    name: str,
    address: str | None = None,
    city: str | None = None,
    state: str | None = None,
    google_maps_url: str | None = None,
    website_url: str | None = None,
    latitude: float | None = None,
    longitude: float | None = None,
) -> Venue:
    """Create and persist a venue with a unique slug."""
    slug = slugify(name)
    if not slug:
        raise ValueError("Invalid venue name")
    if get_venue_by_slug(session, slug):
        raise ValueError("Venue already exists")
    venue = Venue(
        slug=slug,
        name=name,
        address=address,
        city=city,
        state=state,
        google_maps_url=google_maps_url,
        website_url=website_url,
        latitude=latitude,
        longitude=longitude,
    )
    session.add(venue)
    session.flush()
    return venue


def _normalize_day_of_week(value: str | None) -> str | None:
    if not value:
        return None
    index = weekday_index_from_name(value)
    if index is None:
        raise ValueError(f"Invalid day of week: {value!r}")
    return WEEKDAY_NAMES[index]


def _normalize_custom_dates(values: Iterable[str] | None) -> list[str] | None:
    if not values:
        return None
    dates = sorted(set(values))
    invalid = [value for value in dates if not is_valid_date_key(value)]
    if invalid:
        raise ValueError(f"Invalid custom dates: {', '.join(map(str, invalid))}")
    return dates


def create_event(
    session: Session,
    *,
    title: str,
    venue: Venue | None = None,
    description: str | None = None,
    status: str = "active",
    is_published: bool = True,
    event_date: str | None = None,
    day_of_week: str | None = None,
    recurrence_rule: str | None = None,
    is_recurring: bool | None = None,
    custom_dates: Iterable[str] | None = None,
    max_occurrences: int | None = None,
    start_time: str | None = None,
    end_time: str | None = None,
) -> Event:
    """Create and persist a new event definition."""
    if status not in VALID_EVENT_STATUSES:
        raise ValueError(f"Invalid event status: {status!r}")
    if event_date is not None and not is_valid_date_key(event_date):
        raise ValueError(f"Invalid event date: {event_date!r}")
    if max_occurrences is not None and max_occurrences < 1:
        raise ValueError("max_occurrences must be positive")

    event = Event(
        title=title,
        venue=venue,
        description=description,
        status=status,
        is_published=is_published,
        event_date=event_date,
        day_of_week=_normalize_day_of_week(day_of_week),
        recurrence_rule=(recurrence_rule or "").strip() or None,
        is_recurring=is_recurring,
        custom_dates=_normalize_custom_dates(custom_dates),
        max_occurrences=max_occurrences,
        start_time=normalize_time(start_time),
        end_time=normalize_time(end_time),
    )
    session.add(event)
    session.flush()
    return event


def get_event(session: Session, event_id: str) -> Event | None:
    return session.get(Event, event_id)


def get_discovery_events(
    session: Session,
    *,
    statuses: tuple[str, ...] = DISCOVERY_STATUS_FILTER,
    with_coords: bool = False,
) -> Sequence[Event]:
    stmt = discovery_events_statement(with_coords=with_coords, statuses=statuses)
    return session.scalars(stmt).unique().all()


def get_overrides_in_range(
    session: Session,
    start_key: str,
    end_key: str,
    *,
    event_ids: Iterable[str] | None = None,
    status: str | None = None,
) -> Sequence[OccurrenceOverride]:
    """Overrides whose original date falls inside ``[start_key, end_key]``."""
    stmt = (
        select(OccurrenceOverride)
        .where(OccurrenceOverride.date_key >= start_key)
        .where(OccurrenceOverride.date_key <= end_key)
        .order_by(OccurrenceOverride.date_key.asc(), OccurrenceOverride.event_id.asc())
    )
    if event_ids is not None:
        stmt = stmt.where(OccurrenceOverride.event_id.in_(list(event_ids)))
    if status is not None:
        stmt = stmt.where(OccurrenceOverride.status == status)
    return session.scalars(stmt).all()


def get_override(
    session: Session, event_id: str, date_key: str
) -> OccurrenceOverride | None:
    stmt = select(OccurrenceOverride).where(
        OccurrenceOverride.event_id == event_id,
        OccurrenceOverride.date_key == date_key,
    )
    return session.scalars(stmt).first()


def upsert_override(
    session: Session,
    *,
    event: Event,
    date_key: str,
    status: str = "normal",
    override_patch: dict[str, Any] | None = None,
    override_start_time: str | None = None,
    override_cover_image_url: str | None = None,
    override_notes: str | None = None,
) -> OccurrenceOverride:
    """Create or replace the override for one occurrence of ``event``."""
    if not is_valid_date_key(date_key):
        raise OverridePatchError(f"Invalid date key: {date_key!r}")
    if status not in VALID_OVERRIDE_STATUSES:
        raise ValueError(f"Invalid override status: {status!r}")
    if override_start_time is not None and normalize_time(override_start_time) is None:
        raise OverridePatchError(f"Invalid override start time: {override_start_time!r}")

    patch = sanitize_override_patch(override_patch, date_key=date_key)
    override = get_override(session, event.id, date_key)
    if override is None:
        override = OccurrenceOverride(event=event, date_key=date_key)
    override.status = status
    override.override_patch = patch
    override.override_start_time = normalize_time(override_start_time)
    override.override_cover_image_url = override_cover_image_url
    override.override_notes = override_notes
    override.last_modified = _now()
    session.add(override)
    session.flush()
    return override


def delete_override(session: Session, event_id: str, date_key: str) -> bool:
    """Remove an override, restoring the generated occurrence. Returns whether one existed."""
    override = get_override(session, event_id, date_key)
    if override is None:
        return False
    session.delete(override)
    session.flush()
    return True
