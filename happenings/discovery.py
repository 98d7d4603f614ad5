"""Shared query shape for every public listing of happenings.

Listings, the tonight view, series pages and the weekly digest all read events
through :func:`discovery_events_statement` so they agree on which statuses are
public and which venue columns come back.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import joinedload

from .models import Event, Venue

DISCOVERY_STATUS_FILTER = ("active", "needs_verification", "unverified")

# The weekly digest only mails confirmed listings.
DIGEST_STATUS_FILTER = ("active",)

DISCOVERY_VENUE_FIELDS = (
    "id",
    "slug",
    "name",
    "address",
    "city",
    "state",
    "google_maps_url",
    "website_url",
)
DISCOVERY_VENUE_FIELDS_WITH_COORDS = DISCOVERY_VENUE_FIELDS + ("latitude", "longitude")


def venue_fields(with_coords: bool = False) -> tuple[str, ...]:
    return DISCOVERY_VENUE_FIELDS_WITH_COORDS if with_coords else DISCOVERY_VENUE_FIELDS


def discovery_events_statement(
    *,
    with_coords: bool = False,
    statuses: tuple[str, ...] = DISCOVERY_STATUS_FILTER,
):
    columns = [getattr(Venue, name) for name in venue_fields(with_coords)]
    return (
        select(Event)
        .options(joinedload(Event.venue).load_only(*columns))
        .where(Event.status.in_(statuses))
        .where(Event.is_published.is_(True))
        .order_by(Event.title.asc(), Event.id.asc())
    )


def serialize_venue(venue: Any, *, with_coords: bool = False) -> dict[str, Any] | None:
    if venue is None:
        return None
    return {name: getattr(venue, name, None) for name in venue_fields(with_coords)}
