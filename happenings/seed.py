"""Development helpers for populating fake venues, events, and overrides."""

from __future__ import annotations

import random

from faker import Faker
from sqlalchemy.orm import Session

from .config import settings
from .crud import create_event, create_venue, get_venue_by_slug, upsert_override
from .database import get_session
from .dates import WEEKDAY_NAMES, add_days, today
from .models import Event, Venue
from .recurrence import expand_dates
from .storage import init_db
from .utils import slugify

_venue_suffixes = [
    "Tavern",
    "Coffee House",
    "Brewing Co.",
    "Taproom",
    "Listening Room",
    "Public House",
    "Cafe",
]
_event_types = [
    "Open Mic",
    "Songwriter Night",
    "Bluegrass Jam",
    "Poetry Slam",
    "Comedy Hour",
    "Song Circle",
    "Showcase",
]
_recurrence_rules = [
    "weekly",
    "weekly",
    "weekly",
    "biweekly",
    "1st/3rd",
    "2nd/4th",
    "last",
    "RRULE:FREQ=WEEKLY;INTERVAL=1",
    None,
    "custom",
]
_start_times = ["17:30", "18:00", "18:30", "19:00", "19:30", "20:00", "21:00"]


def seed_fake_data(
    *,
    venue_count: int = 5,
    max_events_per_venue: int = 3,
    override_percentage: int = 15,
    today_key: str | None = None,
) -> dict[str, int]:
    """Populate the database with synthetic venues, series, and overrides."""
    if venue_count < 0:
        raise ValueError("venue_count must be >= 0")
    if max_events_per_venue < 1:
        raise ValueError("max_events_per_venue must be >= 1")
    if not 0 <= override_percentage <= 100:
        raise ValueError("override_percentage must be between 0 and 100")

    init_db()
    fake = Faker()
    today_key = today_key or today(tz=settings.timezone)
    stats = {"venues": 0, "events": 0, "overrides": 0}

    with get_session() as session:
        for _ in range(venue_count):
            venue = _create_venue(session, fake)
            stats["venues"] += 1
            for _ in range(random.randint(1, max_events_per_venue)):
                event = _create_event(session, fake, venue=venue, today_key=today_key)
                stats["events"] += 1
                stats["overrides"] += _create_overrides(
                    session, event, today_key=today_key, percentage=override_percentage
                )

    return stats


def _create_venue(session: Session, fake: Faker) -> Venue:
    for _ in range(20):
        name = f"{fake.last_name()} {random.choice(_venue_suffixes)}"
        if not slugify(name) or get_venue_by_slug(session, slugify(name)):
            continue
        return create_venue(
            session,
            name=name,
            address=fake.street_address(),
            city=fake.city(),
            state=fake.state_abbr(),
            website_url=fake.url(),
            latitude=float(fake.latitude()),
            longitude=float(fake.longitude()),
        )
    raise RuntimeError("Failed to create a unique venue name")


def _create_event(session: Session, fake: Faker, *, venue: Venue, today_key: str) -> Event:
    rule = random.choice(_recurrence_rules)
    day_name = random.choice(WEEKDAY_NAMES)
    anchor = add_days(today_key, random.randint(-60, 14))
    custom_dates = None
    if rule == "custom":
        custom_dates = sorted(
            {add_days(today_key, random.randint(0, 60)) for _ in range(random.randint(2, 6))}
        )
    return create_event(
        session,
        title=f"{venue.name} {random.choice(_event_types)}",
        venue=venue,
        description=fake.paragraph(nb_sentences=3),
        status=random.choice(["active", "active", "active", "needs_verification", "unverified"]),
        event_date=anchor,
        day_of_week=day_name if rule not in {None, "custom"} else None,
        recurrence_rule=rule,
        is_recurring=rule is not None,
        custom_dates=custom_dates,
        start_time=random.choice(_start_times),
    )


def _create_overrides(
    session: Session, event: Event, *, today_key: str, percentage: int
) -> int:
    if percentage <= 0:
        return 0
    created = 0
    for date_key in expand_dates(
        event, today_key, add_days(today_key, 60), tz=settings.timezone
    ):
        if random.randint(1, 100) > percentage:
            continue
        choice = random.random()
        if choice < 0.5:
            upsert_override(session, event=event, date_key=date_key, status="cancelled")
        elif choice < 0.8:
            upsert_override(
                session,
                event=event,
                date_key=date_key,
                override_patch={"event_date": add_days(date_key, random.randint(1, 3))},
                override_notes="Moved this week",
            )
        else:
            upsert_override(
                session,
                event=event,
                date_key=date_key,
                override_start_time=random.choice(_start_times),
            )
        created += 1
    return created
