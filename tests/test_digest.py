from __future__ import annotations

import logging

import pytest

from happenings import digest
from happenings.crud import create_event, create_venue, upsert_override
from happenings.digest import (
    DigestData,
    format_day_header,
    get_digest_date_range,
    get_upcoming_happenings,
    render_digest_text,
)


@pytest.mark.parametrize(
    ("today_key", "expected"),
    [
        ("2026-02-01", ("2026-02-01", "2026-02-07")),
        ("2026-01-28", ("2026-01-28", "2026-02-03")),
        ("2025-12-28", ("2025-12-28", "2026-01-03")),
    ],
)
def test_digest_date_range_covers_seven_days(today_key, expected):
    assert get_digest_date_range(today_key) == expected


def test_format_day_header():
    assert format_day_header("2026-01-27") == "TUESDAY, JANUARY 27"
    assert format_day_header("not-a-date") == "not-a-date"


@pytest.fixture()
def week_of_listings(session):
    lounge = create_venue(session, name="Skylark Lounge")
    cafe = create_venue(session, name="Mercury Cafe")
    late = create_event(
        session,
        title="Late Night Poetry",
        venue=cafe,
        event_date="2026-01-06",
        day_of_week="Tuesday",
        recurrence_rule="weekly",
        start_time="21:00",
    )
    early = create_event(
        session,
        title="Early Songwriters",
        venue=lounge,
        event_date="2026-01-06",
        day_of_week="Tuesday",
        recurrence_rule="weekly",
        start_time="18:00",
    )
    cancelled_series = create_event(
        session,
        title="Thursday Bluegrass",
        venue=lounge,
        event_date="2026-01-01",
        day_of_week="Thursday",
        recurrence_rule="weekly",
        start_time="19:00",
    )
    create_event(
        session,
        title="Unverified Showcase",
        venue=cafe,
        status="unverified",
        event_date="2026-02-04",
    )
    upsert_override(session, event=cancelled_series, date_key="2026-02-05", status="cancelled")
    session.commit()
    return {"late": late, "early": early}


def test_upcoming_happenings_drops_cancelled_and_sorts_by_time(session, week_of_listings):
    data = get_upcoming_happenings(session, today_key="2026-02-01")

    assert (data.start_key, data.end_key) == ("2026-02-01", "2026-02-07")
    assert list(data.by_date) == ["2026-02-03"]
    assert [entry.event.title for entry in data.by_date["2026-02-03"]] == [
        "Early Songwriters",
        "Late Night Poetry",
    ]
    assert data.total_count == 2
    assert data.venue_count == 2


def test_upcoming_happenings_lists_rescheduled_occurrences_on_their_new_day(
    session, week_of_listings
):
    upsert_override(
        session,
        event=week_of_listings["early"],
        date_key="2026-02-03",
        override_patch={"event_date": "2026-02-05"},
    )
    upsert_override(
        session,
        event=week_of_listings["late"],
        date_key="2026-02-10",
        override_patch={"event_date": "2026-02-07"},
    )
    session.commit()

    data = get_upcoming_happenings(session, today_key="2026-02-01")

    assert list(data.by_date) == ["2026-02-03", "2026-02-05", "2026-02-07"]
    assert [entry.event.title for entry in data.by_date["2026-02-03"]] == ["Late Night Poetry"]
    (moved,) = data.by_date["2026-02-05"]
    assert moved.is_rescheduled
    assert moved.original_date_key == "2026-02-03"
    (pulled_in,) = data.by_date["2026-02-07"]
    assert pulled_in.event.title == "Late Night Poetry"
    assert pulled_in.original_date_key == "2026-02-10"
    assert data.total_count == 3


def test_render_digest_text(session, week_of_listings):
    text = render_digest_text(get_upcoming_happenings(session, today_key="2026-02-01"))

    assert text.splitlines() == [
        "Happenings this week",
        "Sunday, February 1, 2026 - Saturday, February 7, 2026",
        "",
        "TUESDAY, FEBRUARY 3",
        "  6:00 PM  Early Songwriters @ Skylark Lounge",
        "  9:00 PM  Late Night Poetry @ Mercury Cafe",
        "",
        "2 happenings across 2 venues.",
    ]


def test_render_digest_text_for_an_empty_week():
    text = render_digest_text(DigestData(start_key="2026-02-01", end_key="2026-02-07"))

    assert "Nothing is scheduled this week." in text
    assert "happenings across" not in text


def test_run_weekly_digest_logs_summary(week_of_listings, monkeypatch, caplog):
    monkeypatch.setattr(digest, "today", lambda **_: "2026-02-01")

    with caplog.at_level(logging.INFO, logger="uvicorn.error"):
        text = digest.run_weekly_digest()

    assert "Early Songwriters" in text
    assert "2026-02-01..2026-02-07" in caplog.text
