from __future__ import annotations

import pytest

from happenings.crud import (
    create_event,
    create_venue,
    delete_override,
    get_override,
    get_overrides_in_range,
    upsert_override,
)
from happenings.overrides import OverridePatchError


@pytest.fixture()
def weekly_event(session):
    venue = create_venue(session, name="Skylark Lounge")
    event = create_event(
        session,
        title="Friday Songwriters",
        venue=venue,
        event_date="2026-01-02",
        day_of_week="fri",
        recurrence_rule="weekly",
        start_time="19:00:00",
    )
    session.commit()
    return event


def test_create_venue_rejects_duplicate_slug(session):
    created = create_venue(session, name="The Oriental Theater")
    session.commit()
    assert created.slug == "the-oriental-theater"
    with pytest.raises(ValueError):
        create_venue(session, name="The Oriental  Theater!")


def test_create_event_normalizes_schedule_fields(session, weekly_event):
    assert weekly_event.day_of_week == "Friday"
    assert weekly_event.start_time == "19:00"
    assert weekly_event.status == "active"

    custom = create_event(
        session,
        title="Pop-up Showcase",
        custom_dates=["2026-03-10", "2026-02-14", "2026-03-10"],
        recurrence_rule="  custom ",
    )
    assert custom.custom_dates == ["2026-02-14", "2026-03-10"]
    assert custom.recurrence_rule == "custom"


@pytest.mark.parametrize(
    "fields",
    [
        {"status": "archived"},
        {"event_date": "02/06/2026"},
        {"day_of_week": "Funday"},
        {"custom_dates": ["2026-02-30"]},
        {"max_occurrences": 0},
    ],
)
def test_create_event_rejects_invalid_fields(session, fields):
    with pytest.raises(ValueError):
        create_event(session, title="Broken", **fields)


def test_upsert_override_creates_then_updates(session, weekly_event):
    created = upsert_override(
        session, event=weekly_event, date_key="2026-02-13", status="cancelled"
    )
    session.commit()

    updated = upsert_override(
        session,
        event=weekly_event,
        date_key="2026-02-13",
        override_patch={"event_date": "2026-02-14", "secret": "dropped"},
        override_start_time="20:30",
        override_notes="Moved for the holiday",
    )
    session.commit()

    assert updated.id == created.id
    assert updated.status == "normal"
    assert updated.override_patch == {"event_date": "2026-02-14"}
    assert updated.override_start_time == "20:30"
    assert len(get_overrides_in_range(session, "2026-01-01", "2026-12-31")) == 1


def test_upsert_override_strips_same_date_reschedule(session, weekly_event):
    override = upsert_override(
        session,
        event=weekly_event,
        date_key="2026-02-13",
        override_patch={"event_date": "2026-02-13"},
    )
    assert override.override_patch is None


def test_upsert_override_validates_input(session, weekly_event):
    with pytest.raises(OverridePatchError):
        upsert_override(session, event=weekly_event, date_key="Feb 13")
    with pytest.raises(OverridePatchError):
        upsert_override(
            session,
            event=weekly_event,
            date_key="2026-02-13",
            override_patch={"event_date": "next week"},
        )
    with pytest.raises(ValueError):
        upsert_override(session, event=weekly_event, date_key="2026-02-13", status="moved")
    with pytest.raises(OverridePatchError):
        upsert_override(
            session, event=weekly_event, date_key="2026-02-13", override_start_time="late"
        )


def test_get_overrides_in_range_filters(session, weekly_event):
    other = create_event(session, title="Sunday Jam", day_of_week="Sunday")
    session.commit()
    upsert_override(session, event=weekly_event, date_key="2026-02-06", status="cancelled")
    upsert_override(session, event=weekly_event, date_key="2026-02-13")
    upsert_override(session, event=weekly_event, date_key="2026-03-06", status="cancelled")
    upsert_override(session, event=other, date_key="2026-02-08", status="cancelled")
    session.commit()

    in_february = get_overrides_in_range(session, "2026-02-01", "2026-02-28")
    assert [o.date_key for o in in_february] == ["2026-02-06", "2026-02-08", "2026-02-13"]

    cancelled = get_overrides_in_range(
        session,
        "2026-02-01",
        "2026-02-28",
        event_ids=[weekly_event.id],
        status="cancelled",
    )
    assert [o.date_key for o in cancelled] == ["2026-02-06"]

    assert get_overrides_in_range(session, "2026-02-06", "2026-02-06")[0].date_key == "2026-02-06"


def test_delete_override(session, weekly_event):
    upsert_override(session, event=weekly_event, date_key="2026-02-13", status="cancelled")
    session.commit()

    assert delete_override(session, weekly_event.id, "2026-02-13") is True
    session.commit()
    assert get_override(session, weekly_event.id, "2026-02-13") is None
    assert delete_override(session, weekly_event.id, "2026-02-13") is False
