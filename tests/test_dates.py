from __future__ import annotations

from datetime import UTC, datetime

import pytest

from happenings.dates import (
    WEEKDAY_NAMES,
    add_days,
    days_between,
    format_date_group_header,
    format_date_key_for_display,
    format_date_key_for_email,
    format_date_key_short,
    is_valid_date_key,
    iter_date_keys,
    next_occurrence_of_weekday,
    snap_to_weekday,
    today,
    weekday_index_from_date,
    weekday_index_from_name,
    weekday_name_from_date,
)


@pytest.mark.parametrize(
    ("date_key", "expected"),
    [
        ("2026-01-01", "Thursday"),
        ("2026-02-06", "Friday"),
        ("2026-02-09", "Monday"),
        ("2026-02-10", "Tuesday"),
        ("2024-02-29", "Thursday"),
    ],
)
def test_weekday_name_from_date(date_key, expected):
    assert weekday_name_from_date(date_key) == expected
    assert WEEKDAY_NAMES[weekday_index_from_date(date_key)] == expected


def test_weekday_is_a_property_of_the_civil_date():
    for tz in ("America/Denver", "UTC", "Pacific/Kiritimati", "Pacific/Pago_Pago"):
        assert weekday_index_from_date("2026-01-01", tz=tz) == 4


def test_weekday_helpers_return_none_for_bad_input():
    assert weekday_index_from_date("2026-02-30") is None
    assert weekday_name_from_date("soon") is None
    assert weekday_index_from_name("Funday") is None
    assert weekday_index_from_name(None) is None


def test_weekday_index_from_name_accepts_abbreviations():
    assert weekday_index_from_name("Sunday") == 0
    assert weekday_index_from_name("mon") == 1
    assert weekday_index_from_name("TU") == 2
    assert weekday_index_from_name("  saturday ") == 6


def test_add_days_crosses_month_and_year_boundaries():
    assert add_days("2025-12-31", 1) == "2026-01-01"
    assert add_days("2026-03-01", -1) == "2026-02-28"
    assert add_days("2024-02-28", 1) == "2024-02-29"
    assert add_days("2026-02-06", 0) == "2026-02-06"


def test_add_days_leaves_invalid_keys_untouched():
    assert add_days("not-a-date", 3) == "not-a-date"


def test_days_between_and_iter_date_keys():
    assert days_between("2026-02-01", "2026-03-01") == 28
    assert list(iter_date_keys("2026-02-27", "2026-03-02")) == [
        "2026-02-27",
        "2026-02-28",
        "2026-03-01",
        "2026-03-02",
    ]
    assert list(iter_date_keys("2026-03-02", "2026-02-27")) == []


def test_is_valid_date_key_is_strict():
    assert is_valid_date_key("2026-02-06")
    assert not is_valid_date_key("2026-02-30")
    assert not is_valid_date_key("2026-2-6")
    assert not is_valid_date_key("2026-02-06T00:00:00")
    assert not is_valid_date_key(None)


def test_today_uses_the_civil_timezone():
    now = datetime(2026, 1, 17, 5, 0, tzinfo=UTC)
    assert today(tz="America/Denver", now=now) == "2026-01-16"
    assert today(tz="UTC", now=now) == "2026-01-17"
    assert today(now=now) == "2026-01-16"


def test_next_occurrence_of_weekday():
    assert next_occurrence_of_weekday("Monday", today_key="2026-02-06") == "2026-02-09"
    assert next_occurrence_of_weekday("Friday", today_key="2026-02-06") == "2026-02-06"
    assert (
        next_occurrence_of_weekday("Friday", include_today=False, today_key="2026-02-06")
        == "2026-02-13"
    )


def test_next_occurrence_of_unknown_weekday_returns_today():
    assert next_occurrence_of_weekday("Someday", today_key="2026-02-06") == "2026-02-06"


def test_snap_to_weekday_moves_forward_only():
    assert snap_to_weekday("2026-02-06", 1) == "2026-02-09"
    assert snap_to_weekday("2026-02-06", 5) == "2026-02-06"
    assert snap_to_weekday("2026-02-06", 4) == "2026-02-12"


def test_snap_to_weekday_lands_on_target_within_six_days():
    for start in iter_date_keys("2026-02-01", "2026-02-14"):
        for target in range(7):
            snapped = snap_to_weekday(start, target)
            assert weekday_index_from_date(snapped) == target
            assert 0 <= days_between(start, snapped) <= 6


def test_snap_to_weekday_ignores_invalid_input():
    assert snap_to_weekday("garbage", 1) == "garbage"
    assert snap_to_weekday("2026-02-06", 9) == "2026-02-06"


def test_date_formatters():
    assert format_date_key_short("2026-01-17") == "Sat, Jan 17"
    assert format_date_key_for_display("2026-01-17") == "Saturday, January 17, 2026"
    assert format_date_key_for_email("2026-01-17") == "01-17-2026"
    assert format_date_key_for_email("nope") == "nope"


def test_format_date_group_header():
    assert format_date_group_header("2026-02-06", "2026-02-06") == "Today"
    assert format_date_group_header("2026-02-07", "2026-02-06") == "Tomorrow"
    assert format_date_group_header("2026-02-09", "2026-02-06") == "Mon, Feb 9"
