from __future__ import annotations

import logging
from types import SimpleNamespace

import pytest

from happenings.overrides import (
    OccurrenceOverride,
    OverridePatch,
    OverridePatchError,
    build_override_key,
    build_override_lookup,
    get_display_date_for_occurrence,
    relocation_target,
    sanitize_override_patch,
)


def _override(date_key="2026-01-13", patch=None, status="normal", **fields):
    return OccurrenceOverride.from_row(
        {
            "event_id": "e1",
            "date_key": date_key,
            "status": status,
            "override_patch": patch,
            **fields,
        }
    )


def test_from_row_reads_mappings_and_objects():
    row = SimpleNamespace(
        event_id="e1",
        date_key="2026-01-13",
        status="cancelled",
        override_patch={"event_date": "2026-01-15", "cover_image_url": "x.png"},
        override_start_time="20:00:00",
        override_cover_image_url=None,
        override_notes="Snow day",
    )

    override = OccurrenceOverride.from_row(row)

    assert override.is_cancelled
    assert override.patch.event_date == "2026-01-15"
    assert override.patch.extra == {"cover_image_url": "x.png"}
    assert override.start_time == "20:00"
    assert OccurrenceOverride.from_row(override) is override


def test_patch_start_time_wins_over_column():
    override = _override(patch={"start_time": "18:30"}, override_start_time="20:00")
    assert override.start_time == "18:30"


def test_override_patch_ignores_non_mapping_values():
    assert OverridePatch.from_mapping(None) == OverridePatch()
    assert OverridePatch.from_mapping(["event_date"]) == OverridePatch()


def test_build_override_lookup_keys_by_event_and_date():
    lookup = build_override_lookup(
        [_override("2026-01-13"), _override("2026-01-20", status="cancelled")]
    )

    assert set(lookup) == {("e1", "2026-01-13"), ("e1", "2026-01-20")}
    assert lookup[build_override_key("e1", "2026-01-20")].is_cancelled


def test_build_override_lookup_last_duplicate_wins(caplog):
    first = _override(status="normal")
    second = _override(status="cancelled")

    with caplog.at_level(logging.WARNING, logger="uvicorn.error"):
        lookup = build_override_lookup([first, second])

    assert lookup[("e1", "2026-01-13")].is_cancelled
    assert "Duplicate override" in caplog.text


@pytest.mark.parametrize(
    "patch",
    [None, {}, {"start_time": "20:00"}, {"event_date": "2026-01-13"}, {"event_date": "2026-13-45"}, {"event_date": 20260115}],
)
def test_relocation_target_is_none_without_a_valid_new_date(patch):
    assert relocation_target(_override(patch=patch), "2026-01-13") is None


def test_relocation_target_returns_new_date():
    override = _override(patch={"event_date": "2026-01-15"})
    assert relocation_target(override, "2026-01-13") == "2026-01-15"
    assert relocation_target(None, "2026-01-13") is None


def test_get_display_date_for_occurrence():
    plain = get_display_date_for_occurrence("2026-01-13")
    assert plain.display_date == "2026-01-13"
    assert not plain.is_rescheduled
    assert plain.original_date_key is None

    moved = get_display_date_for_occurrence(
        "2026-01-13", _override(patch={"event_date": "2026-01-15"})
    )
    assert moved.display_date == "2026-01-15"
    assert moved.is_rescheduled
    assert moved.original_date_key == "2026-01-13"


def test_sanitize_override_patch_keeps_allowed_fields_only():
    cleaned = sanitize_override_patch(
        {"title": "Special", "admin_token": "nope", "event_date": "2026-01-15"},
        date_key="2026-01-13",
    )
    assert cleaned == {"title": "Special", "event_date": "2026-01-15"}


def test_sanitize_override_patch_drops_same_date():
    assert sanitize_override_patch({"event_date": "2026-01-13"}, date_key="2026-01-13") is None
    assert sanitize_override_patch(
        {"event_date": "2026-01-13", "host_notes": "Bring cables"}, date_key="2026-01-13"
    ) == {"host_notes": "Bring cables"}


@pytest.mark.parametrize(
    "patch",
    [{"event_date": "01/15/2026"}, {"event_date": "2026-02-30"}, {"start_time": "25:00"}],
)
def test_sanitize_override_patch_rejects_malformed_values(patch):
    with pytest.raises(OverridePatchError):
        sanitize_override_patch(patch, date_key="2026-01-13")


def test_sanitize_override_patch_rejects_bad_date_key():
    with pytest.raises(OverridePatchError):
        sanitize_override_patch({"title": "x"}, date_key="someday")
    assert issubclass(OverridePatchError, ValueError)
