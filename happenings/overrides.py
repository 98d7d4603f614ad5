"""Per-date occurrence overrides.

An override is keyed by ``(event_id, date_key)`` where ``date_key`` is the
*original* generated date of the occurrence it modifies. It may cancel that
occurrence or patch fields of it; a patched ``event_date`` that differs from the
key relocates the occurrence to another day.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .dates import is_valid_date_key
from .utils import normalize_time

logger = logging.getLogger("uvicorn.error")

OverrideKey = tuple[str, str]

VALID_OVERRIDE_STATUSES = ("normal", "cancelled")

ALLOWED_OVERRIDE_FIELDS = frozenset(
    {
        "title",
        "description",
        "event_date",
        "start_time",
        "end_time",
        "venue_id",
        "location_mode",
        "custom_location_name",
        "custom_address",
        "custom_city",
        "custom_state",
        "online_url",
        "location_notes",
        "capacity",
        "has_timeslots",
        "total_slots",
        "slot_duration_minutes",
        "is_free",
        "cost_label",
        "signup_url",
        "signup_deadline",
        "signup_time",
        "age_policy",
        "external_url",
        "categories",
        "cover_image_url",
        "host_notes",
        "is_published",
    }
)


class OverridePatchError(ValueError):
    """Raised when an override patch cannot be stored as given."""


@dataclass(frozen=True)
class OverridePatch:
    event_date: Any = None
    start_time: Any = None
    end_time: Any = None
    # Everything else is passed through untouched for renderers.
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> OverridePatch:
        if not isinstance(raw, Mapping):
            return cls()
        extra = {
            key: value
            for key, value in raw.items()
            if key not in {"event_date", "start_time", "end_time"}
        }
        return cls(
            event_date=raw.get("event_date"),
            start_time=raw.get("start_time"),
            end_time=raw.get("end_time"),
            extra=extra,
        )

    def as_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        for name in ("event_date", "start_time", "end_time"):
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        return data


@dataclass(frozen=True)
class OccurrenceOverride:
    event_id: str
    date_key: str
    status: str = "normal"
    patch: OverridePatch = field(default_factory=OverridePatch)
    override_start_time: str | None = None
    override_cover_image_url: str | None = None
    override_notes: str | None = None

    @property
    def is_cancelled(self) -> bool:
        return self.status == "cancelled"

    @property
    def start_time(self) -> str | None:
        """Effective replacement start time, patch first."""
        return normalize_time(self.patch.start_time) or normalize_time(
            self.override_start_time
        )

    @classmethod
    def from_row(cls, row: Any) -> OccurrenceOverride:
        """Build from an ORM row, a mapping or an existing override."""
        if isinstance(row, cls):
            return row

        def read(name: str) -> Any:
            if isinstance(row, Mapping):
                return row.get(name)
            return getattr(row, name, None)

        return cls(
            event_id=str(read("event_id")),
            date_key=read("date_key"),
            status=read("status") or "normal",
            patch=OverridePatch.from_mapping(read("override_patch")),
            override_start_time=read("override_start_time"),
            override_cover_image_url=read("override_cover_image_url"),
            override_notes=read("override_notes"),
        )


def build_override_key(event_id: str, date_key: str) -> OverrideKey:
    return (str(event_id), date_key)


def build_override_lookup(rows: Iterable[Any]) -> dict[OverrideKey, OccurrenceOverride]:
    """Index override rows by ``(event_id, date_key)``.

    Storage keeps the key unique; if duplicates still arrive the last one wins.
    """
    lookup: dict[OverrideKey, OccurrenceOverride] = {}
    for row in rows:
        override = OccurrenceOverride.from_row(row)
        key = build_override_key(override.event_id, override.date_key)
        if key in lookup:
            logger.warning(
                "Duplicate override for event %s on %s; keeping the last one",
                *key,
            )
        lookup[key] = override
    return lookup


def relocation_target(override: OccurrenceOverride | None, date_key: str) -> str | None:
    """Return the day an occurrence moves to, or ``None`` when it stays put."""
    if override is None:
        return None
    target = override.patch.event_date
    if not is_valid_date_key(target) or target == date_key:
        return None
    return target


@dataclass(frozen=True)
class DisplayDate:
    display_date: str
    is_rescheduled: bool
    original_date_key: str | None = None


def get_display_date_for_occurrence(
    date_key: str, override: OccurrenceOverride | None = None
) -> DisplayDate:
    target = relocation_target(override, date_key)
    if target is None:
        return DisplayDate(display_date=date_key, is_rescheduled=False)
    return DisplayDate(display_date=target, is_rescheduled=True, original_date_key=date_key)


def sanitize_override_patch(
    patch: Mapping[str, Any] | None, *, date_key: str
) -> dict[str, Any] | None:
    """Reduce a submitted patch to the fields an override may change.

    Unknown keys are dropped. An ``event_date`` equal to ``date_key`` is not a
    reschedule and is dropped too. Returns ``None`` when nothing remains.
    """
    if patch is None:
        return None
    if not isinstance(patch, Mapping):
        raise OverridePatchError("override_patch must be an object")
    if not is_valid_date_key(date_key):
        raise OverridePatchError(f"Invalid date key: {date_key!r}")

    cleaned = {key: value for key, value in patch.items() if key in ALLOWED_OVERRIDE_FIELDS}

    new_date = cleaned.get("event_date")
    if new_date is not None:
        if not is_valid_date_key(new_date):
            raise OverridePatchError(f"Invalid event_date in override patch: {new_date!r}")
        if new_date == date_key:
            del cleaned["event_date"]

    for name in ("start_time", "end_time"):
        value = cleaned.get(name)
        if value is not None and normalize_time(value) is None:
            raise OverridePatchError(f"Invalid {name} in override patch: {value!r}")

    return cleaned or None
