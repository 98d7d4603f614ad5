"""Group expanded occurrences by day and apply reschedules.

The pipeline is: :func:`expand_and_group_events` turns event definitions plus an
override lookup into per-day groups keyed by the *generated* date, then
:func:`apply_reschedules_to_timeline` moves rescheduled entries to the day they
now happen on. :func:`build_timeline` runs both.

Callers that show a single day must still expand over a forward window: an
occurrence generated on a later day can be rescheduled onto the day shown, and a
window that stops at that day never generates it. ``build_timeline`` takes
``lookahead_days`` for this.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from .dates import TzLike, add_days, today
from .overrides import (
    OccurrenceOverride,
    OverrideKey,
    build_override_key,
    build_override_lookup,
    relocation_target,
)
from .recurrence import MAX_PER_EVENT, expand_occurrences, interpret_recurrence
from .utils import normalize_time

logger = logging.getLogger("uvicorn.error")

DEFAULT_WINDOW_DAYS = 90
MAX_EVENTS = 200
MAX_TOTAL_OCCURRENCES = 500

# Sorts unknown start times after every real one.
UNKNOWN_TIME_SENTINEL = "99:99"


@dataclass(frozen=True)
class OccurrenceEntry:
    event: Any
    date_key: str
    is_confident: bool = True
    override: OccurrenceOverride | None = None
    is_cancelled: bool = False
    is_rescheduled: bool = False
    original_date_key: str | None = None
    display_date: str | None = None

    @property
    def event_id(self) -> str:
        return str(_event_field(self.event, "id"))

    @property
    def start_time(self) -> str | None:
        """Start time after overrides, ``HH:MM``."""
        if self.override is not None and self.override.start_time:
            return self.override.start_time
        return normalize_time(_event_field(self.event, "start_time"))


@dataclass
class ExpansionMetrics:
    events_processed: int = 0
    events_skipped: int = 0
    total_occurrences: int = 0
    cancelled_count: int = 0
    was_capped: bool = False


@dataclass
class ExpansionResult:
    groups: dict[str, list[OccurrenceEntry]]
    cancelled_occurrences: list[OccurrenceEntry] = field(default_factory=list)
    unknown_events: list[Any] = field(default_factory=list)
    metrics: ExpansionMetrics = field(default_factory=ExpansionMetrics)


def _event_field(event: Any, name: str) -> Any:
    if isinstance(event, Mapping):
        return event.get(name)
    return getattr(event, name, None)


def expand_and_group_events(
    events: Iterable[Any],
    *,
    start_key: str | None = None,
    end_key: str | None = None,
    override_lookup: Mapping[OverrideKey, OccurrenceOverride] | None = None,
    max_events: int | None = None,
    max_total_occurrences: int | None = None,
    max_per_event: int | None = None,
    tz: TzLike = None,
) -> ExpansionResult:
    """Expand each event over the window and group the entries by date key.

    Overrides only decorate generated occurrences; an override whose date is
    not generated is ignored. Cancelled entries stay in their group and are
    also collected in ``cancelled_occurrences``.
    """
    start_key = start_key or today(tz=tz)
    end_key = end_key or add_days(start_key, DEFAULT_WINDOW_DAYS)
    max_events = MAX_EVENTS if max_events is None else max_events
    max_total = MAX_TOTAL_OCCURRENCES if max_total_occurrences is None else max_total_occurrences
    max_per_event = MAX_PER_EVENT if max_per_event is None else max_per_event
    override_lookup = override_lookup or {}

    events = list(events)
    metrics = ExpansionMetrics(events_skipped=max(len(events) - max_events, 0))
    metrics.was_capped = metrics.events_skipped > 0
    groups: dict[str, list[OccurrenceEntry]] = {}
    cancelled: list[OccurrenceEntry] = []
    unknown: list[Any] = []

    for event in events[:max_events]:
        if metrics.total_occurrences >= max_total:
            metrics.was_capped = True
            break
        metrics.events_processed += 1

        occurrences = expand_occurrences(
            event, start_key, end_key, max_per_event=max_per_event, tz=tz
        )
        if not occurrences:
            if not interpret_recurrence(event, tz=tz).is_confident:
                unknown.append(event)
            continue

        event_id = str(_event_field(event, "id"))
        for occurrence in occurrences:
            if metrics.total_occurrences >= max_total:
                metrics.was_capped = True
                break
            metrics.total_occurrences += 1

            override = override_lookup.get(build_override_key(event_id, occurrence.date_key))
            entry = OccurrenceEntry(
                event=event,
                date_key=occurrence.date_key,
                is_confident=occurrence.is_confident,
                override=override,
                is_cancelled=override is not None and override.is_cancelled,
            )
            groups.setdefault(occurrence.date_key, []).append(entry)
            if entry.is_cancelled:
                metrics.cancelled_count += 1
                cancelled.append(entry)

    if metrics.was_capped:
        logger.warning(
            "Occurrence expansion capped: %s events processed, %s skipped, %s occurrences",
            metrics.events_processed,
            metrics.events_skipped,
            metrics.total_occurrences,
        )

    cancelled.sort(key=lambda entry: entry.date_key)
    return ExpansionResult(
        groups={key: groups[key] for key in sorted(groups)},
        cancelled_occurrences=cancelled,
        unknown_events=unknown,
        metrics=metrics,
    )


def apply_reschedules_to_timeline(
    groups: Mapping[str, list[OccurrenceEntry]],
) -> dict[str, list[OccurrenceEntry]]:
    """Move entries whose override reschedules them onto their new day.

    Returns a new mapping with ascending keys; ``groups`` is not modified.
    Days that end up empty are dropped. Entries stay in the relative order they
    were visited in, so moved entries follow the entries already on a day.
    """
    staying: dict[str, list[OccurrenceEntry]] = {}
    moving: list[OccurrenceEntry] = []

    for date_key, entries in groups.items():
        for entry in entries:
            target = relocation_target(entry.override, entry.date_key)
            if target is None:
                staying.setdefault(date_key, []).append(entry)
                continue
            moving.append(
                replace(
                    entry,
                    date_key=target,
                    is_rescheduled=True,
                    original_date_key=entry.date_key,
                    display_date=target,
                )
            )

    for entry in moving:
        staying.setdefault(entry.date_key, []).append(entry)

    return {key: staying[key] for key in sorted(staying) if staying[key]}


def active_entries(entries: Iterable[OccurrenceEntry]) -> list[OccurrenceEntry]:
    return [entry for entry in entries if not entry.is_cancelled]


def sort_entries_by_start_time(entries: Iterable[OccurrenceEntry]) -> list[OccurrenceEntry]:
    """Stable sort by effective start time; unknown times go last."""
    return sorted(entries, key=lambda entry: entry.start_time or UNKNOWN_TIME_SENTINEL)


@dataclass
class Timeline:
    groups: dict[str, list[OccurrenceEntry]]
    cancelled_occurrences: list[OccurrenceEntry]
    unknown_events: list[Any]
    metrics: ExpansionMetrics

    def entries_on(self, date_key: str, *, include_cancelled: bool = False) -> list[OccurrenceEntry]:
        entries = self.groups.get(date_key, [])
        return list(entries) if include_cancelled else active_entries(entries)


def build_timeline(
    events: Iterable[Any],
    overrides: Iterable[Any] = (),
    *,
    start_key: str | None = None,
    end_key: str | None = None,
    lookahead_days: int = 0,
    max_events: int | None = None,
    max_total_occurrences: int | None = None,
    max_per_event: int | None = None,
    tz: TzLike = None,
) -> Timeline:
    """Expand, apply overrides and relocate in one pass.

    Occurrences are generated up to ``lookahead_days`` past ``end_key`` so an
    entry rescheduled from a later day back into the window is found; the
    groups are then clipped to ``[start_key, end_key]``. ``cancelled_occurrences``
    is read off the clipped groups, so it reports where each cancelled entry
    finally sits.
    """
    start_key = start_key or today(tz=tz)
    end_key = end_key or add_days(start_key, DEFAULT_WINDOW_DAYS)
    result = expand_and_group_events(
        events,
        start_key=start_key,
        end_key=add_days(end_key, max(lookahead_days, 0)),
        override_lookup=build_override_lookup(overrides),
        max_events=max_events,
        max_total_occurrences=max_total_occurrences,
        max_per_event=max_per_event,
        tz=tz,
    )
    groups = {
        date_key: entries
        for date_key, entries in apply_reschedules_to_timeline(result.groups).items()
        if start_key <= date_key <= end_key
    }
    cancelled = [
        entry for entries in groups.values() for entry in entries if entry.is_cancelled
    ]
    return Timeline(
        groups=groups,
        cancelled_occurrences=cancelled,
        unknown_events=result.unknown_events,
        metrics=replace(result.metrics, cancelled_count=len(cancelled)),
    )
