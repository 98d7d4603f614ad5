"""FastAPI application for Happenings."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
import tomllib
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .crud import (
    delete_override,
    get_discovery_events,
    get_event,
    get_overrides_in_range,
    upsert_override,
)
from .database import SessionLocal
from .dates import add_days, format_date_group_header, is_valid_date_key, today
from .digest import get_upcoming_happenings, render_digest_text
from .discovery import serialize_venue
from .models import Event, OccurrenceOverride
from .overrides import (
    build_override_key,
    build_override_lookup,
    get_display_date_for_occurrence,
)
from .recurrence import (
    compute_next_occurrence,
    expand_occurrences,
    interpret_recurrence,
    label_from_recurrence,
)
from .scheduler import start_scheduler, stop_scheduler
from .storage import init_db
from .timeline import OccurrenceEntry, Timeline, build_timeline
from .utils import format_time_12h

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")

MAX_WINDOW_DAYS = 366


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("happenings")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    start_scheduler()
    try:
        yield
    finally:
        stop_scheduler()


app = FastAPI(title="Happenings", version=APP_VERSION, lifespan=lifespan)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    if "database is locked" in raw.lower():
        logger.error(
            "SQLite database is locked while handling %s %s",
            request.method,
            request.url.path,
        )
        detail = "The database is busy at the moment. Please wait a few seconds and try again."
        status = 503
    else:
        logger.error(
            "Operational database error on %s %s: %s",
            request.method,
            request.url.path,
            raw,
        )
        detail = "We hit a database issue. Please try again."
        status = 500
    return JSONResponse({"detail": detail}, status_code=status)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse({"detail": exc.errors()}, status_code=422)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    return JSONResponse({"detail": "Internal server error"}, status_code=500)


class OverridePayload(BaseModel):
    status: str = "normal"
    override_patch: dict[str, Any] | None = None
    override_start_time: str | None = None
    override_cover_image_url: str | None = None
    override_notes: str | None = None


def _today_key() -> str:
    return today(tz=settings.timezone)


def _parse_date_param(name: str, raw: str | None) -> str | None:
    """Validate a ``YYYY-MM-DD`` query parameter or raise a 400."""
    if raw is None or raw == "":
        return None
    if not is_valid_date_key(raw):
        raise HTTPException(status_code=400, detail=f"Invalid {name}; use YYYY-MM-DD")
    return raw


def _resolve_window(
    start: str | None, end: str | None, days: int | None = None
) -> tuple[str, str]:
    start_key = _parse_date_param("start", start) or _today_key()
    end_key = _parse_date_param("end", end) or add_days(
        start_key, days if days is not None else settings.window_days
    )
    if end_key < start_key:
        raise HTTPException(status_code=400, detail="end must not be before start")
    if end_key > add_days(start_key, MAX_WINDOW_DAYS):
        raise HTTPException(
            status_code=400, detail=f"Window may span at most {MAX_WINDOW_DAYS} days"
        )
    return start_key, end_key


def _ensure_event(db: Session, event_id: str) -> Event:
    event = get_event(db, event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


def _serialize_override(override: Any) -> dict[str, Any] | None:
    if override is None:
        return None
    if isinstance(override, OccurrenceOverride):
        patch = override.override_patch
    else:
        patch = override.patch.as_dict() or None
    return {
        "event_id": override.event_id,
        "date_key": override.date_key,
        "status": override.status,
        "override_patch": patch,
        "override_start_time": override.override_start_time,
        "override_cover_image_url": override.override_cover_image_url,
        "override_notes": override.override_notes,
    }


def _serialize_entry(entry: OccurrenceEntry) -> dict[str, Any]:
    event = entry.event
    start_time = entry.start_time
    return {
        "event_id": event.id,
        "title": event.title,
        "status": event.status,
        "date_key": entry.date_key,
        "original_date_key": entry.original_date_key,
        "display_date": entry.display_date or entry.date_key,
        "is_rescheduled": entry.is_rescheduled,
        "is_cancelled": entry.is_cancelled,
        "is_confident": entry.is_confident,
        "start_time": start_time,
        "start_time_display": format_time_12h(start_time),
        "end_time": event.end_time,
        "recurrence_label": label_from_recurrence(
            interpret_recurrence(event, tz=settings.timezone)
        ),
        "venue": serialize_venue(event.venue),
        "override": _serialize_override(entry.override),
    }


def _load_timeline(db: Session, start_key: str, end_key: str) -> Timeline:
    """Build the timeline for a window, looking ahead for entries moved into it."""
    events = get_discovery_events(db)
    lookahead_days = settings.window_days
    overrides = get_overrides_in_range(
        db,
        start_key,
        add_days(end_key, lookahead_days),
        event_ids=[event.id for event in events],
    )
    return build_timeline(
        events,
        overrides,
        start_key=start_key,
        end_key=end_key,
        lookahead_days=lookahead_days,
        max_events=settings.expansion_max_events,
        max_total_occurrences=settings.expansion_max_total_occurrences,
        max_per_event=settings.expansion_max_per_event,
        tz=settings.timezone,
    )


@app.get("/api/v1/happenings")
def api_list_happenings(
    start: str | None = Query(None),
    end: str | None = Query(None),
    days: int | None = Query(None, ge=0, le=MAX_WINDOW_DAYS),
    include_cancelled: bool = Query(False),
    db: Session = Depends(get_db),
):
    start_key, end_key = _resolve_window(start, end, days)
    timeline = _load_timeline(db, start_key, end_key)
    today_key = _today_key()
    groups = []
    for date_key in timeline.groups:
        entries = timeline.entries_on(date_key, include_cancelled=include_cancelled)
        if not entries:
            continue
        groups.append(
            {
                "date_key": date_key,
                "header": format_date_group_header(date_key, today_key),
                "entries": [_serialize_entry(entry) for entry in entries],
            }
        )
    metrics = timeline.metrics
    return {
        "start": start_key,
        "end": end_key,
        "groups": groups,
        "cancelled_count": len(timeline.cancelled_occurrences),
        "unknown_events": [
            {"id": event.id, "title": event.title} for event in timeline.unknown_events
        ],
        "metrics": {
            "events_processed": metrics.events_processed,
            "events_skipped": metrics.events_skipped,
            "total_occurrences": metrics.total_occurrences,
            "cancelled_count": metrics.cancelled_count,
            "was_capped": metrics.was_capped,
        },
    }


@app.get("/api/v1/tonight")
def api_tonight(db: Session = Depends(get_db)):
    """Today's happenings, including entries moved onto today from later days."""
    today_key = _today_key()
    timeline = _load_timeline(db, today_key, today_key)
    entries = timeline.entries_on(today_key)
    return {
        "date_key": today_key,
        "entries": [_serialize_entry(entry) for entry in entries],
    }


@app.get("/api/v1/events/{event_id}/occurrences")
def api_event_occurrences(
    event_id: str,
    start: str | None = Query(None),
    end: str | None = Query(None),
    db: Session = Depends(get_db),
):
    event = _ensure_event(db, event_id)
    start_key, end_key = _resolve_window(start, end)
    lookup = build_override_lookup(
        get_overrides_in_range(db, start_key, end_key, event_ids=[event.id])
    )
    occurrences = []
    for occurrence in expand_occurrences(
        event,
        start_key,
        end_key,
        max_per_event=settings.expansion_max_per_event,
        tz=settings.timezone,
    ):
        override = lookup.get(build_override_key(event.id, occurrence.date_key))
        display = get_display_date_for_occurrence(occurrence.date_key, override)
        occurrences.append(
            {
                "date_key": occurrence.date_key,
                "display_date": display.display_date,
                "is_rescheduled": display.is_rescheduled,
                "is_cancelled": override is not None and override.is_cancelled,
                "is_confident": occurrence.is_confident,
                "override": _serialize_override(override),
            }
        )
    recurrence = interpret_recurrence(event, tz=settings.timezone)
    next_occurrence = compute_next_occurrence(
        event, today_key=_today_key(), tz=settings.timezone
    )
    return {
        "event_id": event.id,
        "title": event.title,
        "recurrence_label": label_from_recurrence(recurrence),
        "next_occurrence": {
            "date_key": next_occurrence.date_key,
            "is_today": next_occurrence.is_today,
            "is_tomorrow": next_occurrence.is_tomorrow,
            "is_confident": next_occurrence.is_confident,
        },
        "start": start_key,
        "end": end_key,
        "occurrences": occurrences,
    }


@app.get("/api/v1/events/{event_id}/overrides")
def api_list_overrides(
    event_id: str,
    start: str | None = Query(None),
    end: str | None = Query(None),
    db: Session = Depends(get_db),
):
    event = _ensure_event(db, event_id)
    start_key, end_key = _resolve_window(start, end)
    overrides = get_overrides_in_range(db, start_key, end_key, event_ids=[event.id])
    return {"overrides": [_serialize_override(override) for override in overrides]}


@app.put("/api/v1/events/{event_id}/overrides/{date_key}")
def api_upsert_override(
    event_id: str,
    date_key: str,
    payload: OverridePayload,
    db: Session = Depends(get_db),
):
    event = _ensure_event(db, event_id)
    try:
        override = upsert_override(
            db,
            event=event,
            date_key=date_key,
            status=payload.status,
            override_patch=payload.override_patch,
            override_start_time=payload.override_start_time,
            override_cover_image_url=payload.override_cover_image_url,
            override_notes=payload.override_notes,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except IntegrityError as exc:
        # Another writer created the same (event, date) override first.
        raise HTTPException(
            status_code=409, detail="Override was modified concurrently; retry"
        ) from exc
    return {"override": _serialize_override(override)}


@app.delete("/api/v1/events/{event_id}/overrides/{date_key}")
def api_delete_override(event_id: str, date_key: str, db: Session = Depends(get_db)):
    event = _ensure_event(db, event_id)
    if not delete_override(db, event.id, date_key):
        raise HTTPException(status_code=404, detail="Override not found")
    return {"deleted": True, "event_id": event.id, "date_key": date_key}


@app.get("/api/v1/digest/preview")
def api_digest_preview(
    today_key: str | None = Query(None, alias="today"),
    db: Session = Depends(get_db),
):
    today_key = _parse_date_param("today", today_key)
    data = get_upcoming_happenings(db, today_key=today_key)
    return {
        "start": data.start_key,
        "end": data.end_key,
        "total_count": data.total_count,
        "venue_count": data.venue_count,
        "days": [
            {
                "date_key": date_key,
                "entries": [_serialize_entry(entry) for entry in entries],
            }
            for date_key, entries in data.by_date.items()
        ],
        "text": render_digest_text(data),
    }
