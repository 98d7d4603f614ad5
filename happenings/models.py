"""SQLAlchemy models for Happenings."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return utcnow()


class Venue(Base):
    __tablename__ = "venues"

    id = Column(String(36), primary_key=True, default=_uuid)
    slug = Column(String(128), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    address = Column(String(255), nullable=True)
    city = Column(String(120), nullable=True)
    state = Column(String(64), nullable=True)
    google_maps_url = Column(String(512), nullable=True)
    website_url = Column(String(512), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    events = relationship("Event", back_populates="venue")


class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=_uuid)
    venue_id = Column(String(36), ForeignKey("venues.id"), nullable=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(32), nullable=False, default="active", index=True)
    is_published = Column(Boolean, default=True, nullable=False)
    event_date = Column(String(10), nullable=True)
    day_of_week = Column(String(16), nullable=True)
    recurrence_rule = Column(String(255), nullable=True)
    is_recurring = Column(Boolean, nullable=True)
    custom_dates = Column(JSON, nullable=True)
    max_occurrences = Column(Integer, nullable=True)
    start_time = Column(String(8), nullable=True)
    end_time = Column(String(8), nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    last_modified = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    venue = relationship("Venue", back_populates="events")
    overrides = relationship(
        "OccurrenceOverride",
        back_populates="event",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="OccurrenceOverride.date_key",
    )


class OccurrenceOverride(Base):
    __tablename__ = "occurrence_overrides"
    __table_args__ = (
        UniqueConstraint(
            "event_id", "date_key", name="uq_occurrence_overrides_event_date"
        ),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    date_key = Column(String(10), nullable=False, index=True)
    status = Column(String(16), nullable=False, default="normal")
    override_patch = Column(JSON, nullable=True)
    override_start_time = Column(String(8), nullable=True)
    override_cover_image_url = Column(String(512), nullable=True)
    override_notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    last_modified = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    event = relationship("Event", back_populates="overrides")
