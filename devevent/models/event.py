from __future__ import annotations

import re
import unicodedata
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, String, Text

from devevent.database import Base

SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
EVENT_ID_RE = re.compile(r"^[0-9a-f]{32}$")
EVENT_MODES = ("offline", "online", "hybrid")

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_event_id() -> str:
    return uuid.uuid4().hex


def slugify(title: str) -> str:
    """Lowercase, ASCII, dash-separated form of ``title``."""

    folded = unicodedata.normalize("NFKD", title or "").encode("ascii", "ignore").decode("ascii")
    slug = _NON_ALNUM_RE.sub("-", folded.lower()).strip("-")
    return slug or "event"


def is_valid_slug(value: str) -> bool:
    return bool(SLUG_RE.match(value))


def is_valid_event_id(value: str) -> bool:
    return bool(EVENT_ID_RE.match(value))


class Event(Base):
    __tablename__ = "events"

    id = Column(String(32), primary_key=True, default=new_event_id)
    slug = Column(String(255), nullable=False, unique=True, index=True)
    title = Column(String(255), nullable=False)
    overview = Column(Text, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    organizer = Column(String(255), nullable=False, default="")
    audience = Column(String(255), nullable=False, default="")
    venue = Column(String(255), nullable=False, default="")
    location = Column(String(255), nullable=False, default="")
    date = Column(String(64), nullable=False, default="")
    time = Column(String(64), nullable=False, default="")
    mode = Column(String(64), nullable=False)
    image = Column(String(1024), nullable=False)
    tags = Column(JSON, nullable=False, default=list)
    agenda = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
