# devevent/schemas.py
# ------------------------------------------------------------
# Pydantic v2 schemas, organized by domain
# ------------------------------------------------------------
from datetime import datetime
import re
from typing import Optional, List, Sequence

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


_CONTROL_CHAR_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
_SCRIPT_TAG_RE = re.compile(r"<\s*/?\s*script", re.IGNORECASE)


def sanitize_single_line_text(value: str | None, *, allow_empty: bool = False) -> str | None:
    if value is None:
        return value
    if not isinstance(value, str):
        raise TypeError("Expected string input")
    cleaned = _CONTROL_CHAR_RE.sub("", value).strip()
    if not allow_empty and not cleaned:
        raise ValueError("Value cannot be empty")
    if any(ch in {"\n", "\r"} for ch in cleaned):
        raise ValueError("Value must be a single line of text")
    if _SCRIPT_TAG_RE.search(cleaned):
        raise ValueError("Script tags are not allowed")
    return cleaned


def sanitize_multiline_text(value: str | None, *, allow_empty: bool = False) -> str | None:
    if value is None:
        return value
    if not isinstance(value, str):
        raise TypeError("Expected string input")
    cleaned = _CONTROL_CHAR_RE.sub("", value).strip()
    if not allow_empty and not cleaned:
        raise ValueError("Value cannot be empty")
    if _SCRIPT_TAG_RE.search(cleaned):
        raise ValueError("Script tags are not allowed")
    return cleaned


def sanitize_items(value: Sequence[str] | str | None) -> list[str] | None:
    """Clean a repeated form field, keeping order and dropping blank entries."""

    if value is None:
        return None
    if isinstance(value, str):
        value = [value]
    cleaned: list[str] = []
    for item in value:
        sanitized = sanitize_single_line_text(str(item), allow_empty=True)
        if sanitized:
            cleaned.append(sanitized)
    return cleaned


def normalize_mode(value: str) -> str:
    """Map free text onto offline/online/hybrid; unmatched text is kept as given."""

    lowered = value.lower()
    for token in ("hybrid", "online", "offline"):
        if token in lowered:
            return token
    return value


# ============================================================
# Events
# ============================================================

_SINGLE_LINE_FIELDS = ("title", "organizer", "audience", "venue", "location", "date", "time", "mode")
_MULTILINE_FIELDS = ("overview", "description")


class EventUpdateForm(BaseModel):
    """Text part of an event form; every field optional."""

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, max_length=255)
    overview: Optional[str] = None
    description: Optional[str] = None
    organizer: Optional[str] = Field(default=None, max_length=255)
    audience: Optional[str] = Field(default=None, max_length=255)
    venue: Optional[str] = Field(default=None, max_length=255)
    location: Optional[str] = Field(default=None, max_length=255)
    date: Optional[str] = Field(default=None, max_length=64)
    time: Optional[str] = Field(default=None, max_length=64)
    mode: Optional[str] = Field(default=None, max_length=64)
    tags: Optional[List[str]] = None
    agenda: Optional[List[str]] = None

    @field_validator(*_SINGLE_LINE_FIELDS, mode="before")
    @classmethod
    def _clean_single_line(cls, value: Optional[str]) -> Optional[str]:
        return sanitize_single_line_text(value)

    @field_validator(*_MULTILINE_FIELDS, mode="before")
    @classmethod
    def _clean_multiline(cls, value: Optional[str]) -> Optional[str]:
        return sanitize_multiline_text(value)

    @field_validator("tags", "agenda", mode="before")
    @classmethod
    def _clean_items(cls, value):
        return sanitize_items(value)

    @field_validator("mode")
    @classmethod
    def _normalize_mode(cls, value: Optional[str]) -> Optional[str]:
        return normalize_mode(value) if value is not None else value


class EventCreateForm(EventUpdateForm):
    title: str = Field(max_length=255)
    overview: str
    description: str
    organizer: str = Field(max_length=255)
    audience: str = Field(max_length=255)
    venue: str = Field(max_length=255)
    location: str = Field(max_length=255)
    date: str = Field(max_length=64)
    time: str = Field(max_length=64)
    mode: str = Field(max_length=64)
    tags: List[str] = Field(default_factory=list)
    agenda: List[str] = Field(default_factory=list)


class EventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    slug: str
    title: str
    overview: str
    description: str
    organizer: str
    audience: str
    venue: str
    location: str
    date: str
    time: str
    mode: str
    image: str
    tags: List[str]
    agenda: List[str]
    created_at: datetime
    updated_at: datetime


class EventEnvelope(BaseModel):
    message: str
    event: EventRead


class EventListEnvelope(BaseModel):
    message: str
    events: List[EventRead]


class MessageEnvelope(BaseModel):
    message: str


class ErrorEnvelope(BaseModel):
    message: str
    code: str
    error: Optional[str] = None


# ============================================================
# Bookings
# ============================================================

class BookingCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_id: str = Field(alias="eventId")
    email: EmailStr

    @field_validator("event_id", mode="before")
    @classmethod
    def _clean_event_id(cls, value: str) -> str:
        if not isinstance(value, str):
            raise TypeError("Expected string input")
        return value.strip().lower()

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        if not isinstance(value, str):
            raise TypeError("Expected string input")
        return value.strip().lower()


class BookingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_id: str
    email: str
    created_at: datetime


class BookingEnvelope(BaseModel):
    message: str
    booking: BookingRead


class BookingCountEnvelope(BaseModel):
    message: str
    count: int
