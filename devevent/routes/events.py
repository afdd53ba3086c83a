import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, UploadFile
from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from devevent.config import Settings, get_settings
from devevent.connection import ConnectionManager, get_connections
from devevent.errors import EventServiceError, InternalError, NotFoundError, ValidationError
from devevent.forms import parse_event_form, read_image
from devevent.models.booking import Booking
from devevent.models.event import Event, is_valid_event_id, is_valid_slug, slugify
from devevent.schemas import (
    ErrorEnvelope, EventCreateForm, EventEnvelope, EventListEnvelope, EventRead, MessageEnvelope
)
from devevent.services import ImageStorage, get_image_storage

router = APIRouter(
    prefix="/events",
    tags=["Events"],
    responses={400: {"model": ErrorEnvelope}, 500: {"model": ErrorEnvelope}},
)
logger = logging.getLogger(__name__)

_SLUG_ATTEMPTS = 3


def require_event_id(raw: Optional[str]) -> str:
    event_id = (raw or "").strip().lower()
    if not event_id or not is_valid_event_id(event_id):
        raise ValidationError("Valid event ID is required.", code="INVALID_ID")
    return event_id


def _require_slug(raw: Optional[str]) -> str:
    slug = (raw or "").strip().lower()
    if not slug:
        raise ValidationError("Slug is required.", code="INVALID_SLUG")
    if not is_valid_slug(slug):
        raise ValidationError("Slug format is invalid.", code="INVALID_SLUG")
    return slug


async def _free_slug(db: AsyncSession, base: str) -> str:
    stmt = select(Event.slug).where(or_(Event.slug == base, Event.slug.like(f"{base}-%")))
    taken = set((await db.execute(stmt)).scalars().all())
    if base not in taken:
        return base
    n = 2
    while f"{base}-{n}" in taken:
        n += 1
    return f"{base}-{n}"


async def _insert_event(db: AsyncSession, fields: EventCreateForm, image_url: str) -> Event:
    base = slugify(fields.title)
    for attempt in range(1, _SLUG_ATTEMPTS + 1):
        event = Event(**fields.model_dump(), image=image_url, slug=await _free_slug(db, base))
        db.add(event)
        try:
            await db.commit()
        except IntegrityError:
            # another request took the same slug between lookup and insert
            await db.rollback()
            if attempt == _SLUG_ATTEMPTS:
                raise
            logger.info("Slug %s taken concurrently; retrying", event.slug)
            continue
        await db.refresh(event)
        return event
    raise AssertionError("unreachable")  # pragma: no cover


async def _upload(storage: ImageStorage, upload: UploadFile, data: bytes) -> str:
    stored = await storage.save(data, upload.filename, upload.content_type)
    logger.info("Stored event image %s via %s", stored.public_id, stored.backend)
    return stored.url


@router.get("", response_model=EventListEnvelope)
async def list_events(connections: ConnectionManager = Depends(get_connections)):
    try:
        async with connections.session() as db:
            stmt = select(Event).order_by(Event.created_at.desc(), Event.id.desc())
            rows = (await db.execute(stmt)).scalars().all()
    except EventServiceError:
        raise
    except Exception as exc:
        logger.exception("GET /events failed")
        raise InternalError("Event fetching failed") from exc

    return EventListEnvelope(
        message="Events fetched successfully",
        events=[EventRead.model_validate(e) for e in rows],
    )


@router.get("/id/{event_id}", response_model=EventEnvelope, responses={404: {"model": ErrorEnvelope}})
async def get_event_by_id(event_id: str, connections: ConnectionManager = Depends(get_connections)):
    event_id = require_event_id(event_id)
    try:
        async with connections.session() as db:
            event = await db.get(Event, event_id)
    except EventServiceError:
        raise
    except Exception as exc:
        logger.exception("GET /events/id/%s failed", event_id)
        raise InternalError("Failed to fetch event.") from exc

    if event is None:
        raise NotFoundError("Event not found.")
    return EventEnvelope(message="Event fetched successfully", event=EventRead.model_validate(event))


@router.get("/{slug}", response_model=EventEnvelope, responses={404: {"model": ErrorEnvelope}})
async def get_event_by_slug(slug: str, connections: ConnectionManager = Depends(get_connections)):
    slug = _require_slug(slug)
    try:
        async with connections.session() as db:
            result = await db.execute(select(Event).where(Event.slug == slug))
            event = result.scalar_one_or_none()
    except EventServiceError:
        raise
    except Exception as exc:
        logger.exception("GET /events/%s failed", slug)
        raise InternalError("Unexpected error while fetching event.") from exc

    if event is None:
        raise NotFoundError("Event not found.")
    return EventEnvelope(message="Event fetched successfully", event=EventRead.model_validate(event))


@router.post("", response_model=EventEnvelope, status_code=201)
async def create_event(
    request: Request,
    connections: ConnectionManager = Depends(get_connections),
    storage: ImageStorage = Depends(get_image_storage),
    settings: Settings = Depends(get_settings),
):
    parsed = parse_event_form(await request.form(), partial=False)
    data = await read_image(parsed.image, max_bytes=settings.max_image_bytes)
    if data is None:
        raise ValidationError("Image file is required", code="IMAGE_REQUIRED")

    image_url = None
    try:
        image_url = await _upload(storage, parsed.image, data)
        async with connections.session() as db:
            event = await _insert_event(db, parsed.fields, image_url)
    except EventServiceError:
        raise
    except Exception as exc:
        if image_url:
            logger.exception("Event creation failed; uploaded image %s is orphaned", image_url)
        else:
            logger.exception("Event creation failed")
        raise InternalError("Event creation failed") from exc

    logger.info("Created event %s (%s)", event.id, event.slug)
    return EventEnvelope(message="Event Created Successfully", event=EventRead.model_validate(event))


@router.put("/{event_id}", response_model=EventEnvelope, responses={404: {"model": ErrorEnvelope}})
async def update_event(
    event_id: str,
    request: Request,
    connections: ConnectionManager = Depends(get_connections),
    storage: ImageStorage = Depends(get_image_storage),
    settings: Settings = Depends(get_settings),
):
    event_id = require_event_id(event_id)
    parsed = parse_event_form(await request.form(), partial=True)
    data = await read_image(parsed.image, max_bytes=settings.max_image_bytes)

    # unset fields (and the image, unless re-uploaded) stay as stored
    updates = parsed.fields.model_dump(exclude_unset=True)
    try:
        if data is not None:
            updates["image"] = await _upload(storage, parsed.image, data)
        async with connections.session() as db:
            event = await db.get(Event, event_id)
            if event is None:
                raise NotFoundError("Event not found.")
            for key, value in updates.items():
                setattr(event, key, value)
            await db.commit()
            await db.refresh(event)
    except EventServiceError:
        raise
    except Exception as exc:
        logger.exception("PUT /events/%s failed", event_id)
        raise InternalError("Event update failed.") from exc

    return EventEnvelope(message="Event updated successfully", event=EventRead.model_validate(event))


@router.delete("/{event_id}", response_model=MessageEnvelope, responses={404: {"model": ErrorEnvelope}})
async def delete_event(event_id: str, connections: ConnectionManager = Depends(get_connections)):
    event_id = require_event_id(event_id)
    try:
        async with connections.session() as db:
            await db.execute(delete(Booking).where(Booking.event_id == event_id))
            result = await db.execute(delete(Event).where(Event.id == event_id))
            if result.rowcount == 0:
                await db.rollback()
                raise NotFoundError("Event not found.")
            await db.commit()
    except EventServiceError:
        raise
    except Exception as exc:
        logger.exception("DELETE /events/%s failed", event_id)
        raise InternalError("Event deletion failed.") from exc

    logger.info("Deleted event %s", event_id)
    return MessageEnvelope(message="Event deleted successfully")
