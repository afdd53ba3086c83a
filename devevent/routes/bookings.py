import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from devevent.connection import ConnectionManager, get_connections
from devevent.email_templates import booking_email_html, booking_email_text, event_link
from devevent.emailer import send_email
from devevent.errors import ConflictError, EventServiceError, InternalError, NotFoundError
from devevent.models.booking import Booking
from devevent.models.event import Event
from devevent.routes.events import require_event_id
from devevent.schemas import (
    BookingCountEnvelope, BookingCreate, BookingEnvelope, BookingRead, ErrorEnvelope
)

router = APIRouter(
    tags=["Bookings"],
    responses={400: {"model": ErrorEnvelope}, 404: {"model": ErrorEnvelope}, 500: {"model": ErrorEnvelope}},
)
logger = logging.getLogger(__name__)


@router.post(
    "/bookings",
    response_model=BookingEnvelope,
    status_code=201,
    responses={409: {"model": ErrorEnvelope}, 429: {"model": ErrorEnvelope}},
)
async def create_booking(
    body: BookingCreate,
    request: Request,
    background: BackgroundTasks,
    connections: ConnectionManager = Depends(get_connections),
):
    event_id = require_event_id(body.event_id)

    limiter = request.app.state.booking_limiter
    if limiter is not None:
        await limiter.check(f"booking:{body.email}")

    try:
        async with connections.session() as db:
            event = await db.get(Event, event_id)
            if event is None:
                raise NotFoundError("Event not found.")

            booking = Booking(event_id=event.id, email=body.email)
            db.add(booking)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                raise ConflictError("You have already booked this event.")
            await db.refresh(booking)
    except EventServiceError:
        raise
    except Exception as exc:
        logger.exception("POST /bookings failed for event %s", event_id)
        raise InternalError("Booking failed. Please try again.") from exc

    link = event_link(event.slug)
    background.add_task(
        send_email,
        booking.email,
        f"You're registered: {event.title}",
        booking_email_html(event.title, event.date, event.time, event.location, link),
        booking_email_text(event.title, event.date, event.time, event.location, link),
    )
    logger.info("Booking %s created for event %s", booking.id, event.id)
    return BookingEnvelope(message="Booking created successfully", booking=BookingRead.model_validate(booking))


@router.get("/events/id/{event_id}/bookings", response_model=BookingCountEnvelope)
async def count_bookings(event_id: str, connections: ConnectionManager = Depends(get_connections)):
    event_id = require_event_id(event_id)
    try:
        async with connections.session() as db:
            if await db.get(Event, event_id) is None:
                raise NotFoundError("Event not found.")
            stmt = select(func.count(Booking.id)).where(Booking.event_id == event_id)
            count = (await db.execute(stmt)).scalar_one()
    except EventServiceError:
        raise
    except Exception as exc:
        logger.exception("GET /events/id/%s/bookings failed", event_id)
        raise InternalError("Failed to count bookings.") from exc

    return BookingCountEnvelope(message="Bookings counted successfully", count=count)
