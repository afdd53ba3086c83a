from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from devevent.database import Base
from devevent.models.event import utcnow


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True)
    event_id = Column(String(32), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String(320), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("event_id", "email", name="uq_booking_event_email"),
    )
