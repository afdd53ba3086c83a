"""DevEvent API: event listings, editing and email bookings."""

from .database import Base  # noqa: F401

__all__ = ["Base"]
