from devevent.models.booking import Booking
from devevent.models.event import Event

__all__ = ["Booking", "Event"]
