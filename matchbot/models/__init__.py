from matchbot.models.base import Base, engine, AsyncSessionFactory
from matchbot.models.models import (
    User,
    Venue,
    VenueBooking,
    Match,
    MatchParticipant,
    ActivityType,
    MatchStatus,
    VenueStatus,
    BookingStatus,
)

__all__ = [
    "Base",
    "engine",
    "AsyncSessionFactory",
    "User",
    "Venue",
    "VenueBooking",
    "Match",
    "MatchParticipant",
    "ActivityType",
    "MatchStatus",
    "VenueStatus",
    "BookingStatus",
]
