"""
Reservation service — provisional holds (가계약) on venues.

A hold is a `venue_bookings` row with status=provisional. Confirming flips the
same row to confirmed; releasing cancels it. Every call runs in its own
session and transaction because the coordinator invokes these concurrently
and outside any Telegram update.

A booking occupies its venue for [starts_at, ends_at) while its status is
pending, provisional or confirmed.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Protocol, Set

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchbot.models.base import AsyncSessionFactory
from matchbot.models.models import BookingStatus, Venue, VenueBooking
from matchbot.services.draft_store import TimeWindow

logger = logging.getLogger(__name__)

DEFAULT_OPEN  = time(6, 0)
DEFAULT_CLOSE = time(22, 0)


class HoldRejected(Exception):
    """The reservation service refused to create or confirm a hold."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class ReservationBackend(Protocol):
    async def create_hold(
        self,
        venue_id: int,
        window: TimeWindow,
        memo: str = "",
        draft_id: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> str: ...

    async def confirm_hold(self, hold_id: str) -> None: ...

    async def release_hold(self, hold_id: str) -> None: ...


# ── Overlap queries ───────────────────────────────────────────────────────────

def _overlapping(start: datetime, end: datetime):
    return and_(VenueBooking.starts_at < end, VenueBooking.ends_at > start)


async def busy_venue_ids(
    session: AsyncSession,
    window: TimeWindow,
    statuses=BookingStatus.ACTIVE,
) -> Set[int]:
    """Venues with at least one booking overlapping `window`."""
    result = await session.execute(
        select(VenueBooking.venue_id)
        .where(
            _overlapping(window.start, window.end),
            VenueBooking.status.in_(statuses),
        )
        .distinct()
    )
    return set(result.scalars().all())


async def _first_conflict(
    session: AsyncSession,
    venue_id: int,
    start: datetime,
    end: datetime,
    statuses,
    exclude_booking_id: Optional[int] = None,
) -> Optional[VenueBooking]:
    q = select(VenueBooking).where(
        VenueBooking.venue_id == venue_id,
        VenueBooking.status.in_(statuses),
        _overlapping(start, end),
    )
    if exclude_booking_id is not None:
        q = q.where(VenueBooking.id != exclude_booking_id)
    result = await session.execute(q.limit(1))
    return result.scalar_one_or_none()


def _parse_hold_id(hold_id: str) -> Optional[int]:
    try:
        return int(hold_id)
    except (TypeError, ValueError):
        return None


# ── Backend ───────────────────────────────────────────────────────────────────

class SqlReservationService:
    def __init__(self, session_factory: async_sessionmaker = AsyncSessionFactory) -> None:
        self._session_factory = session_factory

    async def create_hold(
        self,
        venue_id: int,
        window: TimeWindow,
        memo: str = "",
        draft_id: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> str:
        async with self._session_factory() as session:
            async with session.begin():
                venue = (await session.execute(
                    select(Venue).where(Venue.id == venue_id).with_for_update()
                )).scalar_one_or_none()
                if venue is None:
                    raise HoldRejected(f"unknown venue {venue_id}")

                conflict = await _first_conflict(
                    session, venue_id, window.start, window.end, BookingStatus.ACTIVE
                )
                if conflict is not None:
                    raise HoldRejected(f"venue {venue_id} is already booked for {window.display}")

                booking = VenueBooking(
                    venue_id=venue_id,
                    user_id=user_id,
                    draft_id=draft_id,
                    starts_at=window.start,
                    ends_at=window.end,
                    status=BookingStatus.PROVISIONAL,
                    memo=memo[:255] or None,
                )
                session.add(booking)
                await session.flush()
                hold_id = str(booking.id)

        logger.info("Provisional hold %s on venue %d for %s", hold_id, venue_id, window.display)
        return hold_id

    async def confirm_hold(self, hold_id: str) -> None:
        booking_id = _parse_hold_id(hold_id)
        if booking_id is None:
            raise HoldRejected(f"invalid hold id {hold_id!r}")

        async with self._session_factory() as session:
            async with session.begin():
                booking = (await session.execute(
                    select(VenueBooking).where(VenueBooking.id == booking_id).with_for_update()
                )).scalar_one_or_none()
                if booking is None:
                    raise HoldRejected(f"hold {hold_id} does not exist")
                if booking.status != BookingStatus.PROVISIONAL:
                    raise HoldRejected(f"hold {hold_id} is {booking.status}")

                conflict = await _first_conflict(
                    session,
                    booking.venue_id,
                    booking.starts_at,
                    booking.ends_at,
                    (BookingStatus.CONFIRMED,),
                    exclude_booking_id=booking.id,
                )
                if conflict is not None:
                    raise HoldRejected(f"venue {booking.venue_id} was booked by someone else")

                booking.status = BookingStatus.CONFIRMED

        logger.info("Hold %s confirmed", hold_id)

    async def release_hold(self, hold_id: str) -> None:
        booking_id = _parse_hold_id(hold_id)
        if booking_id is None:
            return
        async with self._session_factory() as session:
            async with session.begin():
                booking = await session.get(VenueBooking, booking_id)
                if booking is None or booking.status == BookingStatus.CANCELLED:
                    return
                booking.status = BookingStatus.CANCELLED
        logger.info("Hold %s released", hold_id)


# ── Slots ─────────────────────────────────────────────────────────────────────

def parse_operating_hours(value: Optional[str]) -> tuple[time, time]:
    """'06:00-22:00' → (06:00, 22:00); missing or malformed → defaults."""
    if not value:
        return DEFAULT_OPEN, DEFAULT_CLOSE
    try:
        opens, closes = value.split("-", 1)
        return time.fromisoformat(opens.strip()), time.fromisoformat(closes.strip())
    except ValueError:
        logger.warning("Malformed operating hours %r, using defaults", value)
        return DEFAULT_OPEN, DEFAULT_CLOSE


async def available_slots(
    session: AsyncSession,
    venue_id: int,
    day: date,
) -> List[TimeWindow]:
    """
    Free fixed-length slots of one venue on one day.

    Slots start at opening time and are `venue.slot_hours` long; a slot is
    free when no active booking overlaps it.
    """
    venue = await session.get(Venue, venue_id)
    if venue is None:
        return []

    opens, closes = parse_operating_hours(venue.operating_hours)
    day_start = datetime.combine(day, opens)
    day_end = datetime.combine(day, closes)
    length = timedelta(hours=venue.slot_hours or 2)

    result = await session.execute(
        select(VenueBooking).where(
            VenueBooking.venue_id == venue_id,
            VenueBooking.status.in_(BookingStatus.ACTIVE),
            _overlapping(day_start, day_end),
        )
    )
    bookings = list(result.scalars().all())

    slots: List[TimeWindow] = []
    start = day_start
    while start + length <= day_end:
        slot = TimeWindow(start, start + length)
        if not any(slot.overlaps(b.starts_at, b.ends_at) for b in bookings):
            slots.append(slot)
        start += length
    return slots
