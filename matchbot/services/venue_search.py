"""
Venue ranking search — candidate venues for a draft, nearest first.

The directory returns every venue that hosts the activity and is free for
the whole window; the search drops excluded venues (the ones already
holding a rank) and venues outside the search radius, orders the rest by
great-circle distance with the venue id as tie-breaker, and slices pages
from that single ordering.
"""
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from matchbot.config import settings
from matchbot.models.base import AsyncSessionFactory
from matchbot.models.models import ActivityType, Venue
from matchbot.services.draft_store import Coordinates, TimeWindow, VenueRef
from matchbot.services.reservation_service import busy_venue_ids

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0088


class VenueSearchUnavailable(Exception):
    """Directory failed or timed out; the organizer may retry."""

    def __init__(self, message: str = "지금은 추천할 시설을 불러올 수 없습니다. 잠시 후 다시 시도해 주세요.") -> None:
        super().__init__(message)


def haversine_km(a: Coordinates, b: Coordinates) -> float:
    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    dlat = lat2 - lat1
    dlng = math.radians(b.lng - a.lng)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


@dataclass(frozen=True)
class VenueFilter:
    activity_type: str
    window:        TimeWindow
    origin:        Optional[Coordinates] = None
    radius_km:     Optional[float] = None
    excluding:     FrozenSet[int] = frozenset()


class VenueDirectory(Protocol):
    async def find_venues(self, venue_filter: VenueFilter) -> List[VenueRef]:
        """Venues hosting the activity and free for the window, any order."""
        ...


@dataclass
class VenuePage:
    items:     List[VenueRef] = field(default_factory=list)
    page:      int = 1
    page_size: int = 5
    total:     int = 0

    @property
    def pages(self) -> int:
        return max(1, math.ceil(self.total / self.page_size))

    @property
    def has_next(self) -> bool:
        return self.page * self.page_size < self.total

    @property
    def has_prev(self) -> bool:
        return self.page > 1


# ─────────────────────────── SQL directory ────────────────────────────────────

class SqlVenueDirectory:
    """Venue directory over the `venues` / `venue_bookings` tables."""

    def __init__(self, session_factory: async_sessionmaker = AsyncSessionFactory) -> None:
        self._session_factory = session_factory

    async def find_venues(self, venue_filter: VenueFilter) -> List[VenueRef]:
        venue_type = ActivityType.VENUE_TYPE.get(venue_filter.activity_type)
        if venue_type is None:
            return []

        async with self._session_factory() as session:
            busy = await busy_venue_ids(session, venue_filter.window)
            q = select(Venue).where(Venue.venue_type == venue_type)
            skip = busy | set(venue_filter.excluding)
            if skip:
                q = q.where(Venue.id.not_in(skip))
            result = await session.execute(q)
            venues = result.scalars().all()

        return [
            VenueRef(
                id=v.id,
                name=v.name,
                address=v.address,
                coordinates=Coordinates(lat=v.latitude, lng=v.longitude),
            )
            for v in venues
        ]


# ─────────────────────────── Ranking search ───────────────────────────────────

class VenueRankingSearch:
    def __init__(
        self,
        directory: VenueDirectory,
        page_size: int = settings.VENUE_PAGE_SIZE,
        radius_km: Optional[float] = settings.VENUE_SEARCH_RADIUS_KM,
        timeout: float = settings.COLLABORATOR_TIMEOUT_S,
    ) -> None:
        self._directory = directory
        self._page_size = page_size
        self._radius_km = radius_km
        self._timeout = timeout

    async def search(
        self,
        activity_type: str,
        origin: Coordinates,
        window: TimeWindow,
        excluding: Iterable[int] = (),
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> VenuePage:
        """
        Parameters
        ----------
        activity_type : venue must host it
        origin        : distances are measured from here
        window        : venue must be free for all of [start, end)
        excluding     : venue ids already ranked on the draft
        page          : 1-based page number

        Raises
        ------
        VenueSearchUnavailable when the directory fails or times out.
        """
        size = page_size or self._page_size
        page = max(1, page)
        excluded = frozenset(excluding)
        venue_filter = VenueFilter(
            activity_type=activity_type,
            window=window,
            origin=origin,
            radius_km=self._radius_km,
            excluding=excluded,
        )

        try:
            venues = await asyncio.wait_for(
                self._directory.find_venues(venue_filter), self._timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Venue directory timed out (%s, %s)", activity_type, window.display)
            raise VenueSearchUnavailable() from None
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("Venue directory failed (%s): %s", activity_type, exc)
            raise VenueSearchUnavailable() from exc

        ranked = self.rank(venues, origin, excluded)
        start = (page - 1) * size
        return VenuePage(items=ranked[start:start + size], page=page, page_size=size, total=len(ranked))

    def rank(
        self,
        venues: Iterable[VenueRef],
        origin: Coordinates,
        excluding: FrozenSet[int] = frozenset(),
    ) -> List[VenueRef]:
        """Drop excluded / out-of-radius venues and order by (distance, id)."""
        ranked: List[VenueRef] = []
        seen: set[int] = set()
        for venue in venues:
            if venue.id in excluding or venue.id in seen:
                continue
            seen.add(venue.id)
            distance = haversine_km(origin, venue.coordinates)
            if self._radius_km is not None and distance > self._radius_km:
                continue
            ranked.append(venue.model_copy(update={"distance_km": round(distance, 3)}))
        ranked.sort(key=lambda v: (v.distance_km, v.id))
        return ranked
