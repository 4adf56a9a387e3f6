"""
Shared pytest fixtures for match bot tests.

Sets required environment variables BEFORE any matchbot module is imported so
that pydantic-settings and SQLAlchemy engine initialisation use safe test values.
"""
from __future__ import annotations

import asyncio
import os
from datetime import date, datetime, time, timedelta
from typing import AsyncGenerator, Dict, List, Optional, Sequence, Tuple

# ── Set env vars before any matchbot import ───────────────────────────────────
os.environ.setdefault("BOT_TOKEN", "test-token-for-pytest")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

# ── Third-party ───────────────────────────────────────────────────────────────
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# ── Matchbot imports (safe after env vars are set) ────────────────────────────
from matchbot.models.base import Base
from matchbot.models.models import ActivityType
from matchbot.services.draft_store import (
    Coordinates,
    MatchDraft,
    MatchDraftStore,
    MemoryDraftPersistence,
    Participants,
    Schedule,
    TimeWindow,
    VenueRef,
)
from matchbot.services.reservation_service import HoldRejected


# ── DB fixtures ───────────────────────────────────────────────────────────────

@pytest.fixture
async def async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a fresh AsyncSession backed by an isolated in-memory SQLite database.
    Schema is created fresh for every test function; engine is always disposed
    on teardown, even if the test raises an exception.
    """
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with factory() as session:
            yield session
    finally:
        await engine.dispose()


@pytest.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """
    Session factory over a throwaway SQLite file, for services that open
    their own sessions (reservation backend, venue directory).
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'matchbot.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await engine.dispose()


# ── Draft helpers ─────────────────────────────────────────────────────────────

NOW = datetime(2026, 10, 19, 12, 0)
MATCH_DAY = date(2026, 10, 21)
SEOUL = Coordinates(lat=37.5665, lng=126.9780)


def venue_ref(venue_id: int, name: Optional[str] = None, lat: float = 37.57, lng: float = 126.98) -> VenueRef:
    return VenueRef(
        id=venue_id,
        name=name or f"V{venue_id}",
        address=f"서울 중구 세종대로 {venue_id}",
        coordinates=Coordinates(lat=lat, lng=lng),
    )


def make_draft(
    activity_type: str = ActivityType.FUTSAL,
    ranks: Sequence[int] = (),
    day: Optional[date] = None,
    start: time = time(18, 0),
    end: time = time(20, 0),
    organizer_id: int = 1001,
    **overrides,
) -> MatchDraft:
    """
    A draft that passes every wizard step.
    `ranks` lists venue ids for rank 1, 2, 3 in order.
    """
    fields = dict(
        organizer_id=organizer_id,
        activity_type=activity_type,
        name="수요일 저녁 풋살",
        address="서울 마포구 월드컵로 240",
        coordinates=SEOUL,
        schedule=Schedule(day=day or MATCH_DAY, start_time=start, end_time=end),
        participants=Participants(min=ActivityType.min_participants(activity_type)),
        venue_ranks={rank: venue_ref(venue_id) for rank, venue_id in enumerate(ranks, start=1)},
    )
    if ActivityType.is_team(activity_type):
        fields["game_mode"] = "team"
    fields.update(overrides)
    return MatchDraft(**fields)


def make_store(draft: Optional[MatchDraft] = None) -> MatchDraftStore:
    return MatchDraftStore(draft or make_draft(), MemoryDraftPersistence())


def future_draft(**kwargs) -> MatchDraft:
    """make_draft() scheduled relative to the real clock (for join/start checks)."""
    return make_draft(day=date.today() + timedelta(days=2), **kwargs)


# ── Mock helpers ──────────────────────────────────────────────────────────────

class FakeReservationBackend:
    """
    In-memory reservation service.

    reject_create  : venue ids whose holds are refused
    reject_confirm : venue ids whose confirmation is refused
    slow_confirm   : venue ids whose confirmation hangs (for timeouts)
    create_errors  : venue id -> exception raised by create_hold
    confirm_errors : venue id -> exception raised by confirm_hold
    """

    def __init__(
        self,
        reject_create: Sequence[int] = (),
        reject_confirm: Sequence[int] = (),
        slow_confirm: Sequence[int] = (),
        create_errors: Optional[Dict[int, Exception]] = None,
        confirm_errors: Optional[Dict[int, Exception]] = None,
    ) -> None:
        self.reject_create  = set(reject_create)
        self.reject_confirm = set(reject_confirm)
        self.slow_confirm   = set(slow_confirm)
        self.create_errors  = dict(create_errors or {})
        self.confirm_errors = dict(confirm_errors or {})
        self.venue_of: Dict[str, int] = {}
        self.created:   List[Tuple[int, str]] = []
        self.confirmed: List[int] = []
        self.released:  List[int] = []

    async def create_hold(
        self,
        venue_id: int,
        window: TimeWindow,
        memo: str = "",
        draft_id: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> str:
        await asyncio.sleep(0)
        if venue_id in self.create_errors:
            raise self.create_errors[venue_id]
        if venue_id in self.reject_create:
            raise HoldRejected(f"venue {venue_id} is already booked")
        hold_id = f"h{len(self.venue_of) + 1}"
        self.venue_of[hold_id] = venue_id
        self.created.append((venue_id, memo))
        return hold_id

    async def confirm_hold(self, hold_id: str) -> None:
        venue_id = self.venue_of[hold_id]
        if venue_id in self.slow_confirm:
            await asyncio.sleep(10)
        await asyncio.sleep(0)
        if venue_id in self.confirm_errors:
            raise self.confirm_errors[venue_id]
        if venue_id in self.reject_confirm:
            raise HoldRejected(f"venue {venue_id} was booked by someone else")
        self.confirmed.append(venue_id)

    async def release_hold(self, hold_id: str) -> None:
        self.released.append(self.venue_of[hold_id])
