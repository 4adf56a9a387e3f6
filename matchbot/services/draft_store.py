"""
Match draft — the staged representation of a match being configured.

The draft is a pydantic model so it round-trips through aiogram FSM storage
(plain JSON dicts) between Telegram updates. `MatchDraftStore` owns one draft,
guards its invariants and writes it through an injected `DraftPersistence`
port, so nothing here knows which storage backs it.

Invariants
----------
* `venue_ranks` holds at most one venue per rank (1, 2, 3) and a venue id
  never appears at two ranks. Violations are rejected at assignment time.
* Once published or cancelled the draft is frozen.
"""
from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field

from matchbot.models.models import ActivityType

logger = logging.getLogger(__name__)

MAX_RANK = 3
RANKS = tuple(range(1, MAX_RANK + 1))

NAME_MIN_LEN = 2
NAME_MAX_LEN = 60


class GameMode(str, enum.Enum):
    TEAM       = "team"
    INDIVIDUAL = "individual"


class DraftStatus(str, enum.Enum):
    DRAFT     = "draft"
    PUBLISHED = "published"
    CANCELLED = "cancelled"


# ─────────────────────────── Errors ───────────────────────────────────────────

class DraftLockedError(RuntimeError):
    """Raised when a published or cancelled draft is mutated."""


class RankOutOfRangeError(ValueError):
    pass


class DuplicateVenueError(ValueError):
    """The venue already occupies another rank of the same draft."""

    def __init__(self, venue_id: int, rank: int) -> None:
        self.venue_id = venue_id
        self.rank = rank
        super().__init__(f"venue {venue_id} is already ranked #{rank}")


# ─────────────────────────── Value types ──────────────────────────────────────

class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float


@dataclass(frozen=True)
class TimeWindow:
    """Half-open interval [start, end)."""
    start: datetime
    end:   datetime

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return start < self.end and end > self.start

    @property
    def display(self) -> str:
        if self.start.date() == self.end.date():
            return f"{self.start:%Y-%m-%d %H:%M}~{self.end:%H:%M}"
        return f"{self.start:%Y-%m-%d %H:%M} ~ {self.end:%Y-%m-%d %H:%M}"


class Schedule(BaseModel):
    """
    Match date and time range.
    An end time at or before the start time means the match runs overnight.
    """
    model_config = ConfigDict(frozen=True)

    day:        date
    start_time: time
    end_time:   time

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.day, self.start_time)

    @property
    def is_overnight(self) -> bool:
        return self.end_time <= self.start_time

    def window(self) -> TimeWindow:
        end_date = self.day + timedelta(days=1) if self.is_overnight else self.day
        return TimeWindow(self.starts_at, datetime.combine(end_date, self.end_time))


class Participants(BaseModel):
    min: int = 1
    max: Optional[int] = None


class TeamSettings(BaseModel):
    positions:            List[str] = Field(default_factory=list)
    balance_by_experience: bool = False
    balance_by_rank:       bool = False
    min_players_per_team:  int = 1


class VenueRef(BaseModel):
    """Read-only projection of a venue returned by the ranking search."""
    model_config = ConfigDict(frozen=True)

    id:          int
    name:        str
    address:     str
    coordinates: Coordinates
    distance_km: Optional[float] = None


class MatchDraft(BaseModel):
    draft_id:      str = Field(default_factory=lambda: uuid.uuid4().hex)
    organizer_id:  int = 0
    activity_type: str = ""
    game_mode:     GameMode = GameMode.INDIVIDUAL
    name:          str = ""
    address:       str = ""
    coordinates:   Optional[Coordinates] = None
    manual_pin:    bool = False
    schedule:      Optional[Schedule] = None
    participants:  Participants = Field(default_factory=Participants)
    equipment:     List[str] = Field(default_factory=list)
    team_settings: Optional[TeamSettings] = None
    venue_ranks:   Dict[int, VenueRef] = Field(default_factory=dict)
    status:        DraftStatus = DraftStatus.DRAFT

    @property
    def is_team_activity(self) -> bool:
        return ActivityType.is_team(self.activity_type)

    @property
    def is_editable(self) -> bool:
        return self.status == DraftStatus.DRAFT

    def ranked_venues(self) -> List[tuple[int, VenueRef]]:
        """Occupied ranks in ascending order."""
        return sorted(self.venue_ranks.items())


# ─────────────────────────── Draft construction ───────────────────────────────

def default_schedule(now: datetime) -> Schedule:
    """Whole hour three hours from now, two hours long (e.g. 17:28 → 20:00–22:00)."""
    start = now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=3)
    end = start + timedelta(hours=2)
    return Schedule(day=start.date(), start_time=start.time(), end_time=end.time())


def new_draft(organizer_id: int, now: Optional[datetime] = None) -> MatchDraft:
    return MatchDraft(
        organizer_id=organizer_id,
        schedule=default_schedule(now or datetime.now()),
    )


def _ensure_editable(draft: MatchDraft) -> None:
    if not draft.is_editable:
        raise DraftLockedError(f"draft {draft.draft_id} is {draft.status.value}")


def apply_activity_change(draft: MatchDraft, activity_type: str) -> None:
    """
    Switch the draft to another activity.

    Fields unrelated to the activity (name, address, schedule) are kept;
    activity-specific ones are filtered or reset for the new activity.
    """
    _ensure_editable(draft)
    if activity_type == draft.activity_type:
        return

    allowed = set(ActivityType.equipment_for(activity_type))
    draft.activity_type = activity_type
    draft.equipment = [item for item in draft.equipment if item in allowed]
    draft.team_settings = None
    draft.game_mode = (
        GameMode.TEAM if ActivityType.is_team(activity_type) else GameMode.INDIVIDUAL
    )

    floor = ActivityType.min_participants(activity_type)
    maximum = draft.participants.max
    if maximum is not None and maximum < floor:
        maximum = None
    draft.participants = Participants(min=floor, max=maximum)

    # Candidates were searched for the previous activity
    draft.venue_ranks = {}


def prefill_from_previous(draft: MatchDraft, previous: MatchDraft, now: datetime) -> None:
    """
    Copy the reusable parts of an organizer's previous match of the same
    activity into a fresh draft. The date is moved to the default day while
    the previous start/end times are kept.
    """
    _ensure_editable(draft)
    apply_activity_change(draft, previous.activity_type)
    draft.name = previous.name
    draft.address = previous.address
    draft.coordinates = previous.coordinates
    draft.participants = previous.participants.model_copy()
    draft.equipment = list(previous.equipment)
    if previous.schedule is not None:
        day = default_schedule(now).day
        draft.schedule = Schedule(
            day=day,
            start_time=previous.schedule.start_time,
            end_time=previous.schedule.end_time,
        )


# ─────────────────────────── Persistence port ─────────────────────────────────

class DraftPersistence(Protocol):
    async def load(self) -> Optional[MatchDraft]: ...
    async def save(self, draft: MatchDraft) -> None: ...
    async def clear(self) -> None: ...


class MemoryDraftPersistence:
    """Keeps the serialized draft in memory (tests, one-off scripts)."""

    def __init__(self) -> None:
        self._data: Optional[dict] = None

    async def load(self) -> Optional[MatchDraft]:
        if self._data is None:
            return None
        return MatchDraft.model_validate(self._data)

    async def save(self, draft: MatchDraft) -> None:
        self._data = draft.model_dump(mode="json")

    async def clear(self) -> None:
        self._data = None


class FsmDraftPersistence:
    """Stores the draft inside the organizer's aiogram FSM data."""

    KEY = "draft"

    def __init__(self, state) -> None:   # aiogram FSMContext
        self._state = state

    async def load(self) -> Optional[MatchDraft]:
        data = await self._state.get_data()
        raw = data.get(self.KEY)
        if raw is None:
            return None
        return MatchDraft.model_validate(raw)

    async def save(self, draft: MatchDraft) -> None:
        await self._state.update_data({self.KEY: draft.model_dump(mode="json")})

    async def clear(self) -> None:
        await self._state.update_data({self.KEY: None})


# ─────────────────────────── Store ────────────────────────────────────────────

class MatchDraftStore:
    """Owns one MatchDraft and enforces its invariants."""

    def __init__(self, draft: MatchDraft, persistence: DraftPersistence) -> None:
        self._draft = draft
        self._persistence = persistence

    @classmethod
    async def open(
        cls,
        persistence: DraftPersistence,
        organizer_id: int,
        now: Optional[datetime] = None,
    ) -> "MatchDraftStore":
        """Resume the persisted draft, or start an empty one."""
        draft = await persistence.load()
        if draft is None or draft.organizer_id != organizer_id:
            draft = new_draft(organizer_id, now)
        return cls(draft, persistence)

    @property
    def draft(self) -> MatchDraft:
        return self._draft

    async def save(self) -> None:
        await self._persistence.save(self._draft)

    async def discard(self) -> None:
        await self._persistence.clear()

    # ── Plain fields ──────────────────────────────────────────────────────────

    def set_name(self, name: str) -> None:
        _ensure_editable(self._draft)
        self._draft.name = name.strip()

    def set_location(
        self,
        address: str,
        coordinates: Optional[Coordinates],
        manual_pin: bool = False,
    ) -> None:
        _ensure_editable(self._draft)
        self._draft.address = address.strip()
        self._draft.coordinates = coordinates
        self._draft.manual_pin = manual_pin

    def set_schedule(self, schedule: Schedule) -> None:
        _ensure_editable(self._draft)
        self._draft.schedule = schedule

    def set_game_mode(self, game_mode: GameMode) -> None:
        """Only team activities have a choice; individual ones stay INDIVIDUAL."""
        _ensure_editable(self._draft)
        if self._draft.is_team_activity:
            self._draft.game_mode = game_mode

    def set_participants(self, minimum: int, maximum: Optional[int]) -> None:
        _ensure_editable(self._draft)
        self._draft.participants = Participants(min=minimum, max=maximum)

    def toggle_equipment(self, item: str) -> None:
        _ensure_editable(self._draft)
        if item not in ActivityType.equipment_for(self._draft.activity_type):
            return
        if item in self._draft.equipment:
            self._draft.equipment.remove(item)
        else:
            self._draft.equipment.append(item)

    # ── Team settings ─────────────────────────────────────────────────────────

    def _team_settings(self) -> TeamSettings:
        if self._draft.team_settings is None:
            self._draft.team_settings = TeamSettings(
                min_players_per_team=ActivityType.TEAM_SIZE.get(self._draft.activity_type, 1),
            )
        return self._draft.team_settings

    def toggle_position(self, position: str) -> None:
        _ensure_editable(self._draft)
        if position not in ActivityType.POSITIONS.get(self._draft.activity_type, []):
            return
        ts = self._team_settings()
        if position in ts.positions:
            ts.positions.remove(position)
        else:
            ts.positions.append(position)

    def toggle_balance(self, flag: str) -> None:
        _ensure_editable(self._draft)
        ts = self._team_settings()
        if flag == "experience":
            ts.balance_by_experience = not ts.balance_by_experience
        elif flag == "rank":
            ts.balance_by_rank = not ts.balance_by_rank

    # ── Venue ranks ───────────────────────────────────────────────────────────

    def assign_rank(self, rank: int, venue: VenueRef) -> None:
        """
        Put `venue` at `rank`, replacing whatever occupied that rank.
        Raises DuplicateVenueError if the venue already sits at another rank.
        """
        _ensure_editable(self._draft)
        if rank not in RANKS:
            raise RankOutOfRangeError(f"rank must be 1..{MAX_RANK}, got {rank}")
        for other_rank, other in self._draft.venue_ranks.items():
            if other.id == venue.id and other_rank != rank:
                raise DuplicateVenueError(venue.id, other_rank)
        self._draft.venue_ranks[rank] = venue

    def clear_rank(self, rank: int) -> None:
        _ensure_editable(self._draft)
        self._draft.venue_ranks.pop(rank, None)

    def excluded_venue_ids(self) -> set[int]:
        """Venues that must not reappear in search results."""
        return {venue.id for venue in self._draft.venue_ranks.values()}

    def free_ranks(self) -> List[int]:
        return [r for r in RANKS if r not in self._draft.venue_ranks]

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def publish(self) -> None:
        _ensure_editable(self._draft)
        self._draft.status = DraftStatus.PUBLISHED

    def unpublish(self) -> None:
        """Back to an editable draft after a publish that did not persist."""
        if self._draft.status == DraftStatus.PUBLISHED:
            self._draft.status = DraftStatus.DRAFT

    def cancel(self) -> None:
        if self._draft.status == DraftStatus.CANCELLED:
            return
        self._draft.status = DraftStatus.CANCELLED
        logger.info("Draft %s cancelled", self._draft.draft_id)
