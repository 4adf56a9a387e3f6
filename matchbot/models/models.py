"""
ORM models and domain constants for the match-making bot.

Domain overview
---------------
Venue         — a bookable sports facility (futsal pitch, gym, court …)
  └─ VenueBooking — a reservation on a venue for one time window
                    (provisional holds and confirmed bookings share the table)
Match         — a published match created through the organizer wizard
  └─ MatchParticipant — a player who joined the match
"""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from matchbot.models.base import Base

# ─────────────────────────── Constants ────────────────────────────────────────

class ActivityType:
    FOOTBALL     = "football"
    FUTSAL       = "futsal"
    BASKETBALL   = "basketball"
    BASEBALL     = "baseball"
    VOLLEYBALL   = "volleyball"
    TENNIS       = "tennis"
    BADMINTON    = "badminton"
    TABLE_TENNIS = "table_tennis"
    BOWLING      = "bowling"

    LABELS = {
        FOOTBALL:     "축구",
        FUTSAL:       "풋살",
        BASKETBALL:   "농구",
        BASEBALL:     "야구",
        VOLLEYBALL:   "배구",
        TENNIS:       "테니스",
        BADMINTON:    "배드민턴",
        TABLE_TENNIS: "탁구",
        BOWLING:      "볼링",
    }

    EMOJI = {
        FOOTBALL:     "⚽️",
        FUTSAL:       "🥅",
        BASKETBALL:   "🏀",
        BASEBALL:     "⚾️",
        VOLLEYBALL:   "🏐",
        TENNIS:       "🎾",
        BADMINTON:    "🏸",
        TABLE_TENNIS: "🏓",
        BOWLING:      "🎳",
    }

    # Sports played team-vs-team (adds the game-settings step)
    TEAM: frozenset[str] = frozenset({FOOTBALL, FUTSAL, BASKETBALL, BASEBALL, VOLLEYBALL})

    TEAM_SIZE: dict[str, int] = {
        FOOTBALL:   11,
        FUTSAL:     5,
        BASKETBALL: 5,
        BASEBALL:   9,
        VOLLEYBALL: 6,
    }

    # Floor for MatchDraft.participants.min; the organizer may not go below it
    MIN_PARTICIPANTS: dict[str, int] = {
        FOOTBALL:     22,   # 11 vs 11
        FUTSAL:       10,
        BASKETBALL:   10,
        BASEBALL:     18,
        VOLLEYBALL:   12,
        TENNIS:       2,
        BADMINTON:    2,
        TABLE_TENNIS: 2,
        BOWLING:      2,
    }

    POSITIONS: dict[str, list[str]] = {
        FOOTBALL:   ["GK", "DF", "MF", "FW"],
        FUTSAL:     ["GK", "DF", "MF", "FW"],
        BASKETBALL: ["PG", "SG", "SF", "PF", "C"],
        BASEBALL:   ["P", "C", "1B", "2B", "3B", "SS", "LF", "CF", "RF"],
        VOLLEYBALL: ["S", "OH", "MB", "OP", "L"],
    }

    DEFAULT_EQUIPMENT: list[str] = ["운동복", "운동화", "물"]

    EQUIPMENT: dict[str, list[str]] = {
        FOOTBALL:     ["축구화", "축구공", "운동복", "수건", "물"],
        FUTSAL:       ["풋살화", "풋살공", "운동복", "수건", "물"],
        BASKETBALL:   ["농구화", "농구공", "운동복", "물"],
        BASEBALL:     ["글러브", "배트", "야구화", "운동복", "물"],
        VOLLEYBALL:   ["배구공", "무릎 보호대", "운동복", "물"],
        TENNIS:       ["라켓", "테니스공", "운동복", "물"],
        BADMINTON:    ["라켓", "셔틀콕", "운동복", "물"],
        TABLE_TENNIS: ["라켓", "탁구공", "운동복", "물"],
        BOWLING:      ["볼링화", "운동복", "물"],
    }

    # Which kind of venue hosts which activity
    VENUE_TYPE: dict[str, str] = {
        FOOTBALL:     "풋살장",
        FUTSAL:       "풋살장",
        BASKETBALL:   "체육관",
        VOLLEYBALL:   "체육관",
        BASEBALL:     "야구장",
        TENNIS:       "테니스장",
        BADMINTON:    "체육센터",
        TABLE_TENNIS: "체육센터",
        BOWLING:      "체육센터",
    }

    @classmethod
    def is_known(cls, activity_type: str) -> bool:
        return activity_type in cls.LABELS

    @classmethod
    def is_team(cls, activity_type: str) -> bool:
        return activity_type in cls.TEAM

    @classmethod
    def min_participants(cls, activity_type: str) -> int:
        return cls.MIN_PARTICIPANTS.get(activity_type, 1)

    @classmethod
    def equipment_for(cls, activity_type: str) -> list[str]:
        return cls.EQUIPMENT.get(activity_type, cls.DEFAULT_EQUIPMENT)

    @classmethod
    def label(cls, activity_type: str) -> str:
        if not activity_type:
            return "—"
        emoji = cls.EMOJI.get(activity_type, "🏃")
        return f"{emoji} {cls.LABELS.get(activity_type, activity_type)}"


class MatchStatus:
    PUBLISHED = "published"   # Open for players
    CLOSED    = "closed"      # Full: max participants reached
    CANCELLED = "cancelled"   # Organizer cancelled / undersubscribed


class VenueStatus:
    NONE      = "none"        # No venue ranked at all
    HELD      = "held"        # Provisional holds in place
    CONFIRMED = "confirmed"   # Cascade confirmed one venue
    NO_VENUE  = "no_venue"    # Cascade exhausted every rank
    RELEASED  = "released"    # Holds released (match cancelled)

    LABELS = {
        NONE:      "시설 미지정",
        HELD:      "가계약 진행 중",
        CONFIRMED: "시설 확정",
        NO_VENUE:  "확정된 시설 없음 (직접 조율 필요)",
        RELEASED:  "가계약 해제",
    }


class BookingStatus:
    PENDING     = "pending"      # Direct booking awaiting owner approval
    PROVISIONAL = "provisional"  # Provisional hold placed by a match organizer
    CONFIRMED   = "confirmed"
    CANCELLED   = "cancelled"

    # Statuses that occupy the venue for their time window
    ACTIVE = (PENDING, PROVISIONAL, CONFIRMED)


# ─────────────────────────── Models ───────────────────────────────────────────

class User(Base):
    """Telegram user — organizer and/or player."""
    __tablename__ = "users"

    id:          Mapped[int]           = mapped_column(Integer, primary_key=True, autoincrement=True)
    telegram_id: Mapped[int]           = mapped_column(BigInteger, unique=True, index=True)
    username:    Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    first_name:  Mapped[str]           = mapped_column(String(255))
    last_name:   Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at:  Mapped[datetime]      = mapped_column(DateTime, default=func.now())

    @property
    def display_name(self) -> str:
        parts = [self.first_name]
        if self.last_name:
            parts.append(self.last_name)
        return " ".join(parts)


class Venue(Base):
    """A bookable facility listed in the venue directory."""
    __tablename__ = "venues"

    id:              Mapped[int]           = mapped_column(Integer, primary_key=True, autoincrement=True)
    name:            Mapped[str]           = mapped_column(String(255))
    address:         Mapped[str]           = mapped_column(String(500))
    latitude:        Mapped[float]         = mapped_column(Float)
    longitude:       Mapped[float]         = mapped_column(Float)
    venue_type:      Mapped[str]           = mapped_column(String(50), index=True)
    operating_hours: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)  # "06:00-22:00"
    slot_hours:      Mapped[int]           = mapped_column(Integer, default=2)

    bookings: Mapped[List["VenueBooking"]] = relationship(
        back_populates="venue", cascade="all, delete-orphan"
    )


class VenueBooking(Base):
    """
    A reservation on a venue.

    Provisional holds (가계약) are rows with status=provisional linked to the
    match draft; confirming a hold flips the same row to confirmed.
    """
    __tablename__ = "venue_bookings"

    id:          Mapped[int]           = mapped_column(Integer, primary_key=True, autoincrement=True)
    venue_id:    Mapped[int]           = mapped_column(ForeignKey("venues.id"), index=True)
    user_id:     Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)   # telegram_id
    draft_id:    Mapped[Optional[str]] = mapped_column(String(32), nullable=True, index=True)
    starts_at:   Mapped[datetime]      = mapped_column(DateTime, index=True)
    ends_at:     Mapped[datetime]      = mapped_column(DateTime)
    status:      Mapped[str]           = mapped_column(String(20), default=BookingStatus.PENDING, index=True)
    memo:        Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at:  Mapped[datetime]      = mapped_column(DateTime, default=func.now())

    venue: Mapped["Venue"] = relationship(back_populates="bookings")


class Match(Base):
    """A published match (snapshot of the submitted wizard draft)."""
    __tablename__ = "matches"

    id:                 Mapped[int]                = mapped_column(Integer, primary_key=True, autoincrement=True)
    draft_id:           Mapped[str]                = mapped_column(String(32), unique=True, index=True)
    organizer_id:       Mapped[int]                = mapped_column(BigInteger, index=True)  # telegram_id
    name:               Mapped[str]                = mapped_column(String(100))
    activity_type:      Mapped[str]                = mapped_column(String(30))
    game_mode:          Mapped[str]                = mapped_column(String(20))
    address:            Mapped[str]                = mapped_column(String(500))
    latitude:           Mapped[Optional[float]]    = mapped_column(Float, nullable=True)
    longitude:          Mapped[Optional[float]]    = mapped_column(Float, nullable=True)
    starts_at:          Mapped[datetime]           = mapped_column(DateTime, index=True)
    ends_at:            Mapped[datetime]           = mapped_column(DateTime)
    min_participants:   Mapped[int]                = mapped_column(Integer)
    max_participants:   Mapped[Optional[int]]      = mapped_column(Integer, nullable=True)
    equipment:          Mapped[list]               = mapped_column(JSON, default=list)
    team_settings:      Mapped[Optional[dict]]     = mapped_column(JSON, nullable=True)
    ranked_venue_ids:   Mapped[list]               = mapped_column(JSON, default=list)
    status:             Mapped[str]                = mapped_column(String(20), default=MatchStatus.PUBLISHED)
    venue_status:       Mapped[str]                = mapped_column(String(20), default=VenueStatus.NONE)
    confirmed_venue_id: Mapped[Optional[int]]      = mapped_column(ForeignKey("venues.id"), nullable=True)
    threshold_fired_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at:         Mapped[datetime]           = mapped_column(DateTime, default=func.now())

    participants:    Mapped[List["MatchParticipant"]] = relationship(
        back_populates="match", cascade="all, delete-orphan"
    )
    confirmed_venue: Mapped[Optional["Venue"]] = relationship()

    @property
    def activity_label(self) -> str:
        return ActivityType.label(self.activity_type)

    @property
    def participant_count(self) -> int:
        """Joined players plus the organizer."""
        return len(self.participants) + 1

    @property
    def status_emoji(self) -> str:
        mapping = {
            MatchStatus.PUBLISHED: "📋",
            MatchStatus.CLOSED:    "✅",
            MatchStatus.CANCELLED: "❌",
        }
        return mapping.get(self.status, "❓")


class MatchParticipant(Base):
    """A player who joined a match (the organizer is not stored here)."""
    __tablename__ = "match_participants"
    __table_args__ = (UniqueConstraint("match_id", "telegram_id", name="uq_participant_match_user"),)

    id:          Mapped[int]      = mapped_column(Integer, primary_key=True, autoincrement=True)
    match_id:    Mapped[int]      = mapped_column(ForeignKey("matches.id"), index=True)
    telegram_id: Mapped[int]      = mapped_column(BigInteger)
    joined_at:   Mapped[datetime] = mapped_column(DateTime, default=func.now())

    match: Mapped["Match"] = relationship(back_populates="participants")
