"""
Match service — database side of the match lifecycle.

publish → players join → threshold reached → venue cascade
                       ↘ organizer cancels / undersubscribed sweep

All functions receive an AsyncSession; committing is left to the caller
(the DB middleware inside handlers, the sweep task in main.py).
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from matchbot.models.models import (
    BookingStatus,
    Match,
    MatchParticipant,
    MatchStatus,
    User,
    Venue,
    VenueBooking,
    VenueStatus,
)
from matchbot.services.draft_store import (
    Coordinates,
    GameMode,
    MatchDraft,
    MatchDraftStore,
    Participants,
    Schedule,
    TeamSettings,
    TimeWindow,
)
from matchbot.services.provisional_service import (
    CascadeResult,
    CascadeStatus,
    HoldState,
    HoldsLockedError,
    ProvisionalReservationCoordinator,
    RankOutcome,
    ReservationHold,
)

logger = logging.getLogger(__name__)

# Undersubscribed matches are cancelled when they start within this window
SWEEP_LEAD = timedelta(hours=1)
SWEEP_SPAN = timedelta(minutes=10)


# ── User ──────────────────────────────────────────────────────────────────────

async def upsert_user(
    session: AsyncSession,
    telegram_id: int,
    first_name: str,
    last_name: Optional[str],
    username: Optional[str],
) -> User:
    """Create or update a Telegram user record."""
    result = await session.execute(
        select(User).where(User.telegram_id == telegram_id)
    )
    user = result.scalar_one_or_none()
    if user is None:
        user = User(
            telegram_id=telegram_id,
            first_name=first_name,
            last_name=last_name,
            username=username,
        )
        session.add(user)
        await session.flush()
    else:
        user.first_name = first_name
        user.last_name  = last_name
        user.username   = username
    return user


# ── Queries ───────────────────────────────────────────────────────────────────

def _with_relations(q):
    return q.options(
        selectinload(Match.participants),
        selectinload(Match.confirmed_venue),
    )


async def get_match(session: AsyncSession, match_id: int) -> Optional[Match]:
    result = await session.execute(_with_relations(select(Match).where(Match.id == match_id)))
    return result.scalar_one_or_none()


async def get_match_by_draft(session: AsyncSession, draft_id: str) -> Optional[Match]:
    result = await session.execute(_with_relations(select(Match).where(Match.draft_id == draft_id)))
    return result.scalar_one_or_none()


async def list_organizer_matches(
    session: AsyncSession,
    organizer_id: int,
    limit: int = 10,
) -> List[Match]:
    result = await session.execute(
        _with_relations(select(Match))
        .where(Match.organizer_id == organizer_id)
        .order_by(Match.starts_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_open_matches(
    session: AsyncSession,
    now: Optional[datetime] = None,
    limit: int = 10,
) -> List[Match]:
    """Published matches that have not started yet, soonest first."""
    now = now or datetime.now()
    result = await session.execute(
        _with_relations(select(Match))
        .where(Match.status == MatchStatus.PUBLISHED, Match.starts_at > now)
        .order_by(Match.starts_at, Match.id)
        .limit(limit)
    )
    return list(result.scalars().all())


async def count_participants(session: AsyncSession, match_id: int) -> int:
    """Joined players plus the organizer."""
    result = await session.execute(
        select(func.count(MatchParticipant.id)).where(MatchParticipant.match_id == match_id)
    )
    return (result.scalar_one() or 0) + 1


def threshold_reached(match: Match, participant_count: int) -> bool:
    return participant_count >= match.min_participants


# ── Templates ─────────────────────────────────────────────────────────────────

async def last_match_for_activity(
    session: AsyncSession,
    organizer_id: int,
    activity_type: str,
) -> Optional[Match]:
    result = await session.execute(
        select(Match)
        .where(Match.organizer_id == organizer_id, Match.activity_type == activity_type)
        .order_by(Match.created_at.desc(), Match.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


def template_from_match(match: Match) -> MatchDraft:
    """Rebuild a draft-shaped snapshot of a stored match (for prefilling)."""
    coordinates = None
    if match.latitude is not None and match.longitude is not None:
        coordinates = Coordinates(lat=match.latitude, lng=match.longitude)
    return MatchDraft(
        organizer_id=match.organizer_id,
        activity_type=match.activity_type,
        game_mode=GameMode(match.game_mode),
        name=match.name,
        address=match.address,
        coordinates=coordinates,
        schedule=Schedule(
            day=match.starts_at.date(),
            start_time=match.starts_at.time(),
            end_time=match.ends_at.time(),
        ),
        participants=Participants(min=match.min_participants, max=match.max_participants),
        equipment=list(match.equipment or []),
        team_settings=TeamSettings.model_validate(match.team_settings) if match.team_settings else None,
    )


# ── Publish ───────────────────────────────────────────────────────────────────

def _venue_status(outcomes: List[RankOutcome]) -> str:
    if not outcomes:
        return VenueStatus.NONE
    if any(o.ok for o in outcomes):
        return VenueStatus.HELD
    return VenueStatus.NO_VENUE


async def abandon_publish(
    store: MatchDraftStore,
    coordinator: ProvisionalReservationCoordinator,
) -> None:
    """Undo the non-transactional half of a publish whose Match never persisted."""
    draft_id = store.draft.draft_id
    if coordinator.knows(draft_id):
        await coordinator.cancel(draft_id)
        coordinator.forget(draft_id)
    store.unpublish()
    logger.warning("Draft %s: publish rolled back, holds released", draft_id)


async def publish_match(
    session: AsyncSession,
    store: MatchDraftStore,
    coordinator: ProvisionalReservationCoordinator,
    organizer_name: str = "",
) -> Tuple[Match, List[RankOutcome]]:
    """
    Freeze the draft, store it as a Match and place provisional holds on
    every ranked venue. Hold failures are reported per rank and never
    prevent publishing.

    If the Match row cannot be written the holds are released and the draft
    becomes editable again before the error propagates.
    """
    draft = store.draft
    if draft.schedule is None:
        raise ValueError(f"draft {draft.draft_id} has no schedule")
    store.publish()

    # Holds run in their own transactions, before this session writes anything
    outcomes: List[RankOutcome] = []
    if draft.venue_ranks:
        try:
            outcomes = await coordinator.place_holds(draft, organizer_name)
        except HoldsLockedError:
            logger.warning("Draft %s published with locked holds", draft.draft_id)

    window = draft.schedule.window()
    match = Match(
        draft_id=draft.draft_id,
        organizer_id=draft.organizer_id,
        name=draft.name,
        activity_type=draft.activity_type,
        game_mode=draft.game_mode.value,
        address=draft.address,
        latitude=draft.coordinates.lat if draft.coordinates else None,
        longitude=draft.coordinates.lng if draft.coordinates else None,
        starts_at=window.start,
        ends_at=window.end,
        min_participants=draft.participants.min,
        max_participants=draft.participants.max,
        equipment=list(draft.equipment),
        team_settings=draft.team_settings.model_dump() if draft.team_settings else None,
        ranked_venue_ids=[[rank, venue.id] for rank, venue in draft.ranked_venues()],
        status=MatchStatus.PUBLISHED,
        venue_status=_venue_status(outcomes),
    )
    try:
        session.add(match)
        await session.flush()
    except SQLAlchemyError:
        await abandon_publish(store, coordinator)
        raise

    logger.info(
        "Match %d published by %d (%s, %d ranked venues)",
        match.id, match.organizer_id, match.activity_type, len(draft.venue_ranks),
    )
    return match, outcomes


# ── Hold recovery ─────────────────────────────────────────────────────────────

async def ensure_holds_loaded(
    session: AsyncSession,
    coordinator: ProvisionalReservationCoordinator,
    match: Match,
) -> None:
    """
    Re-attach a match's provisional/confirmed bookings to the coordinator
    when it has never seen the draft (bot restarted since publishing).
    """
    if coordinator.knows(match.draft_id) or not match.ranked_venue_ids:
        return

    rank_of = {int(venue_id): int(rank) for rank, venue_id in match.ranked_venue_ids}
    result = await session.execute(
        select(VenueBooking, Venue.name)
        .join(Venue, Venue.id == VenueBooking.venue_id)
        .where(
            VenueBooking.draft_id == match.draft_id,
            VenueBooking.status.in_((BookingStatus.PROVISIONAL, BookingStatus.CONFIRMED)),
        )
    )
    holds = []
    for booking, venue_name in result.all():
        rank = rank_of.get(booking.venue_id)
        if rank is None:
            continue
        state = HoldState.CONFIRMED if booking.status == BookingStatus.CONFIRMED else HoldState.HELD
        holds.append(ReservationHold(
            rank=rank,
            venue_id=booking.venue_id,
            venue_name=venue_name,
            window=TimeWindow(booking.starts_at, booking.ends_at),
            state=state,
            hold_id=str(booking.id),
        ))
    coordinator.adopt(match.draft_id, holds)
    logger.info("Draft %s: %d holds recovered from storage", match.draft_id, len(holds))


# ── Join / threshold ──────────────────────────────────────────────────────────

async def join_match(
    session: AsyncSession,
    match_id: int,
    telegram_id: int,
    now: Optional[datetime] = None,
) -> Tuple[Optional[int], str]:
    """
    Add a player to a match.
    Returns (participant_count, error_message). error_message is empty on success.
    """
    now = now or datetime.now()
    match = await session.get(Match, match_id)
    if match is None:
        return None, "매치를 찾을 수 없습니다."
    if match.status != MatchStatus.PUBLISHED:
        return None, "참가 신청이 마감된 매치입니다."
    if match.starts_at <= now:
        return None, "이미 시작된 매치입니다."
    if match.organizer_id == telegram_id:
        return None, "주최자는 이미 참가자로 포함되어 있습니다."

    existing = await session.execute(
        select(MatchParticipant).where(
            MatchParticipant.match_id == match_id,
            MatchParticipant.telegram_id == telegram_id,
        )
    )
    if existing.scalar_one_or_none():
        return None, "이미 참가 신청한 매치입니다."

    count = await count_participants(session, match_id)
    if match.max_participants is not None and count >= match.max_participants:
        return None, "정원이 가득 찼습니다."

    session.add(MatchParticipant(match_id=match_id, telegram_id=telegram_id))
    await session.flush()
    count += 1

    if match.max_participants is not None and count >= match.max_participants:
        match.status = MatchStatus.CLOSED
    return count, ""


class ThresholdTrigger:
    """
    Entry point for "participant threshold reached".

    Safe to call any number of times for the same draft: the coordinator
    memoises the cascade and the stored venue status short-circuits calls
    made after a restart. Exactly one call per match claims the firing;
    the returned flag tells the caller whether it was this one, so only
    that caller notifies the organizer.
    """

    def __init__(self, coordinator: ProvisionalReservationCoordinator) -> None:
        self._coordinator = coordinator

    async def on_threshold_reached(
        self,
        session: AsyncSession,
        draft_id: str,
        now: Optional[datetime] = None,
    ) -> Tuple[Optional[CascadeResult], bool]:
        match = await get_match_by_draft(session, draft_id)
        if match is None or match.status == MatchStatus.CANCELLED:
            return None, False
        fired_at = now or datetime.now()

        if match.venue_status in (VenueStatus.CONFIRMED, VenueStatus.NO_VENUE, VenueStatus.RELEASED):
            first = await _claim_firing(session, match, fired_at)
            return self._coordinator.result(draft_id), first

        # The cascade writes through its own transactions; touch the match afterwards
        await ensure_holds_loaded(session, self._coordinator, match)
        result = await self._coordinator.cascade_resolve(draft_id)

        first = await _claim_firing(session, match, fired_at)
        if result.status == CascadeStatus.CONFIRMED:
            match.venue_status = VenueStatus.CONFIRMED
            match.confirmed_venue_id = result.confirmed.venue_id
        elif result.status == CascadeStatus.NO_VENUE:
            match.venue_status = VenueStatus.NO_VENUE
        await session.flush()
        return result, first


async def _claim_firing(session: AsyncSession, match: Match, fired_at: datetime) -> bool:
    """Set threshold_fired_at only if nobody has; True for the caller that did."""
    res = await session.execute(
        update(Match)
        .where(Match.id == match.id, Match.threshold_fired_at.is_(None))
        .values(threshold_fired_at=fired_at)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        return False
    match.threshold_fired_at = fired_at
    return True


# ── Cancel ────────────────────────────────────────────────────────────────────

async def cancel_match(
    session: AsyncSession,
    match_id: int,
    coordinator: ProvisionalReservationCoordinator,
    organizer_id: Optional[int] = None,
) -> Tuple[Optional[Match], str]:
    """
    Cancel a match and release its open holds.
    Pass `organizer_id` to refuse cancellation by anyone else.
    Returns (match, error_message). error_message is empty on success.
    """
    match = await get_match(session, match_id)
    if match is None:
        return None, "매치를 찾을 수 없습니다."
    if organizer_id is not None and match.organizer_id != organizer_id:
        return None, "주최자만 매치를 취소할 수 있습니다."
    if match.status == MatchStatus.CANCELLED:
        return None, "이미 취소된 매치입니다."

    await ensure_holds_loaded(session, coordinator, match)
    holds = await coordinator.cancel(match.draft_id)

    match.status = MatchStatus.CANCELLED
    if any(h.state == HoldState.RELEASED for h in holds) and match.venue_status == VenueStatus.HELD:
        match.venue_status = VenueStatus.RELEASED
    await session.flush()
    coordinator.forget(match.draft_id)
    logger.info("Match %d cancelled", match.id)
    return match, ""


async def sweep_undersubscribed(
    session: AsyncSession,
    coordinator: ProvisionalReservationCoordinator,
    now: Optional[datetime] = None,
) -> List[Match]:
    """
    Cancel published matches starting within [now+1h, now+1h10m] that are
    still below their minimum participant count. Returns the cancelled
    matches with participants loaded, for notification.
    """
    now = now or datetime.now()
    result = await session.execute(
        _with_relations(select(Match))
        .where(
            Match.status == MatchStatus.PUBLISHED,
            Match.starts_at >= now + SWEEP_LEAD,
            Match.starts_at <= now + SWEEP_LEAD + SWEEP_SPAN,
        )
        .order_by(Match.starts_at, Match.id)
    )
    undersubscribed = [
        m for m in result.scalars().all()
        if not threshold_reached(m, m.participant_count)
    ]

    # Release holds first, then mark the matches (see ThresholdTrigger)
    released = {}
    for match in undersubscribed:
        await ensure_holds_loaded(session, coordinator, match)
        holds = await coordinator.cancel(match.draft_id)
        released[match.id] = any(h.state == HoldState.RELEASED for h in holds)

    for match in undersubscribed:
        match.status = MatchStatus.CANCELLED
        if match.venue_status == VenueStatus.HELD and released[match.id]:
            match.venue_status = VenueStatus.RELEASED
        logger.info(
            "Match %d cancelled: %d/%d participants an hour before start",
            match.id, match.participant_count, match.min_participants,
        )
    await session.flush()
    return undersubscribed
