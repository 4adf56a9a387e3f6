"""
Provisional reservation coordinator (가계약).

For each published draft the coordinator keeps one ReservationHold per
occupied venue rank and drives it through

    PENDING ──► HELD ──► CONFIRMED
       │          └────► RELEASED
       └────────► FAILED

`place_holds()` requests all holds concurrently and reports one outcome per
rank. `cascade_resolve()` runs once the match has enough participants: it
tries to confirm rank 1, then 2, then 3, and stops at the first success.
The whole cascade runs under a per-draft lock and its result is memoised,
so duplicate trigger deliveries can neither confirm two venues nor change
the outcome.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

import aiohttp
from sqlalchemy.exc import SQLAlchemyError

from matchbot.config import settings
from matchbot.services.draft_store import MatchDraft, TimeWindow
from matchbot.services.reservation_service import HoldRejected, ReservationBackend

logger = logging.getLogger(__name__)

# Transport failures of a backend call; they fail one rank, never the batch
BACKEND_ERRORS = (SQLAlchemyError, OSError, aiohttp.ClientError)


class HoldState(str, enum.Enum):
    PENDING   = "pending"
    HELD      = "held"
    CONFIRMED = "confirmed"
    RELEASED  = "released"
    FAILED    = "failed"

    @property
    def label(self) -> str:
        return HOLD_STATE_LABELS[self]


HOLD_STATE_LABELS = {
    HoldState.PENDING:   "⏳ 요청 중",
    HoldState.HELD:      "📌 가계약",
    HoldState.CONFIRMED: "✅ 확정",
    HoldState.RELEASED:  "↩️ 해제",
    HoldState.FAILED:    "❌ 실패",
}


class CascadeStatus(str, enum.Enum):
    CONFIRMED = "confirmed"   # exactly one rank confirmed
    NO_VENUE  = "no_venue"    # every rank failed, match goes on without a venue
    NO_HOLDS  = "no_holds"    # nothing was ever held for the draft
    CANCELLED = "cancelled"   # organizer cancelled before the trigger


class HoldsLockedError(RuntimeError):
    """Holds can no longer be added: confirmed, resolved or cancelled."""


# ─────────────────────────── Value objects ────────────────────────────────────

@dataclass
class ReservationHold:
    rank:       int
    venue_id:   int
    venue_name: str
    window:     TimeWindow
    state:      HoldState = HoldState.PENDING
    hold_id:    Optional[str] = None
    reason:     Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.state in (HoldState.PENDING, HoldState.HELD)


@dataclass(frozen=True)
class RankOutcome:
    rank:       int
    venue_id:   int
    venue_name: str
    state:      HoldState
    reason:     Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.state == HoldState.HELD

    @classmethod
    def of(cls, hold: ReservationHold) -> "RankOutcome":
        return cls(hold.rank, hold.venue_id, hold.venue_name, hold.state, hold.reason)


@dataclass(frozen=True)
class CascadeResult:
    status:    CascadeStatus
    confirmed: Optional[ReservationHold]
    holds:     List[ReservationHold]

    @property
    def confirmed_rank(self) -> Optional[int]:
        return self.confirmed.rank if self.confirmed else None


@dataclass
class _DraftHolds:
    draft_id:  str
    holds:     Dict[int, ReservationHold] = field(default_factory=dict)
    lock:      asyncio.Lock = field(default_factory=asyncio.Lock)
    result:    Optional[CascadeResult] = None
    cancelled: bool = False

    def ordered(self) -> List[ReservationHold]:
        return [self.holds[rank] for rank in sorted(self.holds)]

    @property
    def locked(self) -> bool:
        return (
            self.cancelled
            or self.result is not None
            or any(h.state == HoldState.CONFIRMED for h in self.holds.values())
        )


# ─────────────────────────── Coordinator ──────────────────────────────────────

class ProvisionalReservationCoordinator:
    def __init__(
        self,
        backend: ReservationBackend,
        timeout: float = settings.COLLABORATOR_TIMEOUT_S,
        memo_prefix: str = settings.HOLD_MEMO_PREFIX,
    ) -> None:
        self._backend = backend
        self._timeout = timeout
        self._memo_prefix = memo_prefix
        self._drafts: Dict[str, _DraftHolds] = {}

    def _entry(self, draft_id: str) -> _DraftHolds:
        entry = self._drafts.get(draft_id)
        if entry is None:
            entry = self._drafts[draft_id] = _DraftHolds(draft_id)
        return entry

    def knows(self, draft_id: str) -> bool:
        return draft_id in self._drafts

    def adopt(self, draft_id: str, holds: List[ReservationHold]) -> None:
        """Re-attach holds loaded from storage (e.g. after a restart)."""
        entry = self._entry(draft_id)
        for hold in holds:
            entry.holds.setdefault(hold.rank, hold)

    # ── Placement ─────────────────────────────────────────────────────────────

    async def place_holds(
        self,
        draft: MatchDraft,
        organizer_name: str = "",
    ) -> List[RankOutcome]:
        """
        Request one hold per occupied rank of `draft`, concurrently.

        A rank that is already held for the same venue is not requested again.
        Individual rejections and timeouts only fail their own rank.

        Raises
        ------
        HoldsLockedError once a hold was confirmed, the cascade ran or the
        draft was cancelled.
        ValueError when the draft has no schedule.
        """
        if draft.schedule is None:
            raise ValueError(f"draft {draft.draft_id} has no schedule")

        entry = self._entry(draft.draft_id)
        async with entry.lock:
            if entry.locked:
                raise HoldsLockedError(f"holds of draft {draft.draft_id} are locked")

            window = draft.schedule.window()
            memo = f"{self._memo_prefix} - {organizer_name}" if organizer_name else self._memo_prefix
            wanted = dict(draft.ranked_venues())

            # Ranks cleared or re-assigned since the last placement
            for rank, hold in list(entry.holds.items()):
                venue = wanted.get(rank)
                if venue is None or venue.id != hold.venue_id:
                    if hold.state == HoldState.HELD:
                        await self._release(draft.draft_id, hold)
                    del entry.holds[rank]

            requests: List[ReservationHold] = []
            for rank, venue in wanted.items():
                current = entry.holds.get(rank)
                if current is not None and current.state == HoldState.HELD:
                    continue
                hold = ReservationHold(rank=rank, venue_id=venue.id, venue_name=venue.name, window=window)
                entry.holds[rank] = hold
                requests.append(hold)

            await asyncio.gather(*(
                self._request(draft, hold, memo) for hold in requests
            ))

            outcomes = [RankOutcome.of(h) for h in entry.ordered()]

        held = sum(1 for o in outcomes if o.ok)
        logger.info("Draft %s: %d/%d ranks held", draft.draft_id, held, len(outcomes))
        return outcomes

    async def _request(self, draft: MatchDraft, hold: ReservationHold, memo: str) -> None:
        try:
            hold.hold_id = await asyncio.wait_for(
                self._backend.create_hold(
                    hold.venue_id,
                    hold.window,
                    memo=memo,
                    draft_id=draft.draft_id,
                    user_id=draft.organizer_id or None,
                ),
                self._timeout,
            )
        except HoldRejected as exc:
            self._fail(draft.draft_id, hold, exc.reason)
        except asyncio.TimeoutError:
            self._fail(draft.draft_id, hold, "timeout")
        except BACKEND_ERRORS as exc:
            self._fail(draft.draft_id, hold, str(exc) or type(exc).__name__)
        else:
            hold.state = HoldState.HELD
            hold.reason = None

    def _fail(self, draft_id: str, hold: ReservationHold, reason: str) -> None:
        hold.state = HoldState.FAILED
        hold.reason = reason
        logger.warning("Draft %s rank %d (venue %d): %s", draft_id, hold.rank, hold.venue_id, reason)

    # ── Cascade ───────────────────────────────────────────────────────────────

    async def cascade_resolve(self, draft_id: str) -> CascadeResult:
        """
        Confirm exactly one venue, trying held ranks in ascending order.

        * first successful confirm → that rank CONFIRMED, untried ranks RELEASED,
          ranks that failed along the way stay FAILED
        * every rank failing → all FAILED, status NO_VENUE
        * a timed-out confirm counts as a failure for that rank

        Safe under at-least-once delivery: later calls return the first result.
        """
        entry = self._entry(draft_id)
        async with entry.lock:
            if entry.result is not None:
                return entry.result

            if entry.cancelled:
                entry.result = CascadeResult(CascadeStatus.CANCELLED, None, entry.ordered())
                return entry.result

            if not entry.holds:
                entry.result = CascadeResult(CascadeStatus.NO_HOLDS, None, [])
                logger.info("Draft %s: cascade with no holds", draft_id)
                return entry.result

            confirmed: Optional[ReservationHold] = None
            for hold in entry.ordered():
                if hold.state == HoldState.CONFIRMED:
                    confirmed = hold
                    break
                if hold.state != HoldState.HELD:
                    continue
                if await self._confirm(draft_id, hold):
                    confirmed = hold
                    break

            if confirmed is not None:
                for hold in entry.ordered():
                    if hold is not confirmed and hold.state == HoldState.HELD:
                        await self._release(draft_id, hold)
                status = CascadeStatus.CONFIRMED
                logger.info(
                    "Draft %s: rank %d (venue %d) confirmed",
                    draft_id, confirmed.rank, confirmed.venue_id,
                )
            else:
                for hold in entry.ordered():
                    if hold.state != HoldState.FAILED:
                        self._fail(draft_id, hold, hold.reason or "not confirmable")
                status = CascadeStatus.NO_VENUE
                logger.info("Draft %s: no venue confirmed", draft_id)

            entry.result = CascadeResult(status, confirmed, entry.ordered())
            return entry.result

    async def _confirm(self, draft_id: str, hold: ReservationHold) -> bool:
        try:
            await asyncio.wait_for(self._backend.confirm_hold(hold.hold_id), self._timeout)
        except HoldRejected as exc:
            self._fail(draft_id, hold, exc.reason)
        except asyncio.TimeoutError:
            self._fail(draft_id, hold, "timeout")
        except BACKEND_ERRORS as exc:
            self._fail(draft_id, hold, str(exc) or type(exc).__name__)
        else:
            hold.state = HoldState.CONFIRMED
            hold.reason = None
            return True

        # The provisional booking would otherwise keep blocking the venue
        await self._release_backend(draft_id, hold)
        return False

    # ── Release / cancel ──────────────────────────────────────────────────────

    async def _release_backend(self, draft_id: str, hold: ReservationHold) -> None:
        if hold.hold_id is None:
            return
        try:
            await asyncio.wait_for(self._backend.release_hold(hold.hold_id), self._timeout)
        except (asyncio.TimeoutError,) + BACKEND_ERRORS as exc:
            logger.warning(
                "Draft %s rank %d: release of hold %s failed: %r",
                draft_id, hold.rank, hold.hold_id, exc,
            )

    async def _release(self, draft_id: str, hold: ReservationHold) -> None:
        await self._release_backend(draft_id, hold)
        hold.state = HoldState.RELEASED

    async def cancel(self, draft_id: str) -> List[ReservationHold]:
        """
        Release every pending/held rank. A confirmed rank is left alone.
        Cascades triggered afterwards are no-ops.
        """
        entry = self._entry(draft_id)
        async with entry.lock:
            if not entry.cancelled:
                entry.cancelled = True
                for hold in entry.ordered():
                    if hold.is_open:
                        await self._release(draft_id, hold)
                logger.info("Draft %s: holds cancelled", draft_id)
            return [replace(h) for h in entry.ordered()]

    def forget(self, draft_id: str) -> None:
        self._drafts.pop(draft_id, None)

    # ── Status ────────────────────────────────────────────────────────────────

    def holds(self, draft_id: str) -> List[ReservationHold]:
        entry = self._drafts.get(draft_id)
        if entry is None:
            return []
        return [replace(h) for h in entry.ordered()]

    def result(self, draft_id: str) -> Optional[CascadeResult]:
        entry = self._drafts.get(draft_id)
        return entry.result if entry else None

    def status_lines(self, draft_id: str) -> List[str]:
        lines = []
        for hold in self.holds(draft_id):
            line = f"{hold.rank}순위 · {hold.venue_name}: {hold.state.label}"
            if hold.state == HoldState.FAILED and hold.reason:
                line += f" ({hold.reason})"
            lines.append(line)
        return lines
