"""
Unit tests — Provisional reservation coordinator (provisional_service.py).

The backend is an in-memory fake, so every scenario is deterministic:
  - hold placement (partial failure, re-placement, memo)
  - cascade: rank order, failure fall-through, release of untried ranks
  - idempotence under duplicate / concurrent triggers
  - cancellation and locking
"""
from __future__ import annotations

import asyncio

import aiohttp
import pytest

from matchbot.services.provisional_service import (
    CascadeStatus,
    HoldsLockedError,
    HoldState,
    ProvisionalReservationCoordinator,
)
from tests.conftest import FakeReservationBackend, make_draft, make_store, venue_ref


def _coordinator(backend: FakeReservationBackend, timeout: float = 1.0) -> ProvisionalReservationCoordinator:
    return ProvisionalReservationCoordinator(backend, timeout=timeout, memo_prefix="가예약중")


def _states(coordinator, draft_id: str):
    return {h.rank: h.state for h in coordinator.holds(draft_id)}


# ─────────────────────────── Placement ───────────────────────────────────────

class TestPlaceHolds:
    async def test_all_ranks_held(self) -> None:
        backend = FakeReservationBackend()
        coordinator = _coordinator(backend)
        draft = make_draft(ranks=(11, 12, 13))

        outcomes = await coordinator.place_holds(draft, "김주최")
        assert [o.rank for o in outcomes] == [1, 2, 3]
        assert all(o.ok for o in outcomes)
        assert sorted(v for v, _ in backend.created) == [11, 12, 13]
        assert {memo for _, memo in backend.created} == {"가예약중 - 김주최"}

    async def test_memo_without_organizer_name(self) -> None:
        backend = FakeReservationBackend()
        await _coordinator(backend).place_holds(make_draft(ranks=(11,)))
        assert backend.created == [(11, "가예약중")]

    async def test_one_rejection_fails_only_its_rank(self) -> None:
        backend = FakeReservationBackend(reject_create=[12])
        coordinator = _coordinator(backend)

        outcomes = await coordinator.place_holds(make_draft(ranks=(11, 12, 13)))
        assert [o.state for o in outcomes] == [HoldState.HELD, HoldState.FAILED, HoldState.HELD]
        assert "already booked" in outcomes[1].reason

    async def test_replacing_a_rank_releases_the_old_hold(self) -> None:
        backend = FakeReservationBackend()
        coordinator = _coordinator(backend)
        store = make_store(make_draft(ranks=(11, 12)))
        await coordinator.place_holds(store.draft)

        store.assign_rank(2, venue_ref(14))
        outcomes = await coordinator.place_holds(store.draft)

        assert [(o.rank, o.venue_id) for o in outcomes] == [(1, 11), (2, 14)]
        assert backend.released == [12]
        # rank 1 was already held and is not requested twice
        assert [v for v, _ in backend.created].count(11) == 1

    async def test_cleared_rank_is_released(self) -> None:
        backend = FakeReservationBackend()
        coordinator = _coordinator(backend)
        store = make_store(make_draft(ranks=(11, 12)))
        await coordinator.place_holds(store.draft)

        store.clear_rank(1)
        outcomes = await coordinator.place_holds(store.draft)
        assert [o.venue_id for o in outcomes] == [12]
        assert backend.released == [11]

    async def test_transport_error_fails_only_its_rank(self) -> None:
        backend = FakeReservationBackend(create_errors={12: aiohttp.ServerDisconnectedError()})
        coordinator = _coordinator(backend)

        outcomes = await coordinator.place_holds(make_draft(ranks=(11, 12, 13)))
        assert [o.state for o in outcomes] == [HoldState.HELD, HoldState.FAILED, HoldState.HELD]
        assert outcomes[1].reason

    async def test_requires_schedule(self) -> None:
        with pytest.raises(ValueError):
            await _coordinator(FakeReservationBackend()).place_holds(make_draft(ranks=(1,), schedule=None))


# ─────────────────────────── Cascade ─────────────────────────────────────────

class TestCascade:
    async def test_rank_one_confirmed_rest_released(self) -> None:
        backend = FakeReservationBackend()
        coordinator = _coordinator(backend)
        draft = make_draft(ranks=(11, 12, 13))
        await coordinator.place_holds(draft)

        result = await coordinator.cascade_resolve(draft.draft_id)
        assert result.status == CascadeStatus.CONFIRMED
        assert result.confirmed_rank == 1
        assert backend.confirmed == [11]
        assert sorted(backend.released) == [12, 13]
        assert _states(coordinator, draft.draft_id) == {
            1: HoldState.CONFIRMED, 2: HoldState.RELEASED, 3: HoldState.RELEASED,
        }

    async def test_falls_through_to_next_rank(self) -> None:
        """V1 refused at confirmation → V2 confirmed, V3 released."""
        backend = FakeReservationBackend(reject_confirm=[11])
        coordinator = _coordinator(backend)
        draft = make_draft(ranks=(11, 12, 13))
        await coordinator.place_holds(draft)

        result = await coordinator.cascade_resolve(draft.draft_id)
        assert result.confirmed.venue_id == 12
        assert _states(coordinator, draft.draft_id) == {
            1: HoldState.FAILED, 2: HoldState.CONFIRMED, 3: HoldState.RELEASED,
        }
        # V1's provisional booking is released too
        assert sorted(backend.released) == [11, 13]

    async def test_skips_rank_that_was_never_held(self) -> None:
        backend = FakeReservationBackend(reject_create=[11])
        coordinator = _coordinator(backend)
        draft = make_draft(ranks=(11, 12, 13))
        await coordinator.place_holds(draft)

        result = await coordinator.cascade_resolve(draft.draft_id)
        assert result.confirmed_rank == 2
        assert backend.confirmed == [12]
        assert _states(coordinator, draft.draft_id)[1] == HoldState.FAILED

    async def test_all_ranks_fail(self) -> None:
        backend = FakeReservationBackend(reject_confirm=[11, 12, 13])
        coordinator = _coordinator(backend)
        draft = make_draft(ranks=(11, 12, 13))
        await coordinator.place_holds(draft)

        result = await coordinator.cascade_resolve(draft.draft_id)
        assert result.status == CascadeStatus.NO_VENUE
        assert result.confirmed is None
        assert set(_states(coordinator, draft.draft_id).values()) == {HoldState.FAILED}

    async def test_confirm_timeout_counts_as_failure(self) -> None:
        backend = FakeReservationBackend(slow_confirm=[11])
        coordinator = _coordinator(backend, timeout=0.05)
        draft = make_draft(ranks=(11, 12))
        await coordinator.place_holds(draft)

        result = await coordinator.cascade_resolve(draft.draft_id)
        assert result.confirmed_rank == 2
        hold = coordinator.holds(draft.draft_id)[0]
        assert hold.state == HoldState.FAILED
        assert hold.reason == "timeout"
        assert 11 in backend.released

    async def test_transport_error_moves_to_next_rank(self) -> None:
        backend = FakeReservationBackend(confirm_errors={11: aiohttp.ClientConnectionError("reset")})
        coordinator = _coordinator(backend)
        draft = make_draft(ranks=(11, 12, 13))
        await coordinator.place_holds(draft)

        result = await coordinator.cascade_resolve(draft.draft_id)
        assert result.confirmed_rank == 2
        assert _states(coordinator, draft.draft_id) == {
            1: HoldState.FAILED, 2: HoldState.CONFIRMED, 3: HoldState.RELEASED,
        }
        assert 11 in backend.released

    async def test_no_holds(self) -> None:
        coordinator = _coordinator(FakeReservationBackend())
        result = await coordinator.cascade_resolve("unknown-draft")
        assert result.status == CascadeStatus.NO_HOLDS

    async def test_deterministic_across_runs(self) -> None:
        outcomes = []
        for _ in range(3):
            backend = FakeReservationBackend(reject_confirm=[11])
            coordinator = _coordinator(backend)
            draft = make_draft(ranks=(11, 12, 13))
            await coordinator.place_holds(draft)
            await coordinator.cascade_resolve(draft.draft_id)
            outcomes.append((_states(coordinator, draft.draft_id), backend.confirmed))
        assert outcomes[0] == outcomes[1] == outcomes[2]


# ─────────────────────────── Idempotence ─────────────────────────────────────

class TestIdempotence:
    async def test_repeated_trigger_returns_first_result(self) -> None:
        backend = FakeReservationBackend(reject_confirm=[11])
        coordinator = _coordinator(backend)
        draft = make_draft(ranks=(11, 12, 13))
        await coordinator.place_holds(draft)

        first = await coordinator.cascade_resolve(draft.draft_id)
        backend.reject_confirm.clear()
        second = await coordinator.cascade_resolve(draft.draft_id)

        assert second is first
        assert backend.confirmed == [12]

    async def test_concurrent_triggers_confirm_once(self) -> None:
        backend = FakeReservationBackend()
        coordinator = _coordinator(backend)
        draft = make_draft(ranks=(11, 12, 13))
        await coordinator.place_holds(draft)

        results = await asyncio.gather(*(coordinator.cascade_resolve(draft.draft_id) for _ in range(5)))
        assert len({id(r) for r in results}) == 1
        assert backend.confirmed == [11]
        confirmed = [h for h in coordinator.holds(draft.draft_id) if h.state == HoldState.CONFIRMED]
        assert len(confirmed) == 1

    async def test_place_after_cascade_is_locked(self) -> None:
        coordinator = _coordinator(FakeReservationBackend())
        draft = make_draft(ranks=(11,))
        await coordinator.place_holds(draft)
        await coordinator.cascade_resolve(draft.draft_id)
        with pytest.raises(HoldsLockedError):
            await coordinator.place_holds(draft)


# ─────────────────────────── Cancel / recovery ───────────────────────────────

class TestCancel:
    async def test_cancel_releases_open_holds(self) -> None:
        backend = FakeReservationBackend(reject_create=[13])
        coordinator = _coordinator(backend)
        draft = make_draft(ranks=(11, 12, 13))
        await coordinator.place_holds(draft)

        holds = await coordinator.cancel(draft.draft_id)
        assert [h.state for h in holds] == [HoldState.RELEASED, HoldState.RELEASED, HoldState.FAILED]
        assert sorted(backend.released) == [11, 12]

    async def test_cascade_after_cancel_is_noop(self) -> None:
        backend = FakeReservationBackend()
        coordinator = _coordinator(backend)
        draft = make_draft(ranks=(11,))
        await coordinator.place_holds(draft)
        await coordinator.cancel(draft.draft_id)

        result = await coordinator.cascade_resolve(draft.draft_id)
        assert result.status == CascadeStatus.CANCELLED
        assert backend.confirmed == []
        with pytest.raises(HoldsLockedError):
            await coordinator.place_holds(draft)

    async def test_cancel_keeps_confirmed_booking(self) -> None:
        backend = FakeReservationBackend()
        coordinator = _coordinator(backend)
        draft = make_draft(ranks=(11, 12))
        await coordinator.place_holds(draft)
        await coordinator.cascade_resolve(draft.draft_id)

        holds = await coordinator.cancel(draft.draft_id)
        assert holds[0].state == HoldState.CONFIRMED
        assert 11 not in backend.released

    async def test_cancel_twice(self) -> None:
        backend = FakeReservationBackend()
        coordinator = _coordinator(backend)
        draft = make_draft(ranks=(11,))
        await coordinator.place_holds(draft)
        await coordinator.cancel(draft.draft_id)
        await coordinator.cancel(draft.draft_id)
        assert backend.released == [11]

    async def test_holds_are_snapshots(self) -> None:
        coordinator = _coordinator(FakeReservationBackend())
        draft = make_draft(ranks=(11,))
        await coordinator.place_holds(draft)
        snapshot = coordinator.holds(draft.draft_id)
        snapshot[0].state = HoldState.FAILED
        assert coordinator.holds(draft.draft_id)[0].state == HoldState.HELD

    async def test_status_lines(self) -> None:
        coordinator = _coordinator(FakeReservationBackend(reject_create=[12]))
        draft = make_draft(ranks=(11, 12))
        await coordinator.place_holds(draft)
        lines = coordinator.status_lines(draft.draft_id)
        assert lines[0].startswith("1순위 · V11")
        assert "already booked" in lines[1]
