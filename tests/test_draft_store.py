"""
Unit tests — Match draft store (draft_store.py).

Covers the venue-rank invariants (one venue per rank, no venue at two
ranks), activity switching, prefill and FSM persistence.
"""
from __future__ import annotations

from datetime import time

import pytest
from aiogram.fsm.context import FSMContext
from aiogram.fsm.storage.base import StorageKey
from aiogram.fsm.storage.memory import MemoryStorage

from matchbot.models.models import ActivityType
from matchbot.services.draft_store import (
    DraftLockedError,
    DraftStatus,
    DuplicateVenueError,
    FsmDraftPersistence,
    GameMode,
    MatchDraft,
    MatchDraftStore,
    MemoryDraftPersistence,
    Participants,
    RankOutOfRangeError,
    apply_activity_change,
    default_schedule,
    new_draft,
    prefill_from_previous,
)
from tests.conftest import NOW, make_draft, make_store, venue_ref


# ─────────────────────────── Venue ranks ─────────────────────────────────────

class TestVenueRanks:
    def test_assign_and_free_ranks(self) -> None:
        store = make_store()
        store.assign_rank(1, venue_ref(10))
        store.assign_rank(3, venue_ref(30))
        assert store.free_ranks() == [2]
        assert store.excluded_venue_ids() == {10, 30}

    def test_same_venue_at_two_ranks_rejected(self) -> None:
        store = make_store()
        store.assign_rank(1, venue_ref(10))
        with pytest.raises(DuplicateVenueError) as exc:
            store.assign_rank(2, venue_ref(10))
        assert exc.value.rank == 1
        assert list(store.draft.venue_ranks) == [1]

    def test_reassigning_same_rank_replaces(self) -> None:
        store = make_store()
        store.assign_rank(1, venue_ref(10))
        store.assign_rank(1, venue_ref(11))
        assert store.draft.venue_ranks[1].id == 11
        assert store.excluded_venue_ids() == {11}

    def test_same_venue_same_rank_is_noop(self) -> None:
        store = make_store()
        store.assign_rank(2, venue_ref(10))
        store.assign_rank(2, venue_ref(10))
        assert store.draft.venue_ranks[2].id == 10

    @pytest.mark.parametrize("rank", [0, 4, -1])
    def test_rank_out_of_range(self, rank: int) -> None:
        with pytest.raises(RankOutOfRangeError):
            make_store().assign_rank(rank, venue_ref(10))

    def test_clear_rank(self) -> None:
        store = make_store()
        store.assign_rank(2, venue_ref(20))
        store.clear_rank(2)
        store.clear_rank(3)
        assert store.draft.venue_ranks == {}
        assert store.free_ranks() == [1, 2, 3]

    def test_ranked_venues_sorted(self) -> None:
        draft = make_draft(ranks=(7, 8, 9))
        assert [r for r, _ in draft.ranked_venues()] == [1, 2, 3]


# ─────────────────────────── Lifecycle ───────────────────────────────────────

class TestLifecycle:
    def test_published_draft_is_frozen(self) -> None:
        store = make_store()
        store.publish()
        assert store.draft.status == DraftStatus.PUBLISHED
        with pytest.raises(DraftLockedError):
            store.set_name("새 이름")
        with pytest.raises(DraftLockedError):
            store.assign_rank(1, venue_ref(1))

    def test_cancel_is_idempotent(self) -> None:
        store = make_store()
        store.cancel()
        store.cancel()
        assert store.draft.status == DraftStatus.CANCELLED
        with pytest.raises(DraftLockedError):
            store.publish()


# ─────────────────────────── Field setters ───────────────────────────────────

class TestSetters:
    def test_game_mode_only_for_team_activities(self) -> None:
        store = make_store(make_draft(ActivityType.TENNIS))
        store.set_game_mode(GameMode.TEAM)
        assert store.draft.game_mode == GameMode.INDIVIDUAL

        store = make_store(make_draft(ActivityType.FUTSAL))
        store.set_game_mode(GameMode.INDIVIDUAL)
        assert store.draft.game_mode == GameMode.INDIVIDUAL

    def test_equipment_toggle_ignores_foreign_items(self) -> None:
        store = make_store(make_draft(ActivityType.TENNIS))
        store.toggle_equipment("라켓")
        store.toggle_equipment("축구화")
        assert store.draft.equipment == ["라켓"]
        store.toggle_equipment("라켓")
        assert store.draft.equipment == []

    def test_position_toggle_creates_team_settings(self) -> None:
        store = make_store(make_draft(ActivityType.FUTSAL))
        store.toggle_position("GK")
        store.toggle_position("QB")
        ts = store.draft.team_settings
        assert ts.positions == ["GK"]
        assert ts.min_players_per_team == ActivityType.TEAM_SIZE[ActivityType.FUTSAL]

    def test_balance_toggle(self) -> None:
        store = make_store(make_draft(ActivityType.BASKETBALL))
        store.toggle_balance("rank")
        assert store.draft.team_settings.balance_by_rank
        assert not store.draft.team_settings.balance_by_experience


# ─────────────────────────── Activity change ─────────────────────────────────

class TestActivityChange:
    def test_keeps_common_fields_and_resets_specific_ones(self) -> None:
        draft = make_draft(ActivityType.FUTSAL, ranks=(1, 2), equipment=["풋살화", "물"])
        apply_activity_change(draft, ActivityType.TENNIS)

        assert draft.name == "수요일 저녁 풋살"
        assert draft.coordinates is not None
        assert draft.equipment == ["물"]
        assert draft.venue_ranks == {}
        assert draft.team_settings is None
        assert draft.game_mode == GameMode.INDIVIDUAL
        assert draft.participants.min == ActivityType.min_participants(ActivityType.TENNIS)

    def test_team_activity_defaults_to_team_mode(self) -> None:
        draft = make_draft(ActivityType.TENNIS)
        apply_activity_change(draft, ActivityType.FOOTBALL)
        assert draft.game_mode == GameMode.TEAM
        assert draft.participants.min == 22

    def test_max_below_new_floor_dropped(self) -> None:
        draft = make_draft(ActivityType.TENNIS, participants=Participants(min=2, max=4))
        apply_activity_change(draft, ActivityType.FUTSAL)
        assert draft.participants == Participants(min=10, max=None)

    def test_same_activity_is_noop(self) -> None:
        draft = make_draft(ActivityType.FUTSAL, ranks=(1,))
        apply_activity_change(draft, ActivityType.FUTSAL)
        assert list(draft.venue_ranks) == [1]


# ─────────────────────────── Construction / prefill ──────────────────────────

def test_default_schedule_rounds_to_hour() -> None:
    s = default_schedule(NOW.replace(hour=17, minute=28))
    assert s.start_time == time(20, 0)
    assert s.end_time == time(22, 0)


def test_new_draft_has_default_schedule() -> None:
    draft = new_draft(5, NOW)
    assert draft.organizer_id == 5
    assert draft.schedule.starts_at > NOW
    assert draft.status == DraftStatus.DRAFT


def test_prefill_moves_date_keeps_times() -> None:
    previous = make_draft(ActivityType.FUTSAL, start=time(19, 0), end=time(21, 0), equipment=["물"])
    draft = new_draft(1001, NOW)
    prefill_from_previous(draft, previous, NOW)

    assert draft.activity_type == ActivityType.FUTSAL
    assert draft.name == previous.name
    assert draft.coordinates == previous.coordinates
    assert draft.equipment == ["물"]
    assert draft.schedule.day == default_schedule(NOW).day
    assert draft.schedule.start_time == time(19, 0)
    assert draft.venue_ranks == {}


# ─────────────────────────── Persistence ─────────────────────────────────────

async def test_memory_persistence_round_trip() -> None:
    persistence = MemoryDraftPersistence()
    store = MatchDraftStore(make_draft(ranks=(3,)), persistence)
    await store.save()

    reopened = await MatchDraftStore.open(persistence, organizer_id=1001)
    assert reopened.draft.draft_id == store.draft.draft_id
    assert reopened.draft.venue_ranks[1].id == 3


async def test_open_ignores_other_organizers_draft() -> None:
    persistence = MemoryDraftPersistence()
    await persistence.save(make_draft(organizer_id=1))
    store = await MatchDraftStore.open(persistence, organizer_id=2)
    assert store.draft.organizer_id == 2
    assert store.draft.name == ""


async def test_fsm_persistence() -> None:
    state = FSMContext(storage=MemoryStorage(), key=StorageKey(bot_id=1, chat_id=1, user_id=1))
    persistence = FsmDraftPersistence(state)
    await persistence.save(make_draft())

    data = await state.get_data()
    assert isinstance(data["draft"], dict)
    loaded = await persistence.load()
    assert isinstance(loaded, MatchDraft)
    assert loaded.schedule == make_draft().schedule

    await persistence.clear()
    assert await persistence.load() is None
