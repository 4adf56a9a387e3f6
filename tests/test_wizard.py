"""
Unit tests — Wizard controller and step gate (wizard.py, step_gate.py).

The clock is pinned to NOW so the lead-time rule is deterministic.
"""
from __future__ import annotations

from datetime import date, time, timedelta

import pytest

from matchbot.models.models import ActivityType
from matchbot.services.draft_store import (
    Coordinates,
    GameMode,
    Participants,
    Schedule,
    new_draft,
)
from matchbot.services.step_gate import StepKind, validate
from matchbot.services.wizard import WizardController, step_sequence
from tests.conftest import NOW, make_draft, make_store


def _wizard(draft=None, step: int = 1) -> WizardController:
    return WizardController(make_store(draft), current_step=step, clock=lambda: NOW)


# ─────────────────────────── Step sequence ───────────────────────────────────

class TestStepSequence:
    def test_individual_activity_has_four_steps(self) -> None:
        assert step_sequence(ActivityType.TENNIS, GameMode.INDIVIDUAL) == [
            StepKind.CATEGORY, StepKind.LOCATION, StepKind.SCHEDULE, StepKind.EQUIPMENT,
        ]

    def test_team_activity_individual_mode_has_five(self) -> None:
        steps = step_sequence(ActivityType.FUTSAL, GameMode.INDIVIDUAL)
        assert len(steps) == 5
        assert steps[1] == StepKind.GAME_SETTINGS

    def test_team_activity_team_mode_has_six(self) -> None:
        steps = step_sequence(ActivityType.FUTSAL, GameMode.TEAM)
        assert len(steps) == 6
        assert steps[-1] == StepKind.REVIEW

    def test_no_activity_yet(self) -> None:
        assert len(step_sequence("", GameMode.INDIVIDUAL)) == 4


# ─────────────────────────── Step gate ───────────────────────────────────────

class TestStepGate:
    def test_valid_draft_passes_every_step(self) -> None:
        draft = make_draft()
        for kind in StepKind:
            assert validate(kind, draft, NOW) is None

    def test_category_required(self) -> None:
        assert validate(StepKind.CATEGORY, new_draft(1, NOW), NOW) == "종목을 선택해 주세요."

    def test_unknown_category(self) -> None:
        draft = make_draft(activity_type="curling")
        assert "지원하지 않는" in validate(StepKind.CATEGORY, draft, NOW)

    def test_game_settings_fills_defaults(self) -> None:
        draft = make_draft(ActivityType.BASKETBALL)
        assert draft.team_settings is None
        assert validate(StepKind.GAME_SETTINGS, draft, NOW) is None
        assert draft.team_settings.positions == ActivityType.POSITIONS[ActivityType.BASKETBALL]
        assert draft.team_settings.min_players_per_team == 5

    def test_place_checked_before_name(self) -> None:
        draft = make_draft(address="", coordinates=None, name="")
        assert validate(StepKind.LOCATION, draft, NOW) == "매치 장소를 입력해 주세요."

    def test_unresolved_address_asks_for_pin(self) -> None:
        draft = make_draft(coordinates=None)
        assert "지도에서" in validate(StepKind.LOCATION, draft, NOW)

    def test_pin_without_address_is_enough(self) -> None:
        draft = make_draft(address="", coordinates=Coordinates(lat=37.5, lng=127.0))
        assert validate(StepKind.LOCATION, draft, NOW) is None

    @pytest.mark.parametrize("name", ["", "a", "x" * 61])
    def test_name_length(self, name: str) -> None:
        assert "이름" in validate(StepKind.LOCATION, make_draft(name=name), NOW)

    def test_schedule_required(self) -> None:
        assert validate(StepKind.SCHEDULE, make_draft(schedule=None), NOW) == "매치 일정을 입력해 주세요."

    def test_lead_time(self) -> None:
        soon = NOW + timedelta(hours=1)
        draft = make_draft(day=soon.date(), start=soon.time(), end=time(23, 0))
        assert "2시간" in validate(StepKind.SCHEDULE, draft, NOW)

    def test_exactly_at_lead_time_passes(self) -> None:
        start = NOW + timedelta(hours=2)
        draft = make_draft(day=start.date(), start=start.time(), end=time(16, 0))
        assert validate(StepKind.SCHEDULE, draft, NOW) is None

    def test_overnight_schedule_is_valid(self) -> None:
        draft = make_draft(start=time(23, 0), end=time(1, 0))
        assert validate(StepKind.SCHEDULE, draft, NOW) is None

    def test_participant_floor(self) -> None:
        draft = make_draft(ActivityType.FOOTBALL, participants=Participants(min=12))
        assert "22" in validate(StepKind.SCHEDULE, draft, NOW)

    def test_max_below_min(self) -> None:
        draft = make_draft(participants=Participants(min=12, max=10))
        assert "최대 인원" in validate(StepKind.SCHEDULE, draft, NOW)

    def test_revalidation_is_stable(self) -> None:
        draft = make_draft(name="a")
        assert validate(StepKind.LOCATION, draft, NOW) == validate(StepKind.LOCATION, draft, NOW)


# ─────────────────────────── Controller ──────────────────────────────────────

class TestWizardController:
    def test_next_refused_without_activity(self) -> None:
        wizard = WizardController(make_store(new_draft(1, NOW)), clock=lambda: NOW)
        result = wizard.next()
        assert not result.ok
        assert result.reason == "종목을 선택해 주세요."
        assert wizard.current_step == 1

    def test_next_advances(self) -> None:
        wizard = _wizard(make_draft(ActivityType.TENNIS))
        result = wizard.next()
        assert result.ok and not result.submitted
        assert wizard.current_kind == StepKind.LOCATION

    def test_next_refused_keeps_step(self) -> None:
        wizard = _wizard(make_draft(ActivityType.TENNIS, coordinates=None), step=2)
        result = wizard.next()
        assert not result.ok
        assert wizard.current_step == 2

    def test_prev_never_validates(self) -> None:
        wizard = _wizard(make_draft(ActivityType.TENNIS, name="", schedule=None), step=3)
        wizard.prev()
        wizard.prev()
        wizard.prev()
        assert wizard.current_step == 1

    def test_walk_to_submission(self) -> None:
        wizard = _wizard(make_draft(ActivityType.FUTSAL))
        assert wizard.total_steps == 6
        for expected in range(2, 7):
            assert wizard.next().ok
            assert wizard.current_step == expected
        result = wizard.next()
        assert result.submitted
        assert result.state.is_last

    def test_submit_fails_closed_on_last_step(self) -> None:
        draft = make_draft(ActivityType.TENNIS)
        wizard = _wizard(draft, step=4)
        draft.name = ""
        result = wizard.next()
        assert not result.submitted
        assert "이름" in result.reason
        assert wizard.current_step == wizard.total_steps

    def test_step_position_clamped_on_activity_change(self) -> None:
        wizard = _wizard(make_draft(ActivityType.FUTSAL), step=6)
        ws = wizard.change_activity(ActivityType.TENNIS)
        assert ws.total_steps == 4
        assert ws.current_step == 4
        assert ws.current_kind == StepKind.EQUIPMENT

    def test_game_mode_change_drops_review(self) -> None:
        wizard = _wizard(make_draft(ActivityType.FUTSAL), step=6)
        ws = wizard.change_game_mode(GameMode.INDIVIDUAL)
        assert ws.total_steps == 5
        assert ws.current_step == 5

    def test_initial_step_clamped(self) -> None:
        wizard = _wizard(make_draft(ActivityType.TENNIS), step=9)
        assert wizard.current_step == 4
        assert _wizard(make_draft(), step=0).current_step == 1

    def test_lead_time_uses_injected_clock(self) -> None:
        draft = make_draft(ActivityType.TENNIS, day=date(2026, 10, 19), start=time(13, 0), end=time(15, 0))
        wizard = _wizard(draft, step=3)
        result = wizard.next()
        assert not result.ok
        assert "2시간" in result.reason
