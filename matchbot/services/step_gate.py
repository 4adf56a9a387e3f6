"""
Step validation gate — decides whether the wizard may leave a step.

`validate()` returns None when the step passes, otherwise a single
human-readable reason (the first failing rule). It performs no I/O and
re-validating an unmodified draft always gives the same answer.

The one permitted side effect: the game-settings step fills in default
team settings when the organizer did not pick any.
"""
from __future__ import annotations

import enum
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from matchbot.config import settings
from matchbot.models.models import ActivityType
from matchbot.services.draft_store import NAME_MAX_LEN, NAME_MIN_LEN, MatchDraft, TeamSettings


class StepKind(str, enum.Enum):
    CATEGORY      = "category"
    GAME_SETTINGS = "game_settings"
    LOCATION      = "location"
    SCHEDULE      = "schedule"
    EQUIPMENT     = "equipment"
    REVIEW        = "review"

    @property
    def title(self) -> str:
        return STEP_TITLES[self]


STEP_TITLES: Dict[StepKind, str] = {
    StepKind.CATEGORY:      "종목 선택",
    StepKind.GAME_SETTINGS: "게임 설정",
    StepKind.LOCATION:      "장소",
    StepKind.SCHEDULE:      "일정 및 인원",
    StepKind.EQUIPMENT:     "준비물",
    StepKind.REVIEW:        "최종 확인",
}


# ── Rules ─────────────────────────────────────────────────────────────────────

def _check_category(draft: MatchDraft, now: datetime) -> Optional[str]:
    if not draft.activity_type:
        return "종목을 선택해 주세요."
    if not ActivityType.is_known(draft.activity_type):
        return "지원하지 않는 종목입니다."
    return None


def _check_game_settings(draft: MatchDraft, now: datetime) -> Optional[str]:
    if draft.team_settings is None:
        draft.team_settings = TeamSettings(
            positions=list(ActivityType.POSITIONS.get(draft.activity_type, [])),
            min_players_per_team=ActivityType.TEAM_SIZE.get(draft.activity_type, 1),
        )
    return None


def _check_common_settings(draft: MatchDraft, now: datetime) -> Optional[str]:
    """
    Shared rule of the location and schedule steps.

    Order: place → name → schedule → time range → lead time → participants.
    """
    if not draft.address.strip() and draft.coordinates is None:
        return "매치 장소를 입력해 주세요."
    if draft.coordinates is None:
        return "주소를 찾지 못했습니다. 지도에서 위치를 직접 지정해 주세요."

    name = draft.name.strip()
    if not name:
        return "매치 이름을 입력해 주세요."
    if len(name) < NAME_MIN_LEN or len(name) > NAME_MAX_LEN:
        return f"매치 이름은 {NAME_MIN_LEN}~{NAME_MAX_LEN}자로 입력해 주세요."

    schedule = draft.schedule
    if schedule is None:
        return "매치 일정을 입력해 주세요."
    window = schedule.window()
    if window.end <= window.start:
        return "종료 시간은 시작 시간 이후여야 합니다."
    lead = timedelta(hours=settings.MIN_LEAD_TIME_HOURS)
    if window.start < now + lead:
        return f"매치는 현재 시각으로부터 {settings.MIN_LEAD_TIME_HOURS}시간 이후로만 만들 수 있습니다."

    floor = ActivityType.min_participants(draft.activity_type)
    participants = draft.participants
    if participants.min < floor:
        return f"최소 인원은 {floor}명 이상이어야 합니다."
    if participants.max is not None and participants.max < participants.min:
        return "최대 인원은 최소 인원보다 적을 수 없습니다."
    return None


def _always_ok(draft: MatchDraft, now: datetime) -> Optional[str]:
    return None


_RULES: Dict[StepKind, Callable[[MatchDraft, datetime], Optional[str]]] = {
    StepKind.CATEGORY:      _check_category,
    StepKind.GAME_SETTINGS: _check_game_settings,
    StepKind.LOCATION:      _check_common_settings,
    StepKind.SCHEDULE:      _check_common_settings,
    StepKind.EQUIPMENT:     _always_ok,
    StepKind.REVIEW:        _always_ok,
}


def validate(step: StepKind, draft: MatchDraft, now: Optional[datetime] = None) -> Optional[str]:
    """
    Parameters
    ----------
    step  : the step being left
    draft : current draft snapshot
    now   : reference time for the lead-time rule (defaults to datetime.now())

    Returns
    -------
    None if the wizard may advance, otherwise the first failing reason.
    """
    return _RULES[step](draft, now or datetime.now())
