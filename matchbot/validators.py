"""
Input validation for FSM text handlers — Pydantic v2 models.

Used to validate organizer-supplied text before it is written into the
match draft. Keeps parsing logic out of handler code and makes it trivially
testable.
"""
from __future__ import annotations

import re
from datetime import date, datetime, time
from typing import Optional

from pydantic import BaseModel, field_validator, model_validator

from matchbot.models.models import ActivityType
from matchbot.services.draft_store import NAME_MAX_LEN, NAME_MIN_LEN, Schedule


# "2026-10-20 18:00-20:00" / "2026-10-20 18:00~20:00" / "10-20 18:00 - 20:00"
_SCHEDULE_RE = re.compile(
    r"^\s*(?:(?P<year>\d{4})[-./])?(?P<month>\d{1,2})[-./](?P<day>\d{1,2})\s+"
    r"(?P<sh>\d{1,2}):(?P<sm>\d{2})\s*[-~]\s*(?P<eh>\d{1,2}):(?P<em>\d{2})\s*$"
)

_PARTICIPANTS_RE = re.compile(r"^\s*(?P<min>\d{1,4})(?:\s*[-~/ ]\s*(?P<max>\d{1,4}))?\s*$")


class MatchNameData(BaseModel):
    """
    Match title typed by the organizer.

    Attributes
    ----------
    name : 2–60 characters after trimming
    """

    name: str

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = " ".join(v.split())
        if len(v) < NAME_MIN_LEN:
            raise ValueError(f"매치 이름을 {NAME_MIN_LEN}자 이상 입력해 주세요.")
        if len(v) > NAME_MAX_LEN:
            raise ValueError(f"매치 이름은 {NAME_MAX_LEN}자 이하로 입력해 주세요.")
        return v


class AddressData(BaseModel):
    address: str

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        v = " ".join(v.split())
        if len(v) < 2 or len(v) > 200:
            raise ValueError("주소를 2~200자로 입력해 주세요.")
        return v


class ScheduleData(BaseModel):
    """
    Schedule text in the form `YYYY-MM-DD HH:MM-HH:MM`.

    The year may be omitted (`MM-DD HH:MM-HH:MM`); `reference` supplies it.
    An end time before the start time means the match runs past midnight.
    """

    text: str
    reference: date

    @model_validator(mode="after")
    def validate_text(self) -> "ScheduleData":
        self.to_schedule()
        return self

    def to_schedule(self) -> Schedule:
        m = _SCHEDULE_RE.match(self.text)
        if not m:
            raise ValueError("일정 형식이 올바르지 않습니다. 예: 2026-10-20 18:00-20:00")
        year = int(m["year"]) if m["year"] else self.reference.year
        try:
            day   = date(year, int(m["month"]), int(m["day"]))
            start = time(int(m["sh"]), int(m["sm"]))
            end   = time(int(m["eh"]), int(m["em"]))
        except ValueError:
            raise ValueError("존재하지 않는 날짜 또는 시간입니다.") from None
        if start == end:
            raise ValueError("시작 시간과 종료 시간이 같습니다.")
        return Schedule(day=day, start_time=start, end_time=end)


class ParticipantsData(BaseModel):
    """
    Participant bounds: `min` or `min-max`.

    Attributes
    ----------
    minimum       : at least the activity's floor (e.g. 22 for football)
    maximum       : optional, never below minimum, at most 1000
    activity_type : activity the floor is looked up for
    """

    minimum: int
    maximum: Optional[int] = None
    activity_type: str = ""

    @model_validator(mode="after")
    def validate_bounds(self) -> "ParticipantsData":
        floor = ActivityType.min_participants(self.activity_type)
        if self.minimum < floor:
            raise ValueError(f"최소 인원은 {floor}명 이상이어야 합니다.")
        if self.maximum is not None:
            if self.maximum < self.minimum:
                raise ValueError("최대 인원은 최소 인원보다 적을 수 없습니다.")
            if self.maximum > 1000:
                raise ValueError("최대 인원은 1000명 이하로 입력해 주세요.")
        return self

    @classmethod
    def parse(cls, text: str, activity_type: str) -> "ParticipantsData":
        m = _PARTICIPANTS_RE.match(text or "")
        if not m:
            raise ValueError("인원을 숫자로 입력해 주세요. 예: 22 또는 22-30")
        maximum = int(m["max"]) if m["max"] else None
        return cls(minimum=int(m["min"]), maximum=maximum, activity_type=activity_type)


def first_error(exc: Exception) -> str:
    """One human-readable message from a pydantic ValidationError / ValueError."""
    errors = getattr(exc, "errors", None)
    if callable(errors):
        items = errors()
        if items:
            msg = str(items[0].get("msg", ""))
            return msg.removeprefix("Value error, ")
    return str(exc)


def now_reference() -> date:
    return datetime.now().date()
