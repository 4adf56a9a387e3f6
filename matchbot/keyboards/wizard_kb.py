"""
Match wizard keyboards — one builder per step plus the shared navigation row.
"""
from aiogram.types import (
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    KeyboardButton,
    ReplyKeyboardMarkup,
)
from aiogram.utils.keyboard import InlineKeyboardBuilder

from matchbot.keyboards.callbacks import ActivityCb, EquipmentCb, GameCb, WizardCb
from matchbot.models.models import ActivityType
from matchbot.services.draft_store import GameMode
from matchbot.services.wizard import WizardState


def _check(flag: bool) -> str:
    return "✅" if flag else "⬜️"


def _nav_row(builder: InlineKeyboardBuilder, state: WizardState) -> None:
    buttons = []
    if state.current_step > 1:
        buttons.append(InlineKeyboardButton(text="◀️ 이전", callback_data=WizardCb(action="prev").pack()))
    next_text = "✅ 매치 등록" if state.is_last else "다음 ▶️"
    buttons.append(InlineKeyboardButton(text=next_text, callback_data=WizardCb(action="next").pack()))
    builder.row(*buttons)
    builder.row(InlineKeyboardButton(text="❌ 취소", callback_data=WizardCb(action="cancel").pack()))


def category_kb(state: WizardState, can_prefill: bool = False) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    current = state.draft.activity_type
    for activity in ActivityType.LABELS:
        mark = "🔘 " if activity == current else ""
        builder.button(
            text=f"{mark}{ActivityType.label(activity)}",
            callback_data=ActivityCb(activity=activity).pack(),
        )
    builder.adjust(3)
    if can_prefill:
        builder.row(InlineKeyboardButton(
            text="♻️ 이전 매치 불러오기", callback_data=WizardCb(action="prefill").pack(),
        ))
    _nav_row(builder, state)
    return builder.as_markup()


def game_settings_kb(state: WizardState) -> InlineKeyboardMarkup:
    draft = state.draft
    builder = InlineKeyboardBuilder()
    builder.row(
        InlineKeyboardButton(
            text=f"{_check(draft.game_mode == GameMode.TEAM)} 팀전",
            callback_data=GameCb(action="mode", value=GameMode.TEAM.value).pack(),
        ),
        InlineKeyboardButton(
            text=f"{_check(draft.game_mode == GameMode.INDIVIDUAL)} 개인 참가",
            callback_data=GameCb(action="mode", value=GameMode.INDIVIDUAL.value).pack(),
        ),
    )
    chosen = draft.team_settings.positions if draft.team_settings else []
    positions = ActivityType.POSITIONS.get(draft.activity_type, [])
    pos_builder = InlineKeyboardBuilder()
    for pos in positions:
        pos_builder.button(
            text=f"{_check(pos in chosen)} {pos}",
            callback_data=GameCb(action="position", value=pos).pack(),
        )
    pos_builder.adjust(4)
    builder.attach(pos_builder)

    ts = draft.team_settings
    builder.row(
        InlineKeyboardButton(
            text=f"{_check(bool(ts and ts.balance_by_experience))} 경력 밸런스",
            callback_data=GameCb(action="balance", value="experience").pack(),
        ),
        InlineKeyboardButton(
            text=f"{_check(bool(ts and ts.balance_by_rank))} 랭크 밸런스",
            callback_data=GameCb(action="balance", value="rank").pack(),
        ),
    )
    _nav_row(builder, state)
    return builder.as_markup()


def location_kb(state: WizardState) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(InlineKeyboardButton(
        text="✏️ 매치 이름", callback_data=WizardCb(action="input", field="name").pack(),
    ))
    builder.row(InlineKeyboardButton(
        text="📍 주소 입력", callback_data=WizardCb(action="input", field="address").pack(),
    ))
    if state.draft.coordinates is not None:
        builder.row(InlineKeyboardButton(
            text="🏟 시설 순위 지정", callback_data=WizardCb(action="venues").pack(),
        ))
    _nav_row(builder, state)
    return builder.as_markup()


def schedule_kb(state: WizardState) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(InlineKeyboardButton(
        text="🗓 일정 입력", callback_data=WizardCb(action="input", field="schedule").pack(),
    ))
    builder.row(InlineKeyboardButton(
        text="👥 인원 입력", callback_data=WizardCb(action="input", field="participants").pack(),
    ))
    _nav_row(builder, state)
    return builder.as_markup()


def equipment_kb(state: WizardState) -> InlineKeyboardMarkup:
    draft = state.draft
    builder = InlineKeyboardBuilder()
    for idx, item in enumerate(ActivityType.equipment_for(draft.activity_type)):
        builder.button(
            text=f"{_check(item in draft.equipment)} {item}",
            callback_data=EquipmentCb(idx=idx).pack(),
        )
    builder.adjust(2)
    _nav_row(builder, state)
    return builder.as_markup()


def review_kb(state: WizardState) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    _nav_row(builder, state)
    return builder.as_markup()


def cancel_input_kb() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(InlineKeyboardButton(text="🔙 돌아가기", callback_data=WizardCb(action="back").pack()))
    return builder.as_markup()


def location_request_kb() -> ReplyKeyboardMarkup:
    """Reply keyboard asking Telegram for a map pin."""
    return ReplyKeyboardMarkup(
        keyboard=[[KeyboardButton(text="📍 지도에서 위치 보내기", request_location=True)]],
        resize_keyboard=True,
        one_time_keyboard=True,
    )
