"""
Published match keyboards — organizer's list/detail and the join flow.
"""
from typing import List

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from matchbot.keyboards.callbacks import MainMenuCb, MatchCb
from matchbot.models.models import Match, MatchStatus


def _match_button(match: Match, action: str) -> InlineKeyboardButton:
    return InlineKeyboardButton(
        text=f"{match.status_emoji} {match.starts_at:%m/%d %H:%M} {match.name}",
        callback_data=MatchCb(action=action, mid=match.id).pack(),
    )


def my_matches_kb(matches: List[Match]) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    for m in matches:
        builder.row(_match_button(m, "view"))
    builder.row(InlineKeyboardButton(text="🔙 메인 메뉴", callback_data=MainMenuCb(action="main").pack()))
    return builder.as_markup()


def organizer_match_kb(match: Match) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    if match.status != MatchStatus.CANCELLED:
        builder.row(InlineKeyboardButton(
            text="🗑 매치 취소", callback_data=MatchCb(action="cancel_ask", mid=match.id).pack(),
        ))
    builder.row(InlineKeyboardButton(text="🔙 내 매치", callback_data=MainMenuCb(action="my_matches").pack()))
    return builder.as_markup()


def cancel_confirm_kb(match_id: int) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(
        InlineKeyboardButton(text="✅ 취소합니다", callback_data=MatchCb(action="cancel_do", mid=match_id).pack()),
        InlineKeyboardButton(text="↩️ 아니요",    callback_data=MatchCb(action="view", mid=match_id).pack()),
    )
    return builder.as_markup()


def open_matches_kb(matches: List[Match]) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    for m in matches:
        builder.row(_match_button(m, "join_view"))
    builder.row(InlineKeyboardButton(text="🔙 메인 메뉴", callback_data=MainMenuCb(action="main").pack()))
    return builder.as_markup()


def join_match_kb(match_id: int) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(InlineKeyboardButton(text="🙋 참가하기", callback_data=MatchCb(action="join", mid=match_id).pack()))
    builder.row(InlineKeyboardButton(text="🔙 목록으로", callback_data=MainMenuCb(action="join_list").pack()))
    return builder.as_markup()
