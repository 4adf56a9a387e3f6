"""
Main menu keyboards.
"""
from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from matchbot.keyboards.callbacks import MainMenuCb


def main_menu() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(
        InlineKeyboardButton(text="➕ 매치 만들기",  callback_data=MainMenuCb(action="create").pack()),
    )
    builder.row(
        InlineKeyboardButton(text="📋 내 매치",      callback_data=MainMenuCb(action="my_matches").pack()),
    )
    builder.row(
        InlineKeyboardButton(text="🙋 매치 참가",    callback_data=MainMenuCb(action="join_list").pack()),
    )
    return builder.as_markup()


def back_to_main() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(InlineKeyboardButton(text="🔙 메인 메뉴", callback_data=MainMenuCb(action="main").pack()))
    return builder.as_markup()
