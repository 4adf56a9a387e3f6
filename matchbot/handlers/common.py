"""
Common handlers: /start, main menu routing.
"""
import logging

from aiogram import F, Router
from aiogram.enums import ParseMode
from aiogram.filters import Command, CommandStart
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery, Message
from sqlalchemy.ext.asyncio import AsyncSession

from matchbot.keyboards import MainMenuCb, main_menu
from matchbot.services import upsert_user

logger = logging.getLogger(__name__)
router = Router(name="common")

MAIN_TEXT = "⚽️ *매치봇*\n\n원하는 메뉴를 선택하세요:"


# ── /start ────────────────────────────────────────────────────────────────────

@router.message(CommandStart())
async def cmd_start(message: Message, session: AsyncSession, state: FSMContext) -> None:
    tg = message.from_user
    await upsert_user(
        session,
        telegram_id=tg.id,
        first_name=tg.first_name,
        last_name=tg.last_name,
        username=tg.username,
    )
    await state.clear()

    text = (
        f"👋 {tg.first_name}님, *매치봇*에 오신 것을 환영합니다!\n\n"
        f"여기서 할 수 있는 일:\n"
        f"• ➕ 매치를 만들고 시설을 1~3순위로 가계약\n"
        f"• 🙋 다른 사람의 매치에 참가\n"
        f"• 📋 최소 인원이 모이면 시설이 자동으로 확정됩니다\n\n"
        f"메뉴를 선택하세요:"
    )
    await message.answer(text, parse_mode=ParseMode.MARKDOWN, reply_markup=main_menu())


@router.message(Command("menu"))
async def cmd_menu(message: Message, state: FSMContext) -> None:
    await state.clear()
    await message.answer(MAIN_TEXT, parse_mode=ParseMode.MARKDOWN, reply_markup=main_menu())


# ── Main menu callback ────────────────────────────────────────────────────────

@router.callback_query(MainMenuCb.filter(F.action == "main"))
async def cq_main_menu(callback: CallbackQuery, state: FSMContext) -> None:
    await state.clear()
    await callback.message.edit_text(MAIN_TEXT, parse_mode=ParseMode.MARKDOWN, reply_markup=main_menu())
    await callback.answer()


@router.callback_query(F.data == "noop")
async def cq_noop(callback: CallbackQuery) -> None:
    await callback.answer()
