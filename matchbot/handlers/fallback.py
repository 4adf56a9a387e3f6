"""
Global fallback handler — included LAST in the dispatcher.

Catches any callback query that no other router handled.
Prevents infinite Telegram spinners from:
  - Stale keyboards after bot restart (MemoryStorage is wiped on redeploy)
  - Wizard buttons pressed outside the wizard
"""
from aiogram import Router
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramBadRequest
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery

from matchbot.keyboards import main_menu

router = Router(name="fallback")


@router.callback_query()
async def cq_fallback(callback: CallbackQuery, state: FSMContext) -> None:
    await callback.answer("⚠️ 만료된 버튼입니다. 처음부터 다시 시작해 주세요.", show_alert=True)
    await state.clear()
    try:
        await callback.message.edit_text(
            "🔄 *세션이 초기화되었습니다.* 메인 메뉴로 돌아가세요:",
            parse_mode=ParseMode.MARKDOWN,
            reply_markup=main_menu(),
        )
    except TelegramBadRequest:
        pass
