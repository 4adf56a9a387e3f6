"""
Published matches: the organizer's "my matches" view and the player join flow.

Joining is where the participant threshold fires. The trigger is idempotent,
but only the call that claims the firing notifies the organizer.
"""
import logging

from aiogram import Bot, F, Router
from aiogram.enums import ParseMode
from aiogram.types import CallbackQuery
from sqlalchemy.ext.asyncio import AsyncSession

from matchbot.keyboards import (
    MainMenuCb, MatchCb, back_to_main, cancel_confirm_kb, join_match_kb,
    my_matches_kb, open_matches_kb, organizer_match_kb,
)
from matchbot.services import (
    CascadeStatus, ProvisionalReservationCoordinator, ThresholdTrigger,
    cancel_match, ensure_holds_loaded, format_match_card, get_match,
    join_match, list_open_matches, list_organizer_matches, md,
    notify_cascade_result, notify_match_cancelled, notify_player_joined,
    threshold_reached,
)

logger = logging.getLogger(__name__)
router = Router(name="matches")


# ── Organizer: my matches ─────────────────────────────────────────────────────

@router.callback_query(MainMenuCb.filter(F.action == "my_matches"))
async def cq_my_matches(callback: CallbackQuery, session: AsyncSession) -> None:
    matches = await list_organizer_matches(session, callback.from_user.id)
    if not matches:
        await callback.message.edit_text(
            "📋 아직 만든 매치가 없습니다.\n➕ 매치 만들기로 시작해 보세요.",
            reply_markup=back_to_main(),
        )
    else:
        await callback.message.edit_text(
            "📋 *내 매치*\n\n확인할 매치를 선택하세요:",
            parse_mode=ParseMode.MARKDOWN,
            reply_markup=my_matches_kb(matches),
        )
    await callback.answer()


@router.callback_query(MatchCb.filter(F.action == "view"))
async def cq_view_match(
    callback: CallbackQuery,
    callback_data: MatchCb,
    session: AsyncSession,
    coordinator: ProvisionalReservationCoordinator,
) -> None:
    match = await get_match(session, callback_data.mid)
    if match is None or match.organizer_id != callback.from_user.id:
        await callback.answer("매치를 찾을 수 없습니다.", show_alert=True)
        return

    await ensure_holds_loaded(session, coordinator, match)
    text = format_match_card(match)
    lines = coordinator.status_lines(match.draft_id)
    if lines:
        text += "\n\n*가계약 현황*\n" + "\n".join(md(line) for line in lines)

    await callback.message.edit_text(
        text, parse_mode=ParseMode.MARKDOWN, reply_markup=organizer_match_kb(match),
    )
    await callback.answer()


@router.callback_query(MatchCb.filter(F.action == "cancel_ask"))
async def cq_cancel_ask(callback: CallbackQuery, callback_data: MatchCb, session: AsyncSession) -> None:
    match = await get_match(session, callback_data.mid)
    if match is None or match.organizer_id != callback.from_user.id:
        await callback.answer("매치를 찾을 수 없습니다.", show_alert=True)
        return
    await callback.message.edit_text(
        f"🗑 *{md(match.name)}* 매치를 취소할까요?\n"
        f"참가자 {match.participant_count - 1}명에게 알림이 가고, 가계약한 시설은 해제됩니다.",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=cancel_confirm_kb(match.id),
    )
    await callback.answer()


@router.callback_query(MatchCb.filter(F.action == "cancel_do"))
async def cq_cancel_do(
    callback: CallbackQuery,
    callback_data: MatchCb,
    session: AsyncSession,
    bot: Bot,
    coordinator: ProvisionalReservationCoordinator,
) -> None:
    match, err = await cancel_match(
        session, callback_data.mid, coordinator, organizer_id=callback.from_user.id,
    )
    if err:
        await callback.answer(f"⚠️ {err}", show_alert=True)
        return

    await session.commit()
    delivered = await notify_match_cancelled(bot, match, reason="주최자가 매치를 취소했습니다.")
    logger.info("Match %d cancelled by organizer, %d notifications sent", match.id, delivered)
    await callback.message.edit_text(
        f"❌ *{md(match.name)}* 매치를 취소했습니다.",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=back_to_main(),
    )
    await callback.answer()


# ── Players: join ─────────────────────────────────────────────────────────────

@router.callback_query(MainMenuCb.filter(F.action == "join_list"))
async def cq_join_list(callback: CallbackQuery, session: AsyncSession) -> None:
    matches = [
        m for m in await list_open_matches(session)
        if m.organizer_id != callback.from_user.id
    ]
    if not matches:
        await callback.message.edit_text(
            "🙋 지금 참가할 수 있는 매치가 없습니다.",
            reply_markup=back_to_main(),
        )
    else:
        await callback.message.edit_text(
            "🙋 *참가할 매치를 고르세요*",
            parse_mode=ParseMode.MARKDOWN,
            reply_markup=open_matches_kb(matches),
        )
    await callback.answer()


@router.callback_query(MatchCb.filter(F.action == "join_view"))
async def cq_join_view(callback: CallbackQuery, callback_data: MatchCb, session: AsyncSession) -> None:
    match = await get_match(session, callback_data.mid)
    if match is None:
        await callback.answer("매치를 찾을 수 없습니다.", show_alert=True)
        return
    await callback.message.edit_text(
        format_match_card(match),
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=join_match_kb(match.id),
    )
    await callback.answer()


@router.callback_query(MatchCb.filter(F.action == "join"))
async def cq_join(
    callback: CallbackQuery,
    callback_data: MatchCb,
    session: AsyncSession,
    bot: Bot,
    trigger: ThresholdTrigger,
    coordinator: ProvisionalReservationCoordinator,
) -> None:
    count, err = await join_match(session, callback_data.mid, callback.from_user.id)
    if err:
        await callback.answer(f"⚠️ {err}", show_alert=True)
        return
    await session.commit()

    match = await get_match(session, callback_data.mid)
    await callback.message.edit_text(
        f"✅ 참가 신청 완료!\n\n{format_match_card(match)}",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=back_to_main(),
    )
    await callback.answer()
    await notify_player_joined(bot, match, count)

    if threshold_reached(match, count):
        result, first = await trigger.on_threshold_reached(session, match.draft_id)
        await session.commit()
        if first:
            await notify_cascade_result(bot, match.organizer_id, match.name, result)
        if result is not None and result.status in (CascadeStatus.CONFIRMED, CascadeStatus.NO_VENUE):
            coordinator.forget(match.draft_id)
