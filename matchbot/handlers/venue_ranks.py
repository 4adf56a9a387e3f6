"""
Venue candidates inside the wizard: browse nearby free venues page by page
and pin them as 1st / 2nd / 3rd choice.

Searches go through the request sequencer, so pressing ◀️/▶️ quickly only
ever renders the latest page. Venues already ranked are excluded from every
search, and assigning a venue twice is refused by the draft store.
"""
import logging
from typing import List, Optional

from aiogram import F, Router
from aiogram.enums import ParseMode
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery
from sqlalchemy.ext.asyncio import AsyncSession

from matchbot.handlers.match_wizard import open_wizard, save_wizard, show_step
from matchbot.keyboards import (
    VenueCb, WizardCb, venue_detail_kb, venue_page_kb, venue_retry_kb,
)
from matchbot.services import (
    DuplicateVenueError, MatchDraftStore, RankOutOfRangeError, RequestSequencer,
    Superseded, VenueRankingSearch, VenueRef, VenueSearchUnavailable,
    available_slots, md,
)
from matchbot.states import MatchWizardStates

logger = logging.getLogger(__name__)
router = Router(name="venue_ranks")

PAGE_KEY = "venue_page"


async def _remember_page(state: FSMContext, items: List[VenueRef]) -> None:
    await state.update_data({PAGE_KEY: [v.model_dump(mode="json") for v in items]})


async def _find_on_page(state: FSMContext, venue_id: int) -> Optional[VenueRef]:
    data = await state.get_data()
    for raw in data.get(PAGE_KEY) or []:
        if raw.get("id") == venue_id:
            return VenueRef.model_validate(raw)
    return None


async def _show_page(
    callback: CallbackQuery,
    state: FSMContext,
    store: MatchDraftStore,
    venue_search: VenueRankingSearch,
    sequencer: RequestSequencer,
    page: int,
) -> None:
    draft = store.draft
    if draft.coordinates is None or draft.schedule is None:
        await callback.answer("먼저 주소와 일정을 입력해 주세요.", show_alert=True)
        return

    try:
        result = await sequencer.run(
            draft.draft_id,
            RequestSequencer.SEARCH,
            lambda: venue_search.search(
                draft.activity_type,
                draft.coordinates,
                draft.schedule.window(),
                excluding=store.excluded_venue_ids(),
                page=page,
            ),
        )
    except Superseded:
        await callback.answer()
        return
    except VenueSearchUnavailable as e:
        await callback.message.edit_text(f"⚠️ {e}", reply_markup=venue_retry_kb(page))
        await callback.answer()
        return

    await _remember_page(state, result.items)
    header = f"🏟 *주변 시설* · {draft.schedule.window().display}\n"
    if result.total:
        body = f"{result.total}곳이 비어 있습니다. 시설을 눌러 순위를 지정하세요."
    else:
        body = "조건에 맞는 빈 시설이 없습니다. 일정이나 주소를 바꿔 보세요."
    if not store.free_ranks():
        body += "\n_1~3순위가 모두 찼습니다. 바꾸려면 ✖️로 순위를 비우세요._"
    await callback.message.edit_text(
        f"{header}\n{body}",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=venue_page_kb(result, draft.venue_ranks),
    )
    await callback.answer()


# ── Entry / pages ─────────────────────────────────────────────────────────────

@router.callback_query(WizardCb.filter(F.action == "venues"), MatchWizardStates.step)
async def cq_open_venues(
    callback: CallbackQuery,
    state: FSMContext,
    venue_search: VenueRankingSearch,
    sequencer: RequestSequencer,
) -> None:
    store, _ = await open_wizard(state, callback.from_user.id)
    await state.set_state(MatchWizardStates.choose_venues)
    await _show_page(callback, state, store, venue_search, sequencer, page=1)


@router.callback_query(VenueCb.filter(F.action == "page"), MatchWizardStates.choose_venues)
async def cq_page(
    callback: CallbackQuery,
    callback_data: VenueCb,
    state: FSMContext,
    venue_search: VenueRankingSearch,
    sequencer: RequestSequencer,
) -> None:
    store, _ = await open_wizard(state, callback.from_user.id)
    await _show_page(callback, state, store, venue_search, sequencer, page=callback_data.page)


# ── Venue detail ──────────────────────────────────────────────────────────────

@router.callback_query(VenueCb.filter(F.action == "view"), MatchWizardStates.choose_venues)
async def cq_view(
    callback: CallbackQuery,
    callback_data: VenueCb,
    session: AsyncSession,
    state: FSMContext,
) -> None:
    venue = await _find_on_page(state, callback_data.vid)
    if venue is None:
        await callback.answer("목록이 갱신되었습니다. 다시 선택해 주세요.", show_alert=True)
        return
    store, _ = await open_wizard(state, callback.from_user.id)

    slots = await available_slots(session, venue.id, store.draft.schedule.day)
    if slots:
        slot_text = ", ".join(f"{s.start:%H:%M}~{s.end:%H:%M}" for s in slots)
    else:
        slot_text = "없음"
    distance = f"{venue.distance_km:.1f}km" if venue.distance_km is not None else "—"

    text = (
        f"🏟 *{md(venue.name)}*\n"
        f"📍 {md(venue.address)}\n"
        f"📏 {distance}\n\n"
        f"🗓 {store.draft.schedule.day:%m/%d} 빈 시간대: {slot_text}\n\n"
        f"몇 순위로 가계약할까요?"
    )
    await callback.message.edit_text(
        text,
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=venue_detail_kb(venue.id, store.free_ranks(), callback_data.page),
    )
    await callback.answer()


# ── Rank assignment ───────────────────────────────────────────────────────────

@router.callback_query(VenueCb.filter(F.action == "rank"), MatchWizardStates.choose_venues)
async def cq_rank(
    callback: CallbackQuery,
    callback_data: VenueCb,
    state: FSMContext,
    venue_search: VenueRankingSearch,
    sequencer: RequestSequencer,
) -> None:
    venue = await _find_on_page(state, callback_data.vid)
    if venue is None:
        await callback.answer("목록이 갱신되었습니다. 다시 선택해 주세요.", show_alert=True)
        return

    store, wizard = await open_wizard(state, callback.from_user.id)
    try:
        store.assign_rank(callback_data.rank, venue)
    except DuplicateVenueError as e:
        await callback.answer(f"⚠️ 이미 {e.rank}순위로 지정된 시설입니다.", show_alert=True)
        return
    except RankOutOfRangeError:
        await callback.answer("⚠️ 순위는 1~3만 지정할 수 있습니다.", show_alert=True)
        return
    await save_wizard(state, store, wizard)
    logger.info("Draft %s: venue %d ranked #%d", store.draft.draft_id, venue.id, callback_data.rank)
    await _show_page(callback, state, store, venue_search, sequencer, page=callback_data.page)


@router.callback_query(VenueCb.filter(F.action == "clear"), MatchWizardStates.choose_venues)
async def cq_clear(
    callback: CallbackQuery,
    callback_data: VenueCb,
    state: FSMContext,
    venue_search: VenueRankingSearch,
    sequencer: RequestSequencer,
) -> None:
    store, wizard = await open_wizard(state, callback.from_user.id)
    store.clear_rank(callback_data.rank)
    await save_wizard(state, store, wizard)
    await _show_page(callback, state, store, venue_search, sequencer, page=callback_data.page)


@router.callback_query(VenueCb.filter(F.action == "back"), MatchWizardStates.choose_venues)
async def cq_back(callback: CallbackQuery, session: AsyncSession, state: FSMContext) -> None:
    _, wizard = await open_wizard(state, callback.from_user.id)
    await state.update_data({PAGE_KEY: None})
    await state.set_state(MatchWizardStates.step)
    await show_step(callback, session, wizard)
    await callback.answer()
