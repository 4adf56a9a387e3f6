"""
Match creation wizard (organizer side).

Flow (steps depend on the activity, see services.wizard.step_sequence):
  ➕ create → category → [game settings] → location (name, address, venues)
            → schedule (date/time, participants) → equipment → [review]
            → publish → provisional holds placed ✅

The draft lives in FSM data under "draft", the 1-based position under "step".
"""
import logging
from datetime import datetime
from typing import Optional, Tuple

from aiogram import F, Router
from aiogram.enums import ParseMode
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery, InlineKeyboardMarkup, Message, ReplyKeyboardRemove
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from matchbot.keyboards import (
    ActivityCb, EquipmentCb, GameCb, MainMenuCb, WizardCb,
    cancel_input_kb, category_kb, equipment_kb, game_settings_kb,
    location_kb, location_request_kb, main_menu, review_kb, schedule_kb,
)
from matchbot.keyboards.venue_kb import RANK_EMOJI
from matchbot.models.models import ActivityType
from matchbot.services import (
    Coordinates, FsmDraftPersistence, GameMode, GeocodeResolver, MatchDraft,
    MatchDraftStore, ProvisionalReservationCoordinator, RequestSequencer,
    StepKind, Superseded, WizardController, WizardState,
    abandon_publish, format_hold_outcomes, last_match_for_activity, md,
    prefill_from_previous, publish_match, template_from_match,
)
from matchbot.states import MatchWizardStates
from matchbot.validators import (
    AddressData, MatchNameData, ParticipantsData, ScheduleData, first_error,
)

logger = logging.getLogger(__name__)
router = Router(name="match_wizard")


# ── Draft / wizard plumbing ───────────────────────────────────────────────────

async def open_wizard(state: FSMContext, organizer_id: int) -> Tuple[MatchDraftStore, WizardController]:
    store = await MatchDraftStore.open(FsmDraftPersistence(state), organizer_id)
    data = await state.get_data()
    return store, WizardController(store, current_step=data.get("step", 1))


async def save_wizard(state: FSMContext, store: MatchDraftStore, wizard: WizardController) -> None:
    await store.save()
    await state.update_data(step=wizard.current_step)


# ── Rendering ─────────────────────────────────────────────────────────────────

def _summary(draft: MatchDraft) -> str:
    lines = [f"🏅 종목: {ActivityType.label(draft.activity_type)}"]
    if draft.is_team_activity:
        mode = "팀전" if draft.game_mode == GameMode.TEAM else "개인 참가"
        lines.append(f"🎮 방식: {mode}")
    lines.append(f"✏️ 이름: {md(draft.name) or '—'}")
    place = md(draft.address) or "—"
    if draft.coordinates is not None:
        place += " 📌" if draft.manual_pin else " ✅"
    lines.append(f"📍 장소: {place}")
    if draft.schedule is not None:
        lines.append(f"🕒 일정: {draft.schedule.window().display}")
    maximum = f"~{draft.participants.max}" if draft.participants.max else "~"
    lines.append(f"👥 인원: {draft.participants.min}{maximum}명")
    if draft.venue_ranks:
        for rank, venue in draft.ranked_venues():
            lines.append(f"{RANK_EMOJI[rank]} {rank}순위: {md(venue.name)}")
    if draft.equipment:
        lines.append(f"🎒 준비물: {', '.join(draft.equipment)}")
    return "\n".join(lines)


def render_step(ws: WizardState, can_prefill: bool = False) -> Tuple[str, InlineKeyboardMarkup]:
    kind = ws.current_kind
    header = f"🧭 *매치 만들기* · {ws.current_step}/{ws.total_steps} {kind.title}\n\n"

    if kind == StepKind.CATEGORY:
        body = "어떤 종목의 매치를 만들까요?"
        kb = category_kb(ws, can_prefill)
    elif kind == StepKind.GAME_SETTINGS:
        body = "게임 방식과 모집할 포지션, 팀 밸런스 기준을 고르세요.\n_선택하지 않으면 기본값이 적용됩니다._"
        kb = game_settings_kb(ws)
    elif kind == StepKind.LOCATION:
        body = (
            "매치 이름과 주소를 입력하세요.\n"
            "주소를 찾지 못하면 지도에서 위치를 보내 주세요.\n"
            "주소가 확인되면 주변 시설을 1~3순위로 가계약할 수 있습니다."
        )
        kb = location_kb(ws)
    elif kind == StepKind.SCHEDULE:
        body = "매치 일정과 인원을 입력하세요."
        kb = schedule_kb(ws)
    elif kind == StepKind.EQUIPMENT:
        body = "참가자가 챙겨야 할 준비물을 고르세요. (선택)"
        kb = equipment_kb(ws)
    else:
        body = "입력한 내용을 확인하고 매치를 등록하세요."
        kb = review_kb(ws)

    return f"{header}{body}\n\n{_summary(ws.draft)}", kb


async def _can_prefill(session: AsyncSession, draft: MatchDraft) -> bool:
    if not draft.activity_type:
        return False
    return await last_match_for_activity(session, draft.organizer_id, draft.activity_type) is not None


async def show_step(
    callback: CallbackQuery,
    session: AsyncSession,
    wizard: WizardController,
) -> None:
    ws = wizard.state()
    can_prefill = ws.current_kind == StepKind.CATEGORY and await _can_prefill(session, ws.draft)
    text, kb = render_step(ws, can_prefill)
    await callback.message.edit_text(text, parse_mode=ParseMode.MARKDOWN, reply_markup=kb)


async def _answer_step(message: Message, session: AsyncSession, wizard: WizardController) -> None:
    ws = wizard.state()
    can_prefill = ws.current_kind == StepKind.CATEGORY and await _can_prefill(session, ws.draft)
    text, kb = render_step(ws, can_prefill)
    await message.answer(text, parse_mode=ParseMode.MARKDOWN, reply_markup=kb)


# ── Entry ─────────────────────────────────────────────────────────────────────

@router.callback_query(MainMenuCb.filter(F.action == "create"))
async def cq_create(callback: CallbackQuery, session: AsyncSession, state: FSMContext) -> None:
    await state.clear()
    store, wizard = await open_wizard(state, callback.from_user.id)
    await save_wizard(state, store, wizard)
    await state.set_state(MatchWizardStates.step)
    await show_step(callback, session, wizard)
    await callback.answer()


# ── Inline step actions ───────────────────────────────────────────────────────

@router.callback_query(ActivityCb.filter(), MatchWizardStates.step)
async def cq_activity(
    callback: CallbackQuery,
    callback_data: ActivityCb,
    session: AsyncSession,
    state: FSMContext,
) -> None:
    if not ActivityType.is_known(callback_data.activity):
        await callback.answer("지원하지 않는 종목입니다.", show_alert=True)
        return
    store, wizard = await open_wizard(state, callback.from_user.id)
    wizard.change_activity(callback_data.activity)
    await save_wizard(state, store, wizard)
    await show_step(callback, session, wizard)
    await callback.answer()


@router.callback_query(WizardCb.filter(F.action == "prefill"), MatchWizardStates.step)
async def cq_prefill(callback: CallbackQuery, session: AsyncSession, state: FSMContext) -> None:
    store, wizard = await open_wizard(state, callback.from_user.id)
    previous = await last_match_for_activity(session, store.draft.organizer_id, store.draft.activity_type)
    if previous is None:
        await callback.answer("불러올 이전 매치가 없습니다.", show_alert=True)
        return
    prefill_from_previous(store.draft, template_from_match(previous), datetime.now())
    await save_wizard(state, store, wizard)
    await show_step(callback, session, wizard)
    await callback.answer("♻️ 이전 매치 정보를 불러왔습니다.")


@router.callback_query(GameCb.filter(), MatchWizardStates.step)
async def cq_game_settings(
    callback: CallbackQuery,
    callback_data: GameCb,
    session: AsyncSession,
    state: FSMContext,
) -> None:
    store, wizard = await open_wizard(state, callback.from_user.id)
    if callback_data.action == "mode":
        wizard.change_game_mode(GameMode(callback_data.value))
    elif callback_data.action == "position":
        store.toggle_position(callback_data.value)
    elif callback_data.action == "balance":
        store.toggle_balance(callback_data.value)
    await save_wizard(state, store, wizard)
    await show_step(callback, session, wizard)
    await callback.answer()


@router.callback_query(EquipmentCb.filter(), MatchWizardStates.step)
async def cq_equipment(
    callback: CallbackQuery,
    callback_data: EquipmentCb,
    session: AsyncSession,
    state: FSMContext,
) -> None:
    store, wizard = await open_wizard(state, callback.from_user.id)
    items = ActivityType.equipment_for(store.draft.activity_type)
    if 0 <= callback_data.idx < len(items):
        store.toggle_equipment(items[callback_data.idx])
    await save_wizard(state, store, wizard)
    await show_step(callback, session, wizard)
    await callback.answer()


# ── Navigation ────────────────────────────────────────────────────────────────

@router.callback_query(WizardCb.filter(F.action == "prev"), MatchWizardStates.step)
async def cq_prev(callback: CallbackQuery, session: AsyncSession, state: FSMContext) -> None:
    store, wizard = await open_wizard(state, callback.from_user.id)
    wizard.prev()
    await save_wizard(state, store, wizard)
    await show_step(callback, session, wizard)
    await callback.answer()


@router.callback_query(WizardCb.filter(F.action == "next"), MatchWizardStates.step)
async def cq_next(
    callback: CallbackQuery,
    session: AsyncSession,
    state: FSMContext,
    coordinator: ProvisionalReservationCoordinator,
    sequencer: RequestSequencer,
) -> None:
    store, wizard = await open_wizard(state, callback.from_user.id)
    result = wizard.next()
    await save_wizard(state, store, wizard)

    if not result.ok:
        await show_step(callback, session, wizard)
        await callback.answer(f"⚠️ {result.reason}", show_alert=True)
        return

    if result.submitted:
        await _publish(callback, session, state, store, coordinator, sequencer)
        return

    await show_step(callback, session, wizard)
    await callback.answer()


async def _publish(
    callback: CallbackQuery,
    session: AsyncSession,
    state: FSMContext,
    store: MatchDraftStore,
    coordinator: ProvisionalReservationCoordinator,
    sequencer: RequestSequencer,
) -> None:
    match, outcomes = await publish_match(
        session, store, coordinator, organizer_name=callback.from_user.full_name,
    )
    try:
        await session.commit()
    except SQLAlchemyError:
        await abandon_publish(store, coordinator)
        raise
    sequencer.forget(store.draft.draft_id)
    await state.clear()

    text = (
        f"🎉 *{md(match.name)}* 매치가 등록되었습니다!\n\n"
        f"🕒 {match.starts_at:%Y-%m-%d %H:%M}~{match.ends_at:%H:%M}\n"
        f"👥 최소 {match.min_participants}명이 모이면 시설이 순위대로 확정됩니다.\n\n"
        f"*가계약 현황*\n{format_hold_outcomes(outcomes)}"
    )
    await callback.message.edit_text(text, parse_mode=ParseMode.MARKDOWN, reply_markup=main_menu())
    await callback.answer("✅ 등록 완료")


@router.callback_query(WizardCb.filter(F.action == "cancel"))
async def cq_cancel(
    callback: CallbackQuery,
    state: FSMContext,
    coordinator: ProvisionalReservationCoordinator,
    sequencer: RequestSequencer,
) -> None:
    store, _ = await open_wizard(state, callback.from_user.id)
    draft_id = store.draft.draft_id
    if coordinator.knows(draft_id):
        await coordinator.cancel(draft_id)
        coordinator.forget(draft_id)
    store.cancel()
    sequencer.forget(store.draft.draft_id)
    await store.discard()
    await state.clear()
    await callback.message.edit_text(
        "❌ 매치 만들기를 취소했습니다.\n\n메뉴를 선택하세요:",
        reply_markup=main_menu(),
    )
    await callback.answer()


# ── Text inputs ───────────────────────────────────────────────────────────────

_PROMPTS = {
    "name":         (MatchWizardStates.enter_name,         "✏️ 매치 이름을 입력하세요 (2~60자):"),
    "address":      (MatchWizardStates.enter_address,      "📍 매치 주소를 입력하세요.\n예: `서울 마포구 월드컵로 240`"),
    "schedule":     (MatchWizardStates.enter_schedule,     "🗓 일정을 입력하세요.\n예: `2026-10-20 18:00-20:00`\n_종료 시간이 시작보다 이르면 다음 날로 계산됩니다._"),
    "participants": (MatchWizardStates.enter_participants, "👥 인원을 입력하세요: `최소` 또는 `최소-최대`\n예: `22` 또는 `22-30`"),
}


@router.callback_query(WizardCb.filter(F.action == "input"), MatchWizardStates.step)
async def cq_input(callback: CallbackQuery, callback_data: WizardCb, state: FSMContext) -> None:
    prompt = _PROMPTS.get(callback_data.field)
    if prompt is None:
        await callback.answer()
        return
    next_state, text = prompt
    await state.set_state(next_state)
    await callback.message.edit_text(text, parse_mode=ParseMode.MARKDOWN, reply_markup=cancel_input_kb())
    await callback.answer()


@router.callback_query(WizardCb.filter(F.action == "back"))
async def cq_back_to_step(callback: CallbackQuery, session: AsyncSession, state: FSMContext) -> None:
    store, wizard = await open_wizard(state, callback.from_user.id)
    await state.set_state(MatchWizardStates.step)
    await show_step(callback, session, wizard)
    await callback.answer()


async def _back_to_step(message: Message, session: AsyncSession, state: FSMContext,
                        store: MatchDraftStore, wizard: WizardController) -> None:
    await save_wizard(state, store, wizard)
    await state.set_state(MatchWizardStates.step)
    await _answer_step(message, session, wizard)


@router.message(MatchWizardStates.enter_name)
async def msg_name(message: Message, session: AsyncSession, state: FSMContext) -> None:
    try:
        data = MatchNameData(name=message.text or "")
    except ValidationError as e:
        await message.answer(f"⚠️ {first_error(e)}", reply_markup=cancel_input_kb())
        return
    store, wizard = await open_wizard(state, message.from_user.id)
    store.set_name(data.name)
    await _back_to_step(message, session, state, store, wizard)


@router.message(MatchWizardStates.enter_address, F.location)
@router.message(MatchWizardStates.step, F.location)
async def msg_location_pin(message: Message, session: AsyncSession, state: FSMContext) -> None:
    store, wizard = await open_wizard(state, message.from_user.id)
    coords = Coordinates(lat=message.location.latitude, lng=message.location.longitude)
    store.set_location(store.draft.address or "지도에서 지정한 위치", coords, manual_pin=True)
    await message.answer("📌 지도 위치가 저장되었습니다.", reply_markup=ReplyKeyboardRemove())
    await _back_to_step(message, session, state, store, wizard)


@router.message(MatchWizardStates.enter_address)
async def msg_address(
    message: Message,
    session: AsyncSession,
    state: FSMContext,
    resolver: GeocodeResolver,
    sequencer: RequestSequencer,
) -> None:
    try:
        data = AddressData(address=message.text or "")
    except ValidationError as e:
        await message.answer(f"⚠️ {first_error(e)}", reply_markup=cancel_input_kb())
        return

    store, wizard = await open_wizard(state, message.from_user.id)
    try:
        coords: Optional[Coordinates] = await sequencer.run(
            store.draft.draft_id,
            RequestSequencer.GEOCODE,
            lambda: resolver.resolve(data.address),
        )
    except Superseded:
        return

    store.set_location(data.address, coords)

    if coords is None:
        await save_wizard(state, store, wizard)
        await message.answer(
            "🔎 주소를 찾지 못했습니다.\n아래 버튼으로 지도에서 위치를 보내 주세요.",
            reply_markup=location_request_kb(),
        )
        return
    await _back_to_step(message, session, state, store, wizard)


@router.message(MatchWizardStates.enter_schedule)
async def msg_schedule(message: Message, session: AsyncSession, state: FSMContext) -> None:
    try:
        schedule = ScheduleData(text=message.text or "", reference=datetime.now().date()).to_schedule()
    except (ValidationError, ValueError) as e:
        await message.answer(f"⚠️ {first_error(e)}", reply_markup=cancel_input_kb())
        return
    store, wizard = await open_wizard(state, message.from_user.id)
    store.set_schedule(schedule)
    await _back_to_step(message, session, state, store, wizard)


@router.message(MatchWizardStates.enter_participants)
async def msg_participants(message: Message, session: AsyncSession, state: FSMContext) -> None:
    store, wizard = await open_wizard(state, message.from_user.id)
    try:
        data = ParticipantsData.parse(message.text or "", store.draft.activity_type)
    except (ValidationError, ValueError) as e:
        await message.answer(f"⚠️ {first_error(e)}", reply_markup=cancel_input_kb())
        return
    store.set_participants(data.minimum, data.maximum)
    await _back_to_step(message, session, state, store, wizard)


@router.message(MatchWizardStates.step)
async def msg_step_hint(message: Message) -> None:
    """Catch accidental text while the wizard expects a button press."""
    await message.answer("👆 위 메시지의 버튼을 눌러 진행해 주세요.")
