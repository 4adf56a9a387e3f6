"""
Venue candidate keyboards — paginated search results and rank assignment.
"""
from typing import Dict, List

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from matchbot.keyboards.callbacks import VenueCb
from matchbot.services.draft_store import VenueRef
from matchbot.services.venue_search import VenuePage

RANK_EMOJI = {1: "🥇", 2: "🥈", 3: "🥉"}


def venue_page_kb(page: VenuePage, ranks: Dict[int, VenueRef]) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()

    for rank in sorted(ranks):
        builder.row(InlineKeyboardButton(
            text=f"{RANK_EMOJI[rank]} {ranks[rank].name} ✖️",
            callback_data=VenueCb(action="clear", rank=rank, page=page.page).pack(),
        ))

    for venue in page.items:
        builder.row(InlineKeyboardButton(
            text=f"🏟 {venue.name} · {venue.distance_km:.1f}km",
            callback_data=VenueCb(action="view", vid=venue.id, page=page.page).pack(),
        ))

    nav = []
    if page.has_prev:
        nav.append(InlineKeyboardButton(
            text="◀️", callback_data=VenueCb(action="page", page=page.page - 1).pack(),
        ))
    if page.total:
        nav.append(InlineKeyboardButton(text=f"{page.page}/{page.pages}", callback_data="noop"))
    if page.has_next:
        nav.append(InlineKeyboardButton(
            text="▶️", callback_data=VenueCb(action="page", page=page.page + 1).pack(),
        ))
    if nav:
        builder.row(*nav)

    builder.row(InlineKeyboardButton(text="🔙 위저드로", callback_data=VenueCb(action="back").pack()))
    return builder.as_markup()


def venue_detail_kb(venue_id: int, free_ranks: List[int], page: int) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    buttons = [
        InlineKeyboardButton(
            text=f"{RANK_EMOJI[rank]} {rank}순위로",
            callback_data=VenueCb(action="rank", vid=venue_id, rank=rank, page=page).pack(),
        )
        for rank in free_ranks
    ]
    if buttons:
        builder.row(*buttons)
    builder.row(InlineKeyboardButton(
        text="🔙 목록으로", callback_data=VenueCb(action="page", page=page).pack(),
    ))
    return builder.as_markup()


def venue_retry_kb(page: int = 1) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(InlineKeyboardButton(
        text="🔄 다시 시도", callback_data=VenueCb(action="page", page=page).pack(),
    ))
    builder.row(InlineKeyboardButton(text="🔙 위저드로", callback_data=VenueCb(action="back").pack()))
    return builder.as_markup()
