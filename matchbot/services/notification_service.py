"""
Organizer and player notifications.

Message builders are plain functions (testable without a Bot); the
`notify_*` coroutines deliver them and log, never raise, when Telegram
refuses (user blocked the bot, chat gone).
"""
from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional

from aiogram import Bot
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramBadRequest, TelegramForbiddenError

from matchbot.models.models import ActivityType, Match, VenueStatus
from matchbot.services.provisional_service import (
    CascadeResult,
    CascadeStatus,
    RankOutcome,
)

logger = logging.getLogger(__name__)

_MD_SPECIAL = re.compile(r"([_*`\[])")


def md(text: str) -> str:
    """Escape user text for Telegram legacy Markdown."""
    return _MD_SPECIAL.sub(r"\\\1", text or "")


# ── Builders ──────────────────────────────────────────────────────────────────

def format_match_card(match: Match) -> str:
    when = f"{match.starts_at:%Y-%m-%d %H:%M}~{match.ends_at:%H:%M}"
    maximum = f" / 최대 {match.max_participants}명" if match.max_participants else ""
    venue = VenueStatus.LABELS.get(match.venue_status, match.venue_status)
    if match.confirmed_venue is not None:
        venue = f"{venue}: {md(match.confirmed_venue.name)}"
    return (
        f"{match.status_emoji} *{md(match.name)}*\n"
        f"{ActivityType.label(match.activity_type)}\n"
        f"📍 {md(match.address)}\n"
        f"🕒 {when}\n"
        f"👥 {match.participant_count}/{match.min_participants}명{maximum}\n"
        f"🏟 {venue}"
    )


def format_hold_outcomes(outcomes: Iterable[RankOutcome]) -> str:
    lines = []
    for o in outcomes:
        line = f"{o.rank}순위 · {md(o.venue_name)}: {o.state.label}"
        if not o.ok and o.reason:
            line += f" _({md(o.reason)})_"
        lines.append(line)
    if not lines:
        return "선택한 시설이 없습니다. 시설은 직접 조율해 주세요."
    return "\n".join(lines)


def format_cascade_result(match_name: str, result: CascadeResult) -> str:
    header = f"🏁 *{md(match_name)}* 최소 인원이 모였습니다!\n\n"
    if result.status == CascadeStatus.CONFIRMED:
        hold = result.confirmed
        return (
            header
            + f"✅ {hold.rank}순위 시설 *{md(hold.venue_name)}* 예약이 확정되었습니다.\n"
            + f"🕒 {hold.window.display}\n\n"
            + "나머지 가계약은 해제되었습니다."
        )
    if result.status == CascadeStatus.NO_VENUE:
        return (
            header
            + "⚠️ 확정된 시설이 없습니다. 모든 순위의 시설이 예약 불가 상태입니다.\n"
            + "매치는 그대로 진행되니 시설을 직접 조율해 주세요."
        )
    return header + "선택한 시설이 없어 시설 확정을 건너뜁니다."


# ── Delivery ──────────────────────────────────────────────────────────────────

async def _send(bot: Bot, chat_id: int, text: str) -> bool:
    try:
        await bot.send_message(chat_id=chat_id, text=text, parse_mode=ParseMode.MARKDOWN)
        return True
    except (TelegramForbiddenError, TelegramBadRequest) as e:
        logger.warning("Could not notify telegram_id=%d: %s", chat_id, e)
        return False


async def notify_cascade_result(
    bot: Bot,
    organizer_id: int,
    match_name: str,
    result: Optional[CascadeResult],
) -> None:
    if result is None:
        return
    await _send(bot, organizer_id, format_cascade_result(match_name, result))


async def notify_match_cancelled(
    bot: Bot,
    match: Match,
    reason: str = "시작 1시간 전까지 최소 인원이 모이지 않았습니다.",
) -> int:
    """
    Tell the organizer and every joined player that the match is off.
    Returns the number of delivered messages.
    """
    text = (
        f"❌ *{md(match.name)}* 매치가 취소되었습니다.\n"
        f"{reason}\n"
        f"가계약한 시설은 해제되었습니다.\n"
        f"🕒 {match.starts_at:%Y-%m-%d %H:%M}"
    )
    recipients: List[int] = [match.organizer_id] + [p.telegram_id for p in match.participants]
    delivered = 0
    for chat_id in recipients:
        if await _send(bot, chat_id, text):
            delivered += 1
    return delivered


async def notify_player_joined(bot: Bot, match: Match, participant_count: int) -> None:
    text = (
        f"🙋 *{md(match.name)}* 에 새 참가자가 들어왔습니다.\n"
        f"👥 현재 {participant_count}/{match.min_participants}명"
    )
    await _send(bot, match.organizer_id, text)
