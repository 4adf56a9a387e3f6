"""
Match bot: match-configuration wizard with ranked provisional venue bookings.
Entry point: creates the bot, wires services + middleware, runs the
undersubscribed-match sweep and handles graceful shutdown.
"""
import asyncio
import logging
import signal
import sys

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramAPIError
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.types import ErrorEvent
from sqlalchemy.exc import SQLAlchemyError

from matchbot.config import settings
from matchbot.middlewares import DatabaseMiddleware, ServicesMiddleware
from matchbot.models.base import AsyncSessionFactory, Base, engine
from matchbot.services import (
    GeocodeResolver,
    ProvisionalReservationCoordinator,
    RequestSequencer,
    SqlReservationService,
    SqlVenueDirectory,
    VenueRankingSearch,
    default_providers,
    notify_match_cancelled,
    sweep_undersubscribed,
)

# ── Handlers ──────────────────────────────────────────────────────────────────
from matchbot.handlers.common import router as common_router
from matchbot.handlers.match_wizard import router as match_wizard_router
from matchbot.handlers.venue_ranks import router as venue_ranks_router
from matchbot.handlers.matches import router as matches_router
from matchbot.handlers.fallback import router as fallback_router

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


async def create_tables() -> None:
    """Create all database tables on startup."""
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ready.")
    except (SQLAlchemyError, OSError) as e:
        logger.critical(
            "❌ Cannot connect to database!\n"
            "   URL: %s\n"
            "   Error: %s\n\n"
            "   → Locally: start PostgreSQL or use SQLite "
            "(DATABASE_URL=sqlite+aiosqlite:///./matchbot.db)",
            settings.DATABASE_URL.split("@")[-1],   # hide credentials in log
            e,
        )
        sys.exit(1)


def build_coordinator() -> ProvisionalReservationCoordinator:
    return ProvisionalReservationCoordinator(SqlReservationService(AsyncSessionFactory))


def build_dispatcher(coordinator: ProvisionalReservationCoordinator) -> Dispatcher:
    dp = Dispatcher(storage=MemoryStorage())

    # ── Global error handler: callbacks are always answered ───────────────────
    @dp.errors()
    async def handle_error(event: ErrorEvent) -> None:
        logger.exception("Unhandled error: %s", event.exception)
        update = event.update
        if update.callback_query:
            try:
                await update.callback_query.answer(
                    "⚠️ 오류가 발생했습니다. 다시 시도해 주세요.", show_alert=True
                )
            except TelegramAPIError:
                pass

    if not settings.geocoding_providers_enabled:
        logger.warning("No geocoding provider configured: addresses need a map pin")

    # ── Global middlewares ────────────────────────────────────────────────────
    dp.update.middleware(DatabaseMiddleware(AsyncSessionFactory))
    dp.update.middleware(ServicesMiddleware(
        coordinator=coordinator,
        resolver=GeocodeResolver(default_providers()),
        venue_search=VenueRankingSearch(SqlVenueDirectory(AsyncSessionFactory)),
        sequencer=RequestSequencer(settings.SEARCH_DEBOUNCE_S),
    ))

    # ── Routers (order matters for handler priority) ──────────────────────────
    dp.include_router(common_router)
    dp.include_router(match_wizard_router)
    dp.include_router(venue_ranks_router)
    dp.include_router(matches_router)

    # !! Must be last: catches any callback not handled above !!
    dp.include_router(fallback_router)

    return dp


async def sweep_once(bot: Bot, coordinator: ProvisionalReservationCoordinator) -> int:
    """Cancel undersubscribed matches starting in about an hour and tell everyone."""
    async with AsyncSessionFactory() as session:
        cancelled = await sweep_undersubscribed(session, coordinator)
        await session.commit()

    for match in cancelled:
        await notify_match_cancelled(bot, match)
        coordinator.forget(match.draft_id)
    return len(cancelled)


async def run_sweeper(bot: Bot, coordinator: ProvisionalReservationCoordinator) -> None:
    while True:
        try:
            count = await sweep_once(bot, coordinator)
            if count:
                logger.info("Sweep cancelled %d undersubscribed matches", count)
        except SQLAlchemyError:
            logger.exception("Undersubscribed-match sweep failed")
        await asyncio.sleep(settings.SWEEP_INTERVAL_S)


async def main() -> None:
    logger.info("Starting match bot…")
    await create_tables()

    bot = Bot(
        token=settings.BOT_TOKEN,
        default=DefaultBotProperties(parse_mode=ParseMode.MARKDOWN),
    )
    coordinator = build_coordinator()
    dp = build_dispatcher(coordinator)

    # ── Graceful shutdown on SIGTERM (Docker) ─────────────────────────────────
    loop = asyncio.get_running_loop()

    def _handle_signal():
        logger.info("Received shutdown signal, stopping…")
        asyncio.ensure_future(dp.stop_polling())

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _handle_signal)
        except NotImplementedError:
            # Windows does not support add_signal_handler
            pass

    sweeper = asyncio.create_task(run_sweeper(bot, coordinator))
    try:
        logger.info("Bot is running. Press Ctrl+C to stop.")
        await dp.start_polling(
            bot,
            allowed_updates=dp.resolve_used_update_types(),
            handle_signals=False,
        )
    finally:
        logger.info("Shutting down…")
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
        await bot.session.close()
        await engine.dispose()
        logger.info("Shutdown complete.")


if __name__ == "__main__":
    asyncio.run(main())
