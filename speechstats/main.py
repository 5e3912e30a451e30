import asyncio
import logging

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.fsm.storage.memory import MemoryStorage

from speechstats.config import settings
from speechstats.database.session import init_db
from speechstats.handlers.statistics import router as statistics_router
from speechstats.logger import setup_logging
from speechstats.middleware.stats_recorder import StatsRecorderMiddleware
from speechstats.services.aggregation import AggregationEngine
from speechstats.services.stats_store import StatsStore

# Logger is configured in __main__
logger = logging.getLogger(__name__)


def build_dp(engine: AggregationEngine) -> Dispatcher:
    """Dispatcher with the recorder middleware and the statistics commands."""
    dp = Dispatcher(storage=MemoryStorage())
    dp.message.outer_middleware(StatsRecorderMiddleware(engine))
    dp.include_routers(statistics_router)
    # handlers receive the engine as the ``stats`` argument
    dp["stats"] = engine
    return dp


async def main():
    logger.info("=" * 60)
    logger.info("STARTING SPEECH STATS BOT")
    logger.info("=" * 60)
    logger.info(f"Time zone: {settings.timezone}")
    logger.info(f"Log level: {settings.log_level}")

    if not settings.bot_token:
        logger.error("TELEGRAM_BOT_TOKEN is not set!")
        raise RuntimeError("TELEGRAM_BOT_TOKEN is not set")

    logger.info("Initialising database...")
    db_engine, session_maker = await init_db()
    engine = AggregationEngine(StatsStore(session_maker), settings)
    logger.info("Database initialised")

    bot = Bot(token=settings.bot_token, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
    dp = build_dp(engine)

    try:
        await bot.delete_webhook(drop_pending_updates=True)
        bot_info = await bot.get_me()
        logger.info(f"Bot: @{bot_info.username} (id: {bot_info.id})")
        logger.info("Starting polling...")
        await dp.start_polling(bot, skip_updates=True)
    except Exception as e:
        logger.error(f"Fatal error: {type(e).__name__}: {e}")
        raise
    finally:
        logger.info("Shutting down...")
        cleared = engine.clear_all_cache()
        logger.debug(f"Dropped {cleared['total']} cached entries")
        await bot.session.close()
        await db_engine.dispose()
        logger.info("Bot session and database closed")


def run():
    setup_logging()
    asyncio.run(main())


if __name__ == "__main__":
    run()
