import html
import logging

from aiogram import Router
from aiogram.filters import Command
from aiogram.types import Message

from speechstats.services.aggregation import AggregationEngine

logger = logging.getLogger(__name__)

router = Router()

TOP_LIMIT = 10

# /top argument -> ranking period
TOP_PERIODS = {
    "day": "daily",
    "week": "weekly",
    "month": "monthly",
    "year": "yearly",
    "total": "total",
}

PERIOD_TITLES = {
    "daily": "today",
    "weekly": "this week",
    "monthly": "this month",
    "yearly": "this year",
    "total": "all time",
}


def _is_group(msg: Message) -> bool:
    return msg.chat.type in ("group", "supergroup")


@router.message(Command("top"))
async def cmd_top(msg: Message, stats: AggregationEngine):
    """
    Leaderboard of the chat: /top [day|week|month|year|total].

    In private chat only the all-time board over every group is available.
    """
    parts = (msg.text or "").split()
    period = TOP_PERIODS.get(parts[1].lower(), "total") if len(parts) > 1 else "total"
    group_id = msg.chat.id if _is_group(msg) else None
    if group_id is None:
        period = "total"

    rows = await stats.get_ranking_data(group_id, period, limit=TOP_LIMIT)
    if not rows:
        return await msg.reply("No messages recorded for this period yet.")

    lines = [f"Top speakers, {PERIOD_TITLES[period]}:"]
    for row in rows:
        lines.append(f"{row.rank}. {html.escape(row.nickname)}: {row.count} msgs, {row.period_words} words")
    await msg.reply("\n".join(lines))


@router.message(Command("rank"))
async def cmd_rank(msg: Message, stats: AggregationEngine):
    """Position of the sender in today's and the all-time board."""
    if not _is_group(msg) or not msg.from_user:
        return await msg.reply("Use /rank in a group.")

    total = await stats.get_user_rank_data(msg.from_user.id, msg.chat.id, "total")
    if total is None:
        return await msg.reply("You have no recorded messages here yet.")
    today = await stats.get_user_rank_data(msg.from_user.id, msg.chat.id, "daily")

    text = f"{html.escape(total.nickname)}: #{total.rank} all time ({total.count} msgs)"
    if today is not None:
        text += f", #{today.rank} today ({today.count} msgs)"
    await msg.reply(text)


@router.message(Command("mystats"))
async def cmd_mystats(msg: Message, stats: AggregationEngine):
    if not _is_group(msg) or not msg.from_user:
        return await msg.reply("Use /mystats in a group.")

    entity = await stats.get_user_data(msg.chat.id, msg.from_user.id)
    if entity is None:
        return await msg.reply("You have no recorded messages here yet.")

    keys = stats.now_keys()
    today = entity.daily.get(keys.date)
    month = entity.monthly.get(keys.month)
    text = (
        f"Stats of {html.escape(entity.nickname)}:\n"
        f"Messages: {entity.total_count}\n"
        f"Words: {entity.total_words}\n"
        f"Today: {today.count if today else 0}\n"
        f"This month: {month.count if month else 0}\n"
        f"Active days: {entity.active_days}\n"
        f"Longest streak: {entity.continuous_days} days\n"
        f"Last message: {entity.last_speaking_time or '-'}"
    )
    await msg.reply(text)
