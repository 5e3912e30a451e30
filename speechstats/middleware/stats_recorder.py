import logging
from typing import Any, Dict

from aiogram import BaseMiddleware
from aiogram import types

from speechstats.config import Settings, settings as default_settings
from speechstats.services.aggregation import AggregationEngine
from speechstats.utils import count_words

logger = logging.getLogger(__name__)

GROUP_CHAT_TYPES = ("group", "supergroup")


class StatsRecorderMiddleware(BaseMiddleware):
    """Feeds every group message into the statistics engine, then passes it on."""

    def __init__(self, engine: AggregationEngine, config: Settings = default_settings):
        self.engine = engine
        self.config = config
        # group id -> last title written to the store
        self._titles: Dict[int, str] = {}

    async def __call__(self, handler, event: types.Message, data: Dict[str, Any]):
        if self.config.record_messages and isinstance(event, types.Message):
            try:
                await self._record(event)
            except Exception as e:
                logger.error(f"[STATS] failed to record message {getattr(event, 'message_id', '?')}: {e}")

        return await handler(event, data)

    async def _record(self, event: types.Message) -> None:
        chat = event.chat
        user = event.from_user
        if not chat or chat.type not in GROUP_CHAT_TYPES:
            return
        if not user or user.is_bot:
            return

        if chat.title and self._titles.get(chat.id) != chat.title:
            if await self.engine.update_group_info(chat.id, chat.title):
                self._titles[chat.id] = chat.title

        text = event.text or event.caption or ""
        words = count_words(text) if self.config.count_words else 0
        nickname = user.full_name or user.username or str(user.id)

        await self.engine.update_user_stats(
            group_id=chat.id,
            user_id=user.id,
            nickname=nickname,
            word_count=words,
            event_time=event.date,
            event_id=f"{chat.id}:{event.message_id}",
        )
