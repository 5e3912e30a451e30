"""Tests for the message recording middleware."""

from datetime import datetime, timezone

import pytest
from aiogram.types import Chat, Message, User

from speechstats.middleware.stats_recorder import StatsRecorderMiddleware

GROUP = -1001


def make_message(message_id=1, chat_type="supergroup", is_bot=False, text="hi there", title="Alpha"):
    return Message(
        message_id=message_id,
        date=datetime(2024, 3, 15, 4, 0, tzinfo=timezone.utc),
        chat=Chat(id=GROUP, type=chat_type, title=title),
        from_user=User(id=7, is_bot=is_bot, first_name="Ann", last_name="Lee"),
        text=text,
    )


class Handler:
    def __init__(self):
        self.calls = 0

    async def __call__(self, event, data):
        self.calls += 1
        return "handled"


@pytest.mark.asyncio
async def test_group_message_is_recorded(engine):
    middleware = StatsRecorderMiddleware(engine, engine.config)
    handler = Handler()

    result = await middleware(handler, make_message(), {})

    assert result == "handled"
    assert handler.calls == 1
    entity = await engine.get_user_data(GROUP, 7)
    assert entity.nickname == "Ann Lee"
    assert entity.total_count == 1
    assert entity.total_words == 7
    stats = await engine.get_group_stats(GROUP)
    assert stats["groupName"] == "Alpha"


@pytest.mark.asyncio
async def test_private_and_bot_messages_are_ignored(engine):
    middleware = StatsRecorderMiddleware(engine, engine.config)
    handler = Handler()

    await middleware(handler, make_message(chat_type="private", title=None), {})
    await middleware(handler, make_message(message_id=2, is_bot=True), {})

    assert handler.calls == 2
    assert await engine.get_user_data(GROUP, 7) is None


@pytest.mark.asyncio
async def test_word_counting_can_be_disabled(engine):
    from dataclasses import replace

    middleware = StatsRecorderMiddleware(engine, replace(engine.config, count_words=False))

    await middleware(Handler(), make_message(), {})

    entity = await engine.get_user_data(GROUP, 7)
    assert entity.total_count == 1
    assert entity.total_words == 0


@pytest.mark.asyncio
async def test_group_title_retried_after_failed_save(engine, monkeypatch):
    middleware = StatsRecorderMiddleware(engine, engine.config)
    handler = Handler()
    save_group_info = engine.store.save_group_info

    async def locked(group_id, group_name):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(engine.store, "save_group_info", locked)
    await middleware(handler, make_message(), {})
    assert GROUP not in middleware._titles

    monkeypatch.setattr(engine.store, "save_group_info", save_group_info)
    await middleware(handler, make_message(message_id=2), {})

    assert middleware._titles[GROUP] == "Alpha"
    assert await engine.store.get_group_name(GROUP) == "Alpha"
    assert handler.calls == 2
