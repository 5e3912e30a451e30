"""Tests for the statistics commands."""

import pytest

from speechstats.handlers.statistics import cmd_mystats, cmd_rank, cmd_top

GROUP = -1001


class MockUser:
    def __init__(self, user_id):
        self.id = user_id


class MockMessage:
    """Just enough of a Message for the command handlers."""

    def __init__(self, text, user_id=1, chat_type="supergroup"):
        self.text = text
        self.from_user = MockUser(user_id)
        self.replies = []

        class Chat:
            id = GROUP
            type = chat_type

        self.chat = Chat()

    async def reply(self, text, **kwargs):
        self.replies.append(text)
        return text


async def seed(engine):
    for _ in range(3):
        await engine.update_user_stats(GROUP, 1, "ann <admin>", 2)
    await engine.update_user_stats(GROUP, 2, "bob", 1)


@pytest.mark.asyncio
async def test_top_lists_speakers(engine):
    await seed(engine)
    msg = MockMessage("/top day")

    await cmd_top(msg, engine)

    assert msg.replies == [
        "Top speakers, today:\n"
        "1. ann &lt;admin&gt;: 3 msgs, 6 words\n"
        "2. bob: 1 msgs, 1 words"
    ]


@pytest.mark.asyncio
async def test_top_with_no_data(engine):
    msg = MockMessage("/top")
    await cmd_top(msg, engine)
    assert msg.replies == ["No messages recorded for this period yet."]


@pytest.mark.asyncio
async def test_rank(engine):
    await seed(engine)
    msg = MockMessage("/rank", user_id=2)

    await cmd_rank(msg, engine)

    assert msg.replies == ["bob: #2 all time (1 msgs), #2 today (1 msgs)"]


@pytest.mark.asyncio
async def test_mystats(engine):
    await seed(engine)
    msg = MockMessage("/mystats", user_id=1)

    await cmd_mystats(msg, engine)

    reply = msg.replies[0]
    assert "Messages: 3" in reply
    assert "Words: 6" in reply
    assert "Today: 3" in reply
    assert "Longest streak: 1 days" in reply


@pytest.mark.asyncio
async def test_commands_need_a_group(engine):
    msg = MockMessage("/mystats", chat_type="private")
    await cmd_mystats(msg, engine)
    assert msg.replies == ["Use /mystats in a group."]
