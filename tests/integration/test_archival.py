"""Integration tests for archiving and restoring group statistics."""

from datetime import datetime, timezone

import pytest

from speechstats.services.stats_store import Granularity

GROUP = -1001
OTHER_GROUP = -1002


async def seed(engine):
    for day in (13, 14, 15):
        moment = datetime(2024, 3, day, 4, tzinfo=timezone.utc)
        await engine.update_user_stats(GROUP, 1, "ann", 3, event_time=moment)
    await engine.update_user_stats(GROUP, 2, "bob", 5)
    await engine.update_user_stats(OTHER_GROUP, 3, "cid", 1)
    await engine.update_user_stats(OTHER_GROUP, 3, "cid", 1)
    await engine.update_group_info(GROUP, "Alpha")


async def snapshot(store, group_id, user_ids):
    data = {}
    for user_id in user_ids:
        data[user_id] = {"row": await store.get_user_row(group_id, user_id)}
        for granularity in Granularity:
            data[user_id][granularity.value] = await store.get_user_series(granularity, group_id, user_id)
    return data


@pytest.mark.asyncio
async def test_archived_group_leaves_rankings_and_global_stats(engine):
    await seed(engine)
    assert len(await engine.get_ranking_data(GROUP, "total")) == 2
    before = await engine.get_global_stats()
    assert before["totalGroups"] == 2

    assert await engine.clear_group_stats(GROUP) is True

    assert await engine.is_group_archived(GROUP) is True
    assert await engine.get_ranking_data(GROUP, "total") == []
    assert await engine.get_ranking_data(GROUP, "daily") == []
    assert await engine.get_user_data(GROUP, 1) is None
    assert await engine.get_group_stats(GROUP) is None

    stats = await engine.get_global_stats()
    assert stats["totalGroups"] == 1
    assert stats["totalMessages"] == 2
    assert stats["archivedGroups"] == 1
    assert [g["groupId"] for g in stats["groups"]] == [OTHER_GROUP]

    everyone = await engine.get_ranking_data("all", "total")
    assert [row.user_id for row in everyone] == [3]


@pytest.mark.asyncio
async def test_archive_then_restore_round_trip(engine, store):
    await seed(engine)
    before = await snapshot(store, GROUP, [1, 2])

    assert await engine.clear_group_stats(GROUP) is True
    assert await engine.restore_group_stats(GROUP) is True

    assert await engine.is_group_archived(GROUP) is False
    assert await snapshot(store, GROUP, [1, 2]) == before

    rows = await engine.get_ranking_data(GROUP, "total")
    assert [(row.user_id, row.count) for row in rows] == [(1, 3), (2, 1)]
    entity = await engine.get_user_data(GROUP, 1)
    assert entity.total_count == 3
    assert entity.continuous_days == 3


@pytest.mark.asyncio
async def test_messages_to_archived_group_are_not_recorded(engine, store):
    await seed(engine)
    await engine.clear_group_stats(GROUP)

    await engine.update_user_stats(GROUP, 1, "ann", 10)
    await engine.update_user_stats(GROUP, 9, "new", 10)

    assert await store.get_user_row(GROUP, 9) is None
    await engine.restore_group_stats(GROUP)
    entity = await engine.get_user_data(GROUP, 1)
    assert entity.total_count == 3
    assert entity.total_words == 9
    assert await engine.get_user_data(GROUP, 9) is None


@pytest.mark.asyncio
async def test_archive_twice_is_refused(engine, store):
    await seed(engine)

    assert await engine.clear_group_stats(GROUP) is True
    assert await engine.clear_group_stats(GROUP) is False

    await engine.restore_group_stats(GROUP)
    row = await store.get_user_row(GROUP, 1)
    assert row["total_count"] == 3


@pytest.mark.asyncio
async def test_restore_without_archive(engine):
    await seed(engine)

    assert await engine.restore_group_stats(GROUP) is False
    assert await engine.is_group_archived(GROUP) is False
    assert len(await engine.get_ranking_data(GROUP, "total")) == 2


@pytest.mark.asyncio
async def test_archive_drops_cached_views(engine):
    await seed(engine)
    await engine.get_user_data(GROUP, 1)
    await engine.get_ranking_data(GROUP, "total")
    await engine.get_global_stats()

    await engine.clear_group_stats(GROUP)

    assert engine.entity_cache.size() == 0
    assert engine.ranking_cache.size() == 0
    assert engine.global_cache.size() == 0
