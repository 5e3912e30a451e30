"""Aggregation Engine - message statistics rollups, rankings and dashboards.

Keeps per-user running totals and day/week/month/year buckets in step with
every recorded message, and serves rankings and global figures to the web
dashboard through four in-process caches:

- entity cache: assembled per-user views (cache-aside, dropped on write)
- group cache: per-group summaries
- ranking cache: leaderboard pages
- global cache: cross-group dashboard pages

Any write clears the ranking and global caches as a whole; a single new
message can reorder a leaderboard, so no per-row invalidation is tried.

Reads never raise: a failing store query is logged and turns into an
empty list, ``None`` or zeroed figures. The write path logs and drops the
event instead of blocking the message pipeline.
"""

import asyncio
import copy
import logging
import math
import time
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Union

import cachetools

from speechstats.config import Settings, settings as default_settings
from speechstats.services.archival import ArchivalController
from speechstats.services.stats_store import Granularity, StatsStore
from speechstats.services.ttl_cache import BoundedTTLCache
from speechstats.utils import (
    TimeKeys,
    derive_time_keys,
    get_zone,
    is_valid_month_key,
    longest_streak,
    recent_day_keys,
    recent_month_keys,
    recent_week_keys,
    to_int,
    utc_now,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Constants
# ============================================================================

ALL_GROUPS = "all"

# Windows loaded into an entity view
DAY_WINDOW = 30
WEEK_WINDOW = 12
MONTH_WINDOW = 12

# Days scanned back from today when looking for the longest streak
STREAK_SCAN_DAYS = 365

# Duplicate-delivery memory for the per-message log line
NOTIFY_MEMORY_SIZE = 200
NOTIFY_MEMORY_TTL = 600

TREND_MAX_POINTS = 100
DISTRIBUTION_DEFAULT_DAYS = 7
DISTRIBUTION_PERIODS = 12


class Period(str, Enum):
    """Ranking periods."""
    TOTAL = "total"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


PERIOD_GRANULARITY = {
    Period.DAILY: Granularity.DAY,
    Period.WEEKLY: Granularity.WEEK,
    Period.MONTHLY: Granularity.MONTH,
    Period.YEARLY: Granularity.YEAR,
}

# Trend / distribution periods
SERIES_GRANULARITY = {
    "daily": Granularity.DAY,
    "weekly": Granularity.WEEK,
    "monthly": Granularity.MONTH,
}


# ============================================================================
# Cache keys
# ============================================================================

class EntityKey(NamedTuple):
    group_id: int
    user_id: int


class RankingKey(NamedTuple):
    period: str
    group_id: Union[int, str]
    period_key: Optional[str]
    limit: int
    page: int


class GlobalKey(NamedTuple):
    page: int
    page_size: int


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class PeriodBucket:
    """Messages and words of one user in one period."""
    count: int = 0
    words: int = 0

    def add(self, words: int) -> None:
        self.count += 1
        self.words += words

    def fields(self) -> Dict[str, int]:
        return {"message_count": self.count, "word_count": self.words}


@dataclass
class UserStatEntity:
    """
    Running totals of one (group, user) pair plus its retained buckets.

    Attributes:
        group_id: Chat the statistics belong to
        user_id: Telegram user ID
        nickname: Last seen display name
        total_count: Messages ever recorded
        total_words: Words ever recorded
        active_days: Number of day buckets in the retained window
        continuous_days: Longest consecutive-day run in the retained window
        last_speaking_time: ``YYYY-MM-DD HH:MM:SS`` of the latest message
        daily / weekly / monthly / yearly: Buckets keyed by period key
    """
    group_id: int
    user_id: int
    nickname: str = ""
    total_count: int = 0
    total_words: int = 0
    active_days: int = 0
    continuous_days: int = 0
    last_speaking_time: Optional[str] = None
    daily: Dict[str, PeriodBucket] = field(default_factory=dict)
    weekly: Dict[str, PeriodBucket] = field(default_factory=dict)
    monthly: Dict[str, PeriodBucket] = field(default_factory=dict)
    yearly: Dict[str, PeriodBucket] = field(default_factory=dict)

    def buckets(self, granularity: Granularity) -> Dict[str, PeriodBucket]:
        return {
            Granularity.DAY: self.daily,
            Granularity.WEEK: self.weekly,
            Granularity.MONTH: self.monthly,
            Granularity.YEAR: self.yearly,
        }[Granularity(granularity)]

    def apply_message(self, nickname: str, words: int, keys: TimeKeys, today: date) -> None:
        """Roll one message into the totals and the four buckets of ``keys``."""
        self.total_count += 1
        self.total_words += words
        if nickname:
            self.nickname = nickname
        if not self.last_speaking_time or keys.datetime_str > self.last_speaking_time:
            self.last_speaking_time = keys.datetime_str

        for granularity, key in event_keys(keys).items():
            self.buckets(granularity).setdefault(key, PeriodBucket()).add(words)

        self.active_days = len(self.daily)
        self.continuous_days = longest_streak(self.daily.keys(), today, STREAK_SCAN_DAYS)

    def row_fields(self) -> Dict[str, Any]:
        return {
            "nickname": self.nickname,
            "total_count": self.total_count,
            "total_words": self.total_words,
            "active_days": self.active_days,
            "continuous_days": self.continuous_days,
            "last_speaking_time": self.last_speaking_time,
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RankingRow:
    """One leaderboard line; ``rank`` is 1-based."""
    user_id: int
    nickname: str
    count: int
    period_words: int
    rank: Optional[int]
    active_days: int = 0
    continuous_days: int = 0
    last_speaking_time: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def event_keys(keys: TimeKeys) -> Dict[Granularity, str]:
    return {
        Granularity.DAY: keys.date,
        Granularity.WEEK: keys.week,
        Granularity.MONTH: keys.month,
        Granularity.YEAR: keys.year,
    }


def _bucket_map(rows: Dict[str, Dict[str, Any]]) -> Dict[str, PeriodBucket]:
    return {
        key: PeriodBucket(to_int(row.get("message_count")), to_int(row.get("word_count")))
        for key, row in rows.items()
    }


def _active_count(buckets: List[Dict[str, Any]]) -> int:
    """Number of bucket rows with at least one message."""
    return sum(1 for bucket in buckets if to_int(bucket.get("message_count")) > 0)


def _percent_change(value: int, previous: Optional[int]) -> Optional[float]:
    if not previous:
        return None
    return round((value - previous) / previous * 100, 2)


def empty_global_stats(page_size: int) -> Dict[str, Any]:
    return {
        "totalGroups": 0,
        "totalUsers": 0,
        "totalMessages": 0,
        "totalWords": 0,
        "todayActive": 0,
        "monthActive": 0,
        "archivedGroups": 0,
        "groups": [],
        "currentPage": 1,
        "totalPages": 0,
        "pageSize": page_size,
        "earliestTime": None,
        "statsDurationHours": 0,
    }


# ============================================================================
# Aggregation Engine
# ============================================================================

class AggregationEngine:
    """
    Statistics engine shared by the bot and the web dashboard.

    Construct once at startup and pass it to whatever needs it.

    Args:
        store: Persistent store
        config: Cache sizes/TTLs, time zone and defaults
        clock: Returns the current aware datetime
        timer: Monotonic seconds used by the caches
    """

    def __init__(
        self,
        store: StatsStore,
        config: Settings = default_settings,
        clock: Callable[[], datetime] = utc_now,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.config = config
        self.clock = clock
        self.tz = get_zone(config.timezone)

        self.entity_cache = BoundedTTLCache(config.entity_cache_size, config.entity_cache_ttl, timer)
        self.group_cache = BoundedTTLCache(config.group_cache_size, config.group_cache_ttl, timer)
        self.ranking_cache = BoundedTTLCache(config.ranking_cache_size, config.ranking_cache_ttl, timer)
        self.global_cache = BoundedTTLCache(config.global_cache_size, config.global_cache_ttl, timer)
        # archived flags consulted on every write
        self.archived_cache = BoundedTTLCache(config.archived_cache_size, config.archived_cache_ttl, timer)

        self._logged_events: cachetools.TTLCache = cachetools.TTLCache(
            maxsize=NOTIFY_MEMORY_SIZE, ttl=NOTIFY_MEMORY_TTL, timer=timer
        )
        self.archival = ArchivalController(store, on_change=self.clear_cache)

    def now_keys(self) -> TimeKeys:
        return derive_time_keys(self.clock(), self.tz)

    @staticmethod
    def is_all_groups(group_id: Any) -> bool:
        return group_id is None or group_id == ALL_GROUPS

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def get_user_data(self, group_id: int, user_id: int) -> Optional[UserStatEntity]:
        """Entity view of one user, or ``None`` if never seen in the group."""
        try:
            entity = await self._load_entity(group_id, user_id)
            # callers get their own copy; the cached view stays intact
            return copy.deepcopy(entity)
        except Exception as e:
            logger.error(f"Failed to load stats of user {user_id} in group {group_id}: {e}")
            return None

    async def _load_entity(self, group_id: int, user_id: int) -> Optional[UserStatEntity]:
        key = EntityKey(group_id, user_id)
        cached = self.entity_cache.get(key)
        if cached is not None:
            return cached

        row = await self.store.get_user_row(group_id, user_id)
        if not row:
            return None

        entity = await self._assemble_entity(row, group_id, user_id)
        self.entity_cache.set(key, entity)
        return entity

    async def _assemble_entity(self, row: Dict[str, Any], group_id: int, user_id: int) -> UserStatEntity:
        today = self.now_keys().local.date()
        daily, weekly, monthly, yearly = await asyncio.gather(
            self.store.get_buckets(Granularity.DAY, group_id, user_id, recent_day_keys(today, DAY_WINDOW)),
            self.store.get_buckets(Granularity.WEEK, group_id, user_id, recent_week_keys(today, WEEK_WINDOW)),
            self.store.get_buckets(Granularity.MONTH, group_id, user_id, recent_month_keys(today, MONTH_WINDOW)),
            self.store.get_buckets(Granularity.YEAR, group_id, user_id, [str(today.year)]),
        )
        return UserStatEntity(
            group_id=group_id,
            user_id=user_id,
            nickname=row.get("nickname") or "",
            total_count=to_int(row.get("total_count")),
            total_words=to_int(row.get("total_words")),
            active_days=to_int(row.get("active_days")),
            continuous_days=to_int(row.get("continuous_days")),
            last_speaking_time=row.get("last_speaking_time"),
            daily=_bucket_map(daily),
            weekly=_bucket_map(weekly),
            monthly=_bucket_map(monthly),
            yearly=_bucket_map(yearly),
        )

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def update_user_stats(
        self,
        group_id: int,
        user_id: int,
        nickname: str,
        word_count: int = 0,
        event_time: Optional[datetime] = None,
        event_id: Optional[Any] = None,
        full_resync: bool = False,
    ) -> None:
        """
        Record one message of ``user_id`` in ``group_id``.

        Load (or start) the entity, roll the message into the totals and the
        day/week/month/year buckets of ``event_time``, persist, then drop the
        affected cache entries. ``full_resync`` rewrites every retained
        bucket instead of only the four touched ones.

        Failures are logged and the event is dropped.
        """
        try:
            if await self._is_archived_cached(group_id):
                logger.debug(f"Group {group_id} is archived, message of {user_id} not recorded")
                return

            keys = derive_time_keys(event_time or self.clock(), self.tz)
            words = max(0, to_int(word_count))

            current = await self._load_entity(group_id, user_id)
            if current is None:
                entity = UserStatEntity(group_id=group_id, user_id=user_id, nickname=nickname or "")
            else:
                # the cached view stays untouched until the write succeeds
                entity = copy.deepcopy(current)
                await self._fill_event_buckets(entity, keys)

            old_total = entity.total_count
            today = max(self.now_keys().local.date(), keys.local.date())
            entity.apply_message(nickname, words, keys, today)

            await self._persist(entity, keys, full_resync)
        except Exception as e:
            logger.error(f"Failed to update stats of user {user_id} in group {group_id}: {e}")
            self._invalidate_after_write(group_id, user_id)
            return

        self._invalidate_after_write(group_id, user_id)
        self._notify(entity, old_total, words, event_id, event_time)

    async def _fill_event_buckets(self, entity: UserStatEntity, keys: TimeKeys) -> None:
        """Load stored buckets for event keys outside the retained windows."""
        for granularity, key in event_keys(keys).items():
            buckets = entity.buckets(granularity)
            if key in buckets:
                continue
            stored = await self.store.get_bucket(granularity, entity.group_id, entity.user_id, key)
            if stored:
                buckets[key] = PeriodBucket(to_int(stored.get("message_count")), to_int(stored.get("word_count")))

    async def _persist(self, entity: UserStatEntity, keys: TimeKeys, full_resync: bool) -> None:
        """Totals row and touched buckets go to the store as one transaction."""
        payload = {}
        for granularity, key in event_keys(keys).items():
            buckets = entity.buckets(granularity)
            if full_resync:
                payload[granularity] = {k: bucket.fields() for k, bucket in buckets.items()}
            else:
                payload[granularity] = {key: buckets[key].fields()}
        await self.store.save_user_stats(entity.group_id, entity.user_id, entity.row_fields(), payload)

    def _invalidate_after_write(self, group_id: int, user_id: int) -> None:
        self.entity_cache.delete(EntityKey(group_id, user_id))
        self.ranking_cache.clear()
        self.global_cache.clear()
        self.group_cache.delete(group_id)

    def _notify(
        self,
        entity: UserStatEntity,
        old_total: int,
        words: int,
        event_id: Optional[Any],
        event_time: Optional[datetime],
    ) -> None:
        """Log the counter change once per delivered event."""
        if event_id is not None:
            log_key = ("event", event_id)
        elif event_time is not None:
            log_key = ("time", entity.group_id, entity.user_id, event_time)
        else:
            log_key = ("seq", entity.group_id, entity.user_id, entity.total_count, self.clock())

        if log_key in self._logged_events:
            return
        self._logged_events[log_key] = True

        word_info = f", words: {words}" if words > 0 else ""
        level = logging.INFO if self.config.stats_debug_log else logging.DEBUG
        logger.log(
            level,
            f"[STATS] {entity.nickname}({entity.user_id}) in group {entity.group_id}: "
            f"{old_total} -> {entity.total_count}{word_info}",
        )

    async def _is_archived_cached(self, group_id: int) -> bool:
        flag = self.archived_cache.get(group_id)
        if flag is None:
            flag = await self.store.is_group_archived(group_id)
            self.archived_cache.set(group_id, flag)
        return flag

    # ------------------------------------------------------------------
    # Rankings
    # ------------------------------------------------------------------

    def _period_key(self, period: Period, keys: TimeKeys, month_key: Optional[str] = None) -> str:
        if period is Period.DAILY:
            return keys.date
        if period is Period.WEEKLY:
            return keys.week
        if period is Period.MONTHLY:
            if month_key is not None and is_valid_month_key(month_key):
                return month_key
            return keys.month
        return keys.year

    async def get_ranking_data(
        self,
        group_id: Union[int, str, None],
        period: str = "total",
        limit: Optional[int] = None,
        page: int = 1,
        month_key: Optional[str] = None,
    ) -> List[RankingRow]:
        """
        Leaderboard page for a group (or every group for ``total``).

        Args:
            group_id: Group, or ``None``/``"all"`` for the cross-group total board
            period: ``total``, ``daily``, ``weekly``, ``monthly`` or ``yearly``
            limit: Rows per page
            page: 1-based page number
            month_key: ``YYYY-MM`` for a past month (monthly only)

        Returns:
            Rows sorted by count desc then user id asc; empty on error,
            unknown period or archived group
        """
        try:
            period = Period(period)
        except ValueError:
            return []
        limit = max(1, to_int(limit) or self.config.ranking_default_limit)
        page = max(1, to_int(page) or 1)
        offset = (page - 1) * limit
        all_groups = self.is_all_groups(group_id)

        try:
            if period is Period.TOTAL:
                cache_key = RankingKey(period.value, ALL_GROUPS if all_groups else group_id, None, limit, page)
                cached = self.ranking_cache.get(cache_key)
                if cached is not None:
                    return list(cached)

                if all_groups:
                    rows = await self.store.get_top_users_all_groups(limit, "total_count", offset)
                else:
                    if await self.store.is_group_archived(group_id):
                        return []
                    rows = await self.store.get_top_users(group_id, limit, "total_count", offset)
                result = [self._total_row(row, offset + i + 1) for i, row in enumerate(rows)]
            else:
                if all_groups:
                    return []
                period_key = self._period_key(period, self.now_keys(), month_key)
                cache_key = RankingKey(period.value, group_id, period_key, limit, page)
                cached = self.ranking_cache.get(cache_key)
                if cached is not None:
                    return list(cached)

                if await self.store.is_group_archived(group_id):
                    return []
                rows = await self.store.query_buckets_by_group_and_key(
                    PERIOD_GRANULARITY[period], group_id, period_key
                )
                page_rows = rows[offset:offset + limit]
                result = [self._bucket_row(row, offset + i + 1) for i, row in enumerate(page_rows)]

            self.ranking_cache.set(cache_key, tuple(result))
            return result
        except Exception as e:
            logger.error(f"Failed to build {period.value} ranking for group {group_id}: {e}")
            return []

    async def get_user_rank_data(
        self,
        user_id: int,
        group_id: Union[int, str, None],
        period: str = "total",
        month_key: Optional[str] = None,
    ) -> Optional[RankingRow]:
        """
        Ranking line of one user with its 1-based position.

        Reads the whole sorted set of the group (or of all groups for the
        cross-group total) to locate the user.
        """
        try:
            period = Period(period)
        except ValueError:
            return None
        all_groups = self.is_all_groups(group_id)

        try:
            if period is Period.TOTAL:
                if all_groups:
                    rows = await self.store.get_top_users_all_groups(None, "total_count")
                    for index, row in enumerate(rows):
                        if row["user_id"] == user_id:
                            return self._total_row(row, index + 1)
                    return None

                if await self.store.is_group_archived(group_id):
                    return None
                user_row = await self.store.get_user_row(group_id, user_id)
                if not user_row or to_int(user_row.get("total_count")) == 0:
                    return None
                rows = await self.store.get_top_users(group_id, None, "total_count")
                rank = next((i + 1 for i, row in enumerate(rows) if row["user_id"] == user_id), None)
                return self._total_row(user_row, rank)

            if all_groups:
                return None
            if await self.store.is_group_archived(group_id):
                return None
            period_key = self._period_key(period, self.now_keys(), month_key)
            rows = await self.store.query_buckets_by_group_and_key(
                PERIOD_GRANULARITY[period], group_id, period_key
            )
            index = next((i for i, row in enumerate(rows) if row["user_id"] == user_id), None)
            if index is None:
                return None
            bucket = rows[index]
            user_row = await self.store.get_user_row(group_id, user_id) or {}
            return RankingRow(
                user_id=user_id,
                nickname=bucket.get("nickname") or user_row.get("nickname") or str(user_id),
                count=to_int(bucket.get("message_count")),
                period_words=to_int(bucket.get("word_count")),
                rank=index + 1,
                active_days=to_int(user_row.get("active_days")),
                continuous_days=to_int(user_row.get("continuous_days")),
                last_speaking_time=bucket.get("last_speaking_time") or user_row.get("last_speaking_time"),
            )
        except Exception as e:
            logger.error(f"Failed to get {period.value} rank of user {user_id} in group {group_id}: {e}")
            return None

    @staticmethod
    def _total_row(row: Dict[str, Any], rank: Optional[int]) -> RankingRow:
        return RankingRow(
            user_id=row["user_id"],
            nickname=row.get("nickname") or str(row["user_id"]),
            count=to_int(row.get("total_count")),
            period_words=to_int(row.get("total_words")),
            rank=rank,
            active_days=to_int(row.get("active_days")),
            continuous_days=to_int(row.get("continuous_days")),
            last_speaking_time=row.get("last_speaking_time"),
        )

    @staticmethod
    def _bucket_row(row: Dict[str, Any], rank: int) -> RankingRow:
        return RankingRow(
            user_id=row["user_id"],
            nickname=row.get("nickname") or str(row["user_id"]),
            count=to_int(row.get("message_count")),
            period_words=to_int(row.get("word_count")),
            rank=rank,
            last_speaking_time=row.get("last_speaking_time"),
        )

    # ------------------------------------------------------------------
    # Global and group summaries
    # ------------------------------------------------------------------

    async def update_group_info(self, group_id: int, group_name: str) -> bool:
        """Remember the display name of a group. False if the store failed."""
        try:
            await self.store.save_group_info(group_id, group_name)
        except Exception as e:
            logger.error(f"Failed to save name of group {group_id}: {e}")
            return False
        self.group_cache.delete(group_id)
        self.global_cache.clear()
        return True

    async def get_group_ids(self) -> List[int]:
        try:
            return await self.store.get_group_ids()
        except Exception as e:
            logger.error(f"Failed to list groups: {e}")
            return []

    async def get_global_stats(self, page: int = 1, page_size: Optional[int] = None) -> Dict[str, Any]:
        """
        Dashboard figures over every non-archived group.

        Users, today's buckets, this month's buckets, group names and the
        archive list are each fetched with one query covering all groups and
        joined in memory.
        """
        page_size = max(1, to_int(page_size) or self.config.global_page_size)
        page = max(1, to_int(page) or 1)
        try:
            cache_key = GlobalKey(page, page_size)
            cached = self.global_cache.get(cache_key)
            if cached is not None:
                return copy.deepcopy(cached)

            keys = self.now_keys()
            users_by_group, today_by_group, month_by_group, names, archived_ids, totals = await asyncio.gather(
                self.store.get_all_groups_users_batch(),
                self.store.get_all_groups_buckets_batch(Granularity.DAY, keys.date),
                self.store.get_all_groups_buckets_batch(Granularity.MONTH, keys.month),
                self.store.get_all_groups_info_batch(),
                self.store.get_archived_group_ids(),
                self.store.get_global_totals(),
            )

            distinct_users = set()
            today_active = set()
            month_active = set()
            groups = []

            for group_id, users in users_by_group.items():
                if group_id in archived_ids or not users:
                    continue
                today_rows = today_by_group.get(group_id, [])
                month_rows = month_by_group.get(group_id, [])

                for user in users:
                    distinct_users.add(user["user_id"])
                for bucket in today_rows:
                    if to_int(bucket.get("message_count")) > 0:
                        today_active.add((group_id, bucket["user_id"]))
                for bucket in month_rows:
                    if to_int(bucket.get("message_count")) > 0:
                        month_active.add((group_id, bucket["user_id"]))

                groups.append({
                    "groupId": group_id,
                    "groupName": names.get(group_id) or f"Group {group_id}",
                    "userCount": len(users),
                    "totalMessages": sum(to_int(u.get("total_count")) for u in users),
                    "totalWords": sum(to_int(u.get("total_words")) for u in users),
                    "todayActive": _active_count(today_rows),
                    "monthActive": _active_count(month_rows),
                })

            groups.sort(key=lambda g: (-g["totalMessages"], g["groupId"]))
            start = (page - 1) * page_size

            earliest_time, duration_hours = await self._stats_duration()
            messages, words = totals
            result = {
                "totalGroups": len(groups),
                "totalUsers": len(distinct_users),
                "totalMessages": to_int(messages),
                "totalWords": to_int(words),
                "todayActive": len(today_active),
                "monthActive": len(month_active),
                "archivedGroups": len(archived_ids),
                "groups": groups[start:start + page_size],
                "currentPage": page,
                "totalPages": math.ceil(len(groups) / page_size),
                "pageSize": page_size,
                "earliestTime": earliest_time,
                "statsDurationHours": duration_hours,
            }
            self.global_cache.set(cache_key, result)
            return copy.deepcopy(result)
        except Exception as e:
            logger.error(f"Failed to build global stats: {e}")
            return empty_global_stats(page_size)

    async def _stats_duration(self):
        try:
            earliest = await self.store.get_earliest_time()
        except Exception as e:
            logger.error(f"Failed to read earliest stats time: {e}")
            return None, 0
        if earliest is None:
            return None, 0
        if earliest.tzinfo is None:
            earliest = earliest.replace(tzinfo=timezone.utc)
        hours = int((self.clock() - earliest).total_seconds() // 3600)
        return earliest.isoformat(), max(0, hours)

    async def get_group_stats(self, group_id: int) -> Optional[Dict[str, Any]]:
        """Summary of one group; ``None`` when archived, unknown or on error."""
        try:
            cached = self.group_cache.get(group_id)
            if cached is not None:
                return dict(cached)

            if await self.store.is_group_archived(group_id):
                return None
            keys = self.now_keys()
            users, today_rows, month_rows, group_name = await asyncio.gather(
                self.store.get_top_users(group_id, None, "total_count"),
                self.store.query_buckets_by_group_and_key(Granularity.DAY, group_id, keys.date),
                self.store.query_buckets_by_group_and_key(Granularity.MONTH, group_id, keys.month),
                self.store.get_group_name(group_id),
            )
            if not users:
                return None

            result = {
                "groupId": group_id,
                "groupName": group_name or f"Group {group_id}",
                "userCount": len(users),
                "totalMessages": sum(to_int(u.get("total_count")) for u in users),
                "totalWords": sum(to_int(u.get("total_words")) for u in users),
                "todayActive": _active_count(today_rows),
                "todayMessages": sum(to_int(b.get("message_count")) for b in today_rows),
                "monthActive": _active_count(month_rows),
                "monthMessages": sum(to_int(b.get("message_count")) for b in month_rows),
            }
            self.group_cache.set(group_id, result)
            return dict(result)
        except Exception as e:
            logger.error(f"Failed to build stats of group {group_id}: {e}")
            return None

    # ------------------------------------------------------------------
    # Time distribution and trends
    # ------------------------------------------------------------------

    def _day_range(self, start_date: Optional[str], end_date: Optional[str], days: int):
        today = self.now_keys().local.date()
        end = end_date or today.isoformat()
        start = start_date or (today - timedelta(days=days)).isoformat()
        return start, end

    async def get_time_distribution(
        self,
        group_id: int,
        kind: str = "daily",
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Per-period message/word sums of a group, oldest first."""
        try:
            granularity = SERIES_GRANULARITY.get(kind, Granularity.DAY)
            if granularity is Granularity.DAY:
                start, end = self._day_range(start_date, end_date, DISTRIBUTION_DEFAULT_DAYS)
                rows = await self.store.get_group_series(granularity, group_id, start, end)
            else:
                rows = await self.store.get_group_series(granularity, group_id, limit=DISTRIBUTION_PERIODS)
            return [
                {
                    "date": row["period_key"],
                    "message_count": to_int(row.get("message_count")),
                    "word_count": to_int(row.get("word_count")),
                }
                for row in rows
            ]
        except Exception as e:
            logger.error(f"Failed to get time distribution of group {group_id}: {e}")
            return []

    async def get_user_time_distribution(
        self,
        user_id: int,
        group_id: int,
        kind: str = "daily",
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Per-period message/word counts of one user, oldest first."""
        try:
            granularity = SERIES_GRANULARITY.get(kind, Granularity.DAY)
            if granularity is Granularity.DAY:
                start, end = self._day_range(start_date, end_date, DISTRIBUTION_DEFAULT_DAYS)
                rows = await self.store.get_user_series(granularity, group_id, user_id, start, end)
            else:
                rows = await self.store.get_user_series(granularity, group_id, user_id, limit=DISTRIBUTION_PERIODS)
            return [
                {
                    "date": row["period_key"],
                    "message_count": to_int(row.get("message_count")),
                    "word_count": to_int(row.get("word_count")),
                }
                for row in rows
            ]
        except Exception as e:
            logger.error(f"Failed to get time distribution of user {user_id} in group {group_id}: {e}")
            return []

    @staticmethod
    def _trend(rows: List[Dict[str, Any]], metric: str) -> List[Dict[str, Any]]:
        column = {"messages": "message_count", "words": "word_count", "users": "user_count"}.get(
            metric, "message_count"
        )
        result = []
        previous = None
        for row in rows:
            value = to_int(row.get(column))
            result.append({"date": row["period_key"], "value": value, "change": _percent_change(value, previous)})
            previous = value
        return result

    async def get_group_trend(
        self, group_id: int, period: str = "daily", days: int = 7, metric: str = "messages"
    ) -> List[Dict[str, Any]]:
        """
        Message (or word, or active-user) trend of a group.

        ``change`` is the percentage against the previous point, ``None``
        when that point is absent or zero. ``days`` is the number of days
        for the daily trend and the number of periods (1..100) otherwise.
        """
        try:
            granularity = SERIES_GRANULARITY.get(period)
            if granularity is None:
                return []
            days = to_int(days) or 7
            if granularity is Granularity.DAY:
                start, end = self._day_range(None, None, days)
                rows = await self.store.get_group_series(granularity, group_id, start, end)
            else:
                limit = min(max(days, 1), TREND_MAX_POINTS)
                rows = await self.store.get_group_series(granularity, group_id, limit=limit)
            return self._trend(rows, metric)
        except Exception as e:
            logger.error(f"Failed to get trend of group {group_id}: {e}")
            return []

    async def get_user_trend(
        self, user_id: int, group_id: int, period: str = "daily", days: int = 7, metric: str = "messages"
    ) -> List[Dict[str, Any]]:
        """Message or word trend of one user; see ``get_group_trend``."""
        try:
            granularity = SERIES_GRANULARITY.get(period)
            if granularity is None:
                return []
            days = to_int(days) or 7
            metric = "words" if metric == "words" else "messages"
            if granularity is Granularity.DAY:
                start, end = self._day_range(None, None, days)
                rows = await self.store.get_user_series(granularity, group_id, user_id, start, end)
            else:
                limit = min(max(days, 1), TREND_MAX_POINTS)
                rows = await self.store.get_user_series(granularity, group_id, user_id, limit=limit)
            return self._trend(rows, metric)
        except Exception as e:
            logger.error(f"Failed to get trend of user {user_id} in group {group_id}: {e}")
            return []

    # ------------------------------------------------------------------
    # Archival and cache control
    # ------------------------------------------------------------------

    async def clear_group_stats(self, group_id: int) -> bool:
        """Archive the group: its rows are parked and it drops out of every board."""
        return await self.archival.archive(group_id)

    async def restore_group_stats(self, group_id: int) -> bool:
        return await self.archival.restore(group_id)

    async def is_group_archived(self, group_id: int) -> bool:
        return await self.archival.is_archived(group_id)

    def clear_cache(self, group_id: int, user_id: Optional[int] = None) -> None:
        """Drop cached views of one user (or of the whole group) plus every board."""
        if user_id is not None:
            self.entity_cache.delete(EntityKey(group_id, user_id))
        else:
            self.entity_cache.delete_where(lambda key: key.group_id == group_id)
            self.archived_cache.delete(group_id)
        self.ranking_cache.clear()
        self.global_cache.clear()
        self.group_cache.delete(group_id)

    def clear_all_cache(self) -> Dict[str, int]:
        sizes = {
            "userCache": self.entity_cache.size(),
            "groupStatsCache": self.group_cache.size(),
            "rankingCache": self.ranking_cache.size(),
            "globalStatsCache": self.global_cache.size(),
        }
        for cache in (self.entity_cache, self.group_cache, self.ranking_cache,
                      self.global_cache, self.archived_cache):
            cache.clear()
        sizes["total"] = sum(sizes.values())
        logger.info(f"All stats caches cleared ({sizes['total']} entries)")
        return sizes
