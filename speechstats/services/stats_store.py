"""Persistent store for message statistics.

Thin query layer over SQLAlchemy: running totals per (group, user), period
buckets per granularity, group names and archive markers. Driver errors
propagate to the caller; the aggregation engine decides what a failure
means for the dashboard.
"""

import logging
from collections import defaultdict
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import and_, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from speechstats.database.models import (
    ArchivedDailyStats,
    ArchivedGroup,
    ArchivedMonthlyStats,
    ArchivedUserStats,
    ArchivedWeeklyStats,
    ArchivedYearlyStats,
    DailyStats,
    GroupInfo,
    MonthlyStats,
    UserStats,
    WeeklyStats,
    YearlyStats,
)
from speechstats.utils import utc_now

logger = logging.getLogger(__name__)


class Granularity(str, Enum):
    """Bucket granularities and the key format each one uses."""
    DAY = "day"       # YYYY-MM-DD
    WEEK = "week"     # YYYY-Www
    MONTH = "month"   # YYYY-MM
    YEAR = "year"     # YYYY


LIVE_BUCKETS = {
    Granularity.DAY: DailyStats,
    Granularity.WEEK: WeeklyStats,
    Granularity.MONTH: MonthlyStats,
    Granularity.YEAR: YearlyStats,
}

PARKED_BUCKETS = {
    Granularity.DAY: ArchivedDailyStats,
    Granularity.WEEK: ArchivedWeeklyStats,
    Granularity.MONTH: ArchivedMonthlyStats,
    Granularity.YEAR: ArchivedYearlyStats,
}

# live model -> parked model, user rows first
ARCHIVE_PAIRS = [(UserStats, ArchivedUserStats)] + [
    (LIVE_BUCKETS[g], PARKED_BUCKETS[g]) for g in Granularity
]

SORT_FIELDS = ("total_count", "total_words", "active_days", "continuous_days")


def _safe_sort_field(sort_field: str) -> str:
    return sort_field if sort_field in SORT_FIELDS else "total_count"


def _user_row(row: UserStats) -> Dict[str, Any]:
    return {
        "group_id": row.group_id,
        "user_id": row.user_id,
        "nickname": row.nickname,
        "total_count": row.total_count,
        "total_words": row.total_words,
        "active_days": row.active_days,
        "continuous_days": row.continuous_days,
        "last_speaking_time": row.last_speaking_time,
        "created_at": row.created_at,
    }


def _bucket_row(row) -> Dict[str, Any]:
    return {
        "group_id": row.group_id,
        "user_id": row.user_id,
        "period_key": row.period_key,
        "message_count": row.message_count,
        "word_count": row.word_count,
    }


def _column_values(row) -> Dict[str, Any]:
    return {column.key: getattr(row, column.key) for column in row.__table__.columns}


class StatsStore:
    """Query layer used by the aggregation engine.

    Args:
        session_maker: Factory returned by ``init_db``
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    # ------------------------------------------------------------------
    # Running totals
    # ------------------------------------------------------------------

    async def get_user_row(self, group_id: int, user_id: int) -> Optional[Dict[str, Any]]:
        async with self._session_maker() as session:
            row = await session.get(UserStats, (group_id, user_id))
            return _user_row(row) if row else None

    async def save_user_row(self, group_id: int, user_id: int, fields: Dict[str, Any]) -> None:
        """Insert or update the totals row of one user."""
        async with self._session_maker() as session:
            async with session.begin():
                await self._upsert_user_row(session, group_id, user_id, fields)

    async def save_user_stats(
        self,
        group_id: int,
        user_id: int,
        fields: Dict[str, Any],
        buckets: Dict[Granularity, Dict[str, Dict[str, Any]]],
    ) -> None:
        """Write the totals row and its buckets in one transaction.

        Either every row lands or none does, so totals never drift from the
        bucket sums.
        """
        async with self._session_maker() as session:
            async with session.begin():
                await self._upsert_user_row(session, group_id, user_id, fields)
                for granularity, rows in buckets.items():
                    await self._upsert_buckets(session, granularity, group_id, user_id, rows)

    @staticmethod
    async def _upsert_user_row(session: AsyncSession, group_id: int, user_id: int, fields: Dict[str, Any]) -> None:
        row = await session.get(UserStats, (group_id, user_id))
        if not row:
            row = UserStats(group_id=group_id, user_id=user_id, created_at=utc_now())
            session.add(row)
        row.nickname = fields.get("nickname") or ""
        row.total_count = fields.get("total_count") or 0
        row.total_words = fields.get("total_words") or 0
        row.active_days = fields.get("active_days") or 0
        row.continuous_days = fields.get("continuous_days") or 0
        row.last_speaking_time = fields.get("last_speaking_time")
        row.updated_at = utc_now()

    async def get_top_users(
        self,
        group_id: int,
        limit: Optional[int],
        sort_field: str = "total_count",
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """Users of one group ordered by ``sort_field`` desc, then user id asc."""
        column = getattr(UserStats, _safe_sort_field(sort_field))
        stmt = (
            select(UserStats)
            .where(UserStats.group_id == group_id)
            .order_by(column.desc(), UserStats.user_id.asc())
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session_maker() as session:
            result = await session.execute(stmt)
            return [_user_row(row) for row in result.scalars().all()]

    async def get_top_users_all_groups(
        self,
        limit: Optional[int],
        sort_field: str = "total_count",
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """Users aggregated over every non-archived group.

        ``active_days`` counts distinct day keys across groups rather than
        summing the per-group figures.
        """
        archived = select(ArchivedGroup.group_id)
        days = (
            select(
                DailyStats.user_id.label("user_id"),
                func.count(func.distinct(DailyStats.period_key)).label("active_days"),
            )
            .where(DailyStats.group_id.not_in(archived))
            .group_by(DailyStats.user_id)
            .subquery()
        )
        total_count = func.sum(UserStats.total_count)
        total_words = func.sum(UserStats.total_words)
        active_days = func.coalesce(days.c.active_days, 0)
        continuous_days = func.max(UserStats.continuous_days)
        sort_columns = {
            "total_count": total_count,
            "total_words": total_words,
            "active_days": active_days,
            "continuous_days": continuous_days,
        }
        stmt = (
            select(
                UserStats.user_id,
                func.max(UserStats.nickname).label("nickname"),
                total_count.label("total_count"),
                total_words.label("total_words"),
                active_days.label("active_days"),
                continuous_days.label("continuous_days"),
                func.max(UserStats.last_speaking_time).label("last_speaking_time"),
            )
            .outerjoin(days, days.c.user_id == UserStats.user_id)
            .where(UserStats.group_id.not_in(archived))
            .group_by(UserStats.user_id, days.c.active_days)
            .order_by(sort_columns[_safe_sort_field(sort_field)].desc(), UserStats.user_id.asc())
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session_maker() as session:
            result = await session.execute(stmt)
            return [dict(row._mapping) for row in result.all()]

    # ------------------------------------------------------------------
    # Period buckets
    # ------------------------------------------------------------------

    async def get_bucket(
        self, granularity: Granularity, group_id: int, user_id: int, key: str
    ) -> Optional[Dict[str, Any]]:
        model = LIVE_BUCKETS[Granularity(granularity)]
        async with self._session_maker() as session:
            row = await session.get(model, (group_id, user_id, key))
            return _bucket_row(row) if row else None

    async def get_buckets(
        self, granularity: Granularity, group_id: int, user_id: int, keys: Iterable[str]
    ) -> Dict[str, Dict[str, Any]]:
        """Buckets of one user for the given keys, in a single query."""
        keys = list(keys)
        if not keys:
            return {}
        model = LIVE_BUCKETS[Granularity(granularity)]
        stmt = select(model).where(
            model.group_id == group_id,
            model.user_id == user_id,
            model.period_key.in_(keys),
        )
        async with self._session_maker() as session:
            result = await session.execute(stmt)
            return {row.period_key: _bucket_row(row) for row in result.scalars().all()}

    async def save_bucket(
        self,
        granularity: Granularity,
        group_id: int,
        user_id: int,
        key: str,
        fields: Dict[str, Any],
    ) -> None:
        await self.save_buckets(granularity, group_id, user_id, {key: fields})

    async def save_buckets(
        self,
        granularity: Granularity,
        group_id: int,
        user_id: int,
        buckets: Dict[str, Dict[str, Any]],
    ) -> None:
        """Upsert several buckets of one user in one transaction."""
        if not buckets:
            return
        async with self._session_maker() as session:
            async with session.begin():
                await self._upsert_buckets(session, granularity, group_id, user_id, buckets)

    @staticmethod
    async def _upsert_buckets(
        session: AsyncSession,
        granularity: Granularity,
        group_id: int,
        user_id: int,
        buckets: Dict[str, Dict[str, Any]],
    ) -> None:
        model = LIVE_BUCKETS[Granularity(granularity)]
        now = utc_now()
        for key, fields in buckets.items():
            row = await session.get(model, (group_id, user_id, key))
            if not row:
                row = model(group_id=group_id, user_id=user_id, period_key=key, created_at=now)
                session.add(row)
            row.message_count = fields.get("message_count") or 0
            row.word_count = fields.get("word_count") or 0
            row.updated_at = now

    async def query_buckets_by_group_and_key(
        self, granularity: Granularity, group_id: int, key: str
    ) -> List[Dict[str, Any]]:
        """Every user's bucket of one group for one period, biggest first."""
        model = LIVE_BUCKETS[Granularity(granularity)]
        stmt = (
            select(
                model.user_id,
                model.message_count,
                model.word_count,
                UserStats.nickname,
                UserStats.last_speaking_time,
            )
            .outerjoin(
                UserStats,
                and_(UserStats.group_id == model.group_id, UserStats.user_id == model.user_id),
            )
            .where(model.group_id == group_id, model.period_key == key)
            .order_by(model.message_count.desc(), model.user_id.asc())
        )
        async with self._session_maker() as session:
            result = await session.execute(stmt)
            return [dict(row._mapping) for row in result.all()]

    async def get_group_series(
        self,
        granularity: Granularity,
        group_id: int,
        start_key: Optional[str] = None,
        end_key: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Per-period sums of one group in chronological order.

        With ``limit`` the newest ``limit`` periods are returned.
        """
        model = LIVE_BUCKETS[Granularity(granularity)]
        stmt = select(
            model.period_key.label("period_key"),
            func.sum(model.message_count).label("message_count"),
            func.sum(model.word_count).label("word_count"),
            func.count(func.distinct(model.user_id)).label("user_count"),
        ).where(model.group_id == group_id)
        stmt = self._range(stmt, model, start_key, end_key).group_by(model.period_key)
        return await self._series(stmt, model, limit)

    async def get_user_series(
        self,
        granularity: Granularity,
        group_id: int,
        user_id: int,
        start_key: Optional[str] = None,
        end_key: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Buckets of one user in chronological order (newest ``limit`` when given)."""
        model = LIVE_BUCKETS[Granularity(granularity)]
        stmt = select(
            model.period_key.label("period_key"),
            model.message_count.label("message_count"),
            model.word_count.label("word_count"),
        ).where(model.group_id == group_id, model.user_id == user_id)
        stmt = self._range(stmt, model, start_key, end_key)
        return await self._series(stmt, model, limit)

    @staticmethod
    def _range(stmt, model, start_key: Optional[str], end_key: Optional[str]):
        if start_key is not None:
            stmt = stmt.where(model.period_key >= start_key)
        if end_key is not None:
            stmt = stmt.where(model.period_key <= end_key)
        return stmt

    async def _series(self, stmt, model, limit: Optional[int]) -> List[Dict[str, Any]]:
        if limit is not None:
            stmt = stmt.order_by(model.period_key.desc()).limit(limit)
        else:
            stmt = stmt.order_by(model.period_key.asc())
        async with self._session_maker() as session:
            result = await session.execute(stmt)
            rows = [dict(row._mapping) for row in result.all()]
        if limit is not None:
            rows.reverse()
        return rows

    # ------------------------------------------------------------------
    # Groups and global batches
    # ------------------------------------------------------------------

    async def save_group_info(self, group_id: int, group_name: str) -> None:
        async with self._session_maker() as session:
            row = await session.get(GroupInfo, group_id)
            if not row:
                row = GroupInfo(group_id=group_id, created_at=utc_now())
                session.add(row)
            row.group_name = group_name or ""
            row.updated_at = utc_now()
            await session.commit()

    async def get_group_ids(self) -> List[int]:
        """Groups that currently have live rows."""
        async with self._session_maker() as session:
            result = await session.execute(select(UserStats.group_id).distinct())
            return [row[0] for row in result.all()]

    async def get_all_groups_users_batch(self) -> Dict[int, List[Dict[str, Any]]]:
        """Every live user row, grouped by group id, in one query."""
        stmt = select(UserStats).order_by(UserStats.group_id, UserStats.total_count.desc())
        grouped: Dict[int, List[Dict[str, Any]]] = defaultdict(list)
        async with self._session_maker() as session:
            result = await session.execute(stmt)
            for row in result.scalars().all():
                grouped[row.group_id].append(_user_row(row))
        return dict(grouped)

    async def get_all_groups_buckets_batch(
        self, granularity: Granularity, key: str
    ) -> Dict[int, List[Dict[str, Any]]]:
        """Buckets of every group for one period key, grouped by group id."""
        model = LIVE_BUCKETS[Granularity(granularity)]
        stmt = select(model).where(model.period_key == key)
        grouped: Dict[int, List[Dict[str, Any]]] = defaultdict(list)
        async with self._session_maker() as session:
            result = await session.execute(stmt)
            for row in result.scalars().all():
                grouped[row.group_id].append(_bucket_row(row))
        return dict(grouped)

    async def get_group_name(self, group_id: int) -> Optional[str]:
        async with self._session_maker() as session:
            row = await session.get(GroupInfo, group_id)
            return row.group_name if row else None

    async def get_all_groups_info_batch(self) -> Dict[int, str]:
        async with self._session_maker() as session:
            result = await session.execute(select(GroupInfo.group_id, GroupInfo.group_name))
            return {row.group_id: row.group_name for row in result.all()}

    async def get_global_totals(self) -> Tuple[int, int]:
        """(messages, words) summed over non-archived groups."""
        archived = select(ArchivedGroup.group_id)
        stmt = select(
            func.coalesce(func.sum(UserStats.total_count), 0),
            func.coalesce(func.sum(UserStats.total_words), 0),
        ).where(UserStats.group_id.not_in(archived))
        async with self._session_maker() as session:
            result = await session.execute(stmt)
            messages, words = result.one()
            return messages, words

    async def get_earliest_time(self):
        async with self._session_maker() as session:
            result = await session.execute(select(func.min(UserStats.created_at)))
            return result.scalar()

    # ------------------------------------------------------------------
    # Archival
    # ------------------------------------------------------------------

    async def is_group_archived(self, group_id: int) -> bool:
        async with self._session_maker() as session:
            return await session.get(ArchivedGroup, group_id) is not None

    async def get_archived_group_ids(self) -> Set[int]:
        async with self._session_maker() as session:
            result = await session.execute(select(ArchivedGroup.group_id))
            return {row[0] for row in result.all()}

    async def archive_group_data(self, group_id: int) -> bool:
        """Park every live row of the group and mark it archived.

        Refuses (returns False) when the group is already archived so the
        single parked snapshot is never overwritten.
        """
        async with self._session_maker() as session:
            async with session.begin():
                if await session.get(ArchivedGroup, group_id) is not None:
                    return False

                last_activity = await session.scalar(
                    select(func.max(UserStats.last_speaking_time)).where(UserStats.group_id == group_id)
                )
                info = await session.get(GroupInfo, group_id)

                moved = 0
                for live, parked in ARCHIVE_PAIRS:
                    await session.execute(delete(parked).where(parked.group_id == group_id))
                    moved += await self._move_rows(session, live, parked, group_id)

                session.add(ArchivedGroup(
                    group_id=group_id,
                    group_name=info.group_name if info else "",
                    archived_at=utc_now(),
                    last_activity_at=last_activity,
                ))
        logger.info(f"Group {group_id} archived ({moved} rows parked)")
        return True

    async def restore_group_data(self, group_id: int) -> bool:
        """Move the parked snapshot back to the live tables and drop the marker."""
        async with self._session_maker() as session:
            async with session.begin():
                marker = await session.get(ArchivedGroup, group_id)
                if marker is None:
                    return False

                moved = 0
                for live, parked in ARCHIVE_PAIRS:
                    await session.execute(delete(live).where(live.group_id == group_id))
                    moved += await self._move_rows(session, parked, live, group_id)

                await session.delete(marker)
        logger.info(f"Group {group_id} restored ({moved} rows back)")
        return True

    @staticmethod
    async def _move_rows(session: AsyncSession, source, target, group_id: int) -> int:
        result = await session.execute(select(source).where(source.group_id == group_id))
        rows = result.scalars().all()
        for row in rows:
            session.add(target(**_column_values(row)))
        await session.execute(delete(source).where(source.group_id == group_id))
        return len(rows)
