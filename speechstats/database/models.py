from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Integer, String, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from .session import Base
from speechstats.utils import utc_now


class UserStatsColumns:
    """Running totals for one (group, user) pair."""
    group_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    nickname: Mapped[str] = mapped_column(String(255), default="")
    total_count: Mapped[int] = mapped_column(BigInteger, default=0)
    total_words: Mapped[int] = mapped_column(BigInteger, default=0)
    active_days: Mapped[int] = mapped_column(Integer, default=0)
    continuous_days: Mapped[int] = mapped_column(Integer, default=0)
    last_speaking_time: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)


class BucketColumns:
    """One period bucket: day (YYYY-MM-DD), week (YYYY-Www), month (YYYY-MM) or year (YYYY)."""
    group_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    period_key: Mapped[str] = mapped_column(String(16), primary_key=True)
    message_count: Mapped[int] = mapped_column(BigInteger, default=0)
    word_count: Mapped[int] = mapped_column(BigInteger, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)


# --- live rows ---

class UserStats(UserStatsColumns, Base):
    __tablename__ = "user_stats"
    __table_args__ = (
        Index("idx_user_stats_group_total_count", "group_id", "total_count"),
        Index("idx_user_stats_user", "user_id"),
    )


class DailyStats(BucketColumns, Base):
    __tablename__ = "daily_stats"
    __table_args__ = (Index("idx_daily_stats_group_key", "group_id", "period_key"),)


class WeeklyStats(BucketColumns, Base):
    __tablename__ = "weekly_stats"
    __table_args__ = (Index("idx_weekly_stats_group_key", "group_id", "period_key"),)


class MonthlyStats(BucketColumns, Base):
    __tablename__ = "monthly_stats"
    __table_args__ = (Index("idx_monthly_stats_group_key", "group_id", "period_key"),)


class YearlyStats(BucketColumns, Base):
    __tablename__ = "yearly_stats"
    __table_args__ = (Index("idx_yearly_stats_group_key", "group_id", "period_key"),)


# --- parked rows of archived groups (one snapshot per group) ---

class ArchivedUserStats(UserStatsColumns, Base):
    __tablename__ = "archived_user_stats"


class ArchivedDailyStats(BucketColumns, Base):
    __tablename__ = "archived_daily_stats"


class ArchivedWeeklyStats(BucketColumns, Base):
    __tablename__ = "archived_weekly_stats"


class ArchivedMonthlyStats(BucketColumns, Base):
    __tablename__ = "archived_monthly_stats"


class ArchivedYearlyStats(BucketColumns, Base):
    __tablename__ = "archived_yearly_stats"


# --- groups ---

class GroupInfo(Base):
    __tablename__ = "group_info"
    group_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    group_name: Mapped[str] = mapped_column(String(255), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)


class ArchivedGroup(Base):
    """Marker: the group's rows are parked and excluded from rankings and global stats."""
    __tablename__ = "archived_groups"
    group_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    group_name: Mapped[str] = mapped_column(String(255), default="")
    archived_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    last_activity_at: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
