"""Services package - statistics store, caches, aggregation and archival."""

from speechstats.services.aggregation import AggregationEngine, RankingRow, UserStatEntity
from speechstats.services.archival import ArchivalController
from speechstats.services.stats_store import Granularity, StatsStore
from speechstats.services.ttl_cache import BoundedTTLCache

__all__ = [
    "AggregationEngine",
    "ArchivalController",
    "BoundedTTLCache",
    "Granularity",
    "RankingRow",
    "StatsStore",
    "UserStatEntity",
]
