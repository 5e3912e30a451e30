"""Archival Controller - park and restore a group's statistics.

Archiving moves every live row of a group (totals and all four bucket
granularities) to the parked tables and records a marker; the group then
disappears from rankings and global figures and new messages for it are
ignored. Restoring moves the snapshot back and drops the marker.

Both moves run in one transaction. Cached views are dropped through the
``on_change`` callback after a successful move.

A message being recorded while the group is archived can still land in
the live tables if its write started before the marker was committed.
"""

import logging
from typing import Callable

from speechstats.services.stats_store import StatsStore

logger = logging.getLogger(__name__)


class ArchivalController:
    """
    Args:
        store: Persistent store
        on_change: Called with the group id after an archive or restore
    """

    def __init__(self, store: StatsStore, on_change: Callable[[int], None]):
        self.store = store
        self.on_change = on_change

    async def archive(self, group_id: int) -> bool:
        """Park the group's rows. False if already archived or on error."""
        try:
            archived = await self.store.archive_group_data(group_id)
        except Exception as e:
            logger.error(f"Failed to archive group {group_id}: {e}")
            return False

        if not archived:
            logger.warning(f"Group {group_id} is already archived")
            return False

        self.on_change(group_id)
        return True

    async def restore(self, group_id: int) -> bool:
        """Bring the parked snapshot back. False if not archived or on error."""
        try:
            restored = await self.store.restore_group_data(group_id)
        except Exception as e:
            logger.error(f"Failed to restore group {group_id}: {e}")
            return False

        if not restored:
            logger.warning(f"Group {group_id} has no archived snapshot")
            return False

        self.on_change(group_id)
        return True

    async def is_archived(self, group_id: int) -> bool:
        try:
            return await self.store.is_group_archived(group_id)
        except Exception as e:
            logger.error(f"Failed to check archive state of group {group_id}: {e}")
            return False
