"""Reuse recently extracted deals instead of extracting again."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from deal_matcher.core.entities import Deal, Snapshot
from deal_matcher.core.interfaces import SnapshotStore

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = timedelta(hours=24)


def is_fresh(snapshot: Snapshot, now: datetime, window: timedelta = DEFAULT_WINDOW) -> bool:
    """True when the snapshot is at most ``window`` old at ``now``."""
    return now - snapshot.taken_at <= window


@dataclass
class CacheLookup:
    """Outcome of a cache lookup."""

    hit: bool
    reason: str
    snapshot: Optional[Snapshot] = None

    @property
    def deals(self) -> Optional[list[Deal]]:
        if not self.hit or self.snapshot is None:
            return None
        return list(self.snapshot.deals)


class SnapshotCache:
    """Read-only freshness check over the snapshot history."""

    def __init__(self, store: SnapshotStore, window: timedelta = DEFAULT_WINDOW) -> None:
        if window <= timedelta(0):
            raise ValueError("Cache window must be positive")
        self.store = store
        self.window = window

    def lookup(self, now: Optional[datetime] = None) -> CacheLookup:
        now = now or datetime.now(timezone.utc)

        try:
            snapshot = self.store.latest_successful()
        except Exception as e:
            logger.warning("Could not read snapshot history, treating as miss: %s", e)
            return CacheLookup(hit=False, reason=f"store error: {e}")

        if snapshot is None:
            return CacheLookup(hit=False, reason="no successful snapshot")

        if not snapshot.successful:
            return CacheLookup(hit=False, reason="latest snapshot failed", snapshot=snapshot)

        if not is_fresh(snapshot, now, self.window):
            age = now - snapshot.taken_at
            return CacheLookup(
                hit=False,
                reason=f"snapshot is {age.total_seconds() / 3600:.1f}h old",
                snapshot=snapshot,
            )

        return CacheLookup(hit=True, reason="fresh", snapshot=snapshot)

    def get_cached_deals(self, now: Optional[datetime] = None) -> Optional[list[Deal]]:
        """Deals of the latest fresh successful snapshot, or None on a miss."""
        return self.lookup(now).deals
