"""Per-subscription background poll cadence."""

import logging
import random
import time
from typing import Callable, Dict, Iterable, List, Optional

from .config import SchedulerConfig

logger = logging.getLogger(__name__)


class PollScheduler:
    """
    Decides which subscriptions are due for a background poll.

    Each subscription gets its own next-due time, drawn uniformly between
    min_gap_seconds and max_gap_seconds after its last poll. Subscriptions
    created at the same moment therefore drift apart instead of hitting the
    server together. A subscription that was never polled is due at once.
    """

    def __init__(
        self,
        config: SchedulerConfig,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self._clock = clock
        self._random = rng or random.Random()
        self._next_due: Dict[str, float] = {}

    def due(self, subscription_ids: Iterable[str]) -> List[str]:
        """
        Return the ids that should be polled now, in the order given.

        Ids not passed in are forgotten, so an unsubscribed topic that comes
        back later starts over as due.
        """
        now = self._clock()
        ids = list(subscription_ids)
        for known in set(self._next_due) - set(ids):
            del self._next_due[known]
        return [sid for sid in ids if self._next_due.get(sid, now) <= now]

    def record_poll(self, subscription_id: str) -> float:
        """Schedule the next poll of a subscription; returns its due time."""
        gap = self._random.uniform(self.config.min_gap_seconds, self.config.max_gap_seconds)
        next_due = self._clock() + gap
        self._next_due[subscription_id] = next_due
        logger.debug(f"Next poll of {subscription_id} in {gap:.0f}s")
        return next_due

    def seconds_until_next(self) -> Optional[float]:
        """Time until the earliest scheduled poll, or None if nothing is scheduled."""
        if not self._next_due:
            return None
        return max(0.0, min(self._next_due.values()) - self._clock())
