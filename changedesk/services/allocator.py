"""
Reviewer allocation by priority.

The roster is shuffled and cut into three contiguous buckets of
``ceil(n / 3)`` reviewers. Critical and high requests draw from the first
bucket, medium from the second, low from the third; an empty bucket falls
back to the whole shuffled roster. This spreads load, it does not make
assignments reproducible: two calls with the same input may differ.
"""
import logging
import math
import random
from typing import List, NamedTuple, Optional, Sequence

logger = logging.getLogger(__name__)

PRIORITY_BUCKET = {
    'critical': 0,
    'high': 0,
    'medium': 1,
    'low': 2,
}


class Allocation(NamedTuple):
    reviewer_id: Optional[int]
    pool: List[int]
    buckets: List[List[int]]


class ReviewerAllocator:

    def __init__(self, rng=None):
        self._rng = rng or random.Random()

    def partition(self, reviewer_ids: Sequence[int]) -> List[List[int]]:
        shuffled = list(reviewer_ids)
        self._rng.shuffle(shuffled)
        size = math.ceil(len(shuffled) / 3)
        return [shuffled[:size], shuffled[size:2 * size], shuffled[2 * size:]]

    def plan(self, priority, reviewer_ids: Sequence[int]) -> Allocation:
        if not reviewer_ids:
            return Allocation(None, [], [[], [], []])
        buckets = self.partition(reviewer_ids)
        shuffled = buckets[0] + buckets[1] + buckets[2]
        index = PRIORITY_BUCKET.get(priority)
        pool = buckets[index] if index is not None and buckets[index] else shuffled
        return Allocation(self._rng.choice(pool), pool, buckets)

    def allocate(self, priority, reviewer_ids: Sequence[int]) -> Optional[int]:
        """Pick one reviewer id for ``priority``, or None when nobody is on the roster."""
        allocation = self.plan(priority, reviewer_ids)
        if allocation.reviewer_id is None:
            logger.info('No active reviewers, %s request stays unassigned', priority)
        else:
            logger.debug('Allocated reviewer %s from a pool of %d for %s request',
                         allocation.reviewer_id, len(allocation.pool), priority)
        return allocation.reviewer_id
