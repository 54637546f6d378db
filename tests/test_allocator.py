"""Reviewer allocation. Assignments are random, so properties are checked per call."""
import random

import pytest

from changedesk.services.allocator import ReviewerAllocator


@pytest.fixture
def allocator():
    return ReviewerAllocator(random.Random(1234))


def test_empty_roster_returns_none(allocator):
    for priority in ('low', 'medium', 'high', 'critical'):
        assert allocator.allocate(priority, []) is None


def test_critical_always_draws_from_first_bucket(allocator):
    roster = list(range(1, 10))
    seen = set()
    for _ in range(1000):
        plan = allocator.plan('critical', roster)
        assert len(plan.buckets[0]) == 3
        assert plan.pool == plan.buckets[0]
        assert plan.reviewer_id in plan.buckets[0]
        seen.add(plan.reviewer_id)
    # The shuffle moves everybody through the first bucket sooner or later
    assert seen == set(roster)


def test_high_shares_the_critical_bucket(allocator):
    for _ in range(200):
        plan = allocator.plan('high', list(range(1, 10)))
        assert plan.reviewer_id in plan.buckets[0]


def test_low_priority_draws_from_last_bucket(allocator):
    roster = ['R1', 'R2', 'R3', 'R4', 'R5', 'R6']
    for _ in range(500):
        plan = allocator.plan('low', roster)
        assert [len(b) for b in plan.buckets] == [2, 2, 2]
        assert plan.reviewer_id in plan.buckets[2]
        assert plan.reviewer_id not in plan.buckets[0] + plan.buckets[1]


def test_medium_priority_draws_from_middle_bucket(allocator):
    for _ in range(200):
        plan = allocator.plan('medium', ['R1', 'R2', 'R3', 'R4', 'R5', 'R6'])
        assert plan.reviewer_id in plan.buckets[1]


def test_buckets_are_a_partition_of_the_roster(allocator):
    roster = list(range(7))
    plan = allocator.plan('critical', roster)
    assert [len(b) for b in plan.buckets] == [3, 3, 1]
    assert sorted(plan.buckets[0] + plan.buckets[1] + plan.buckets[2]) == roster


def test_empty_bucket_falls_back_to_whole_roster(allocator):
    # One reviewer: buckets are [[r], [], []]
    assert allocator.allocate('medium', [42]) == 42
    assert allocator.allocate('low', [42]) == 42

    # Four reviewers: buckets of 2, 2 and 0
    for _ in range(100):
        plan = allocator.plan('low', [1, 2, 3, 4])
        assert plan.buckets[2] == []
        assert sorted(plan.pool) == [1, 2, 3, 4]


def test_unknown_priority_uses_full_roster_without_raising(allocator):
    assert allocator.allocate('urgent', [1, 2, 3]) in (1, 2, 3)


def test_roster_is_not_mutated(allocator):
    roster = [1, 2, 3, 4, 5, 6]
    allocator.allocate('critical', roster)
    assert roster == [1, 2, 3, 4, 5, 6]
