import random
from unittest.mock import MagicMock

from ntfy_sync.config import SchedulerConfig
from ntfy_sync.scheduler import PollScheduler

CONFIG = SchedulerConfig(min_gap_seconds=60, max_gap_seconds=300)


class Clock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestPollScheduler:
    def test_new_subscriptions_are_due(self) -> None:
        scheduler = PollScheduler(CONFIG, clock=Clock())
        assert scheduler.due(["a", "b"]) == ["a", "b"]
        assert scheduler.seconds_until_next() is None

    def test_not_due_before_min_gap(self) -> None:
        clock = Clock()
        scheduler = PollScheduler(CONFIG, clock=clock)
        scheduler.record_poll("a")
        clock.now += 59
        assert scheduler.due(["a"]) == []

    def test_due_after_max_gap(self) -> None:
        clock = Clock()
        scheduler = PollScheduler(CONFIG, clock=clock, rng=random.Random(7))
        scheduler.record_poll("a")
        clock.now += 300
        assert scheduler.due(["a"]) == ["a"]

    def test_gap_is_drawn_per_subscription(self) -> None:
        clock = Clock()
        rng = MagicMock()
        rng.uniform.side_effect = [100, 200]
        scheduler = PollScheduler(CONFIG, clock=clock, rng=rng)

        assert scheduler.record_poll("a") == 1_100
        assert scheduler.record_poll("b") == 1_200
        rng.uniform.assert_called_with(60, 300)
        assert scheduler.seconds_until_next() == 100

        clock.now += 150
        assert scheduler.due(["a", "b"]) == ["a"]
        assert scheduler.seconds_until_next() == 0

    def test_removed_subscriptions_are_forgotten(self) -> None:
        clock = Clock()
        scheduler = PollScheduler(CONFIG, clock=clock)
        scheduler.record_poll("a")
        assert scheduler.due([]) == []
        # Subscribing again starts over
        assert scheduler.due(["a"]) == ["a"]
