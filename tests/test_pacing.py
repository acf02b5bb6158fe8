"""Tests for randomized pacing."""

import asyncio
import random

import pytest

from estate_crawler.crawl.pacing import PacingPolicy
from estate_crawler.errors import ConfigurationError

from fakes import RecordingSleeper


class TestNextDelay:
    """Tests for delay generation."""

    def test_within_bounds(self):
        policy = PacingPolicy(rng=random.Random(42))
        for _ in range(200):
            delay = policy.next_delay(2_000, 4_000)
            assert 2.0 <= delay <= 4.0

    def test_consecutive_delays_differ(self):
        policy = PacingPolicy(rng=random.Random(7))
        delays = [policy.next_delay(2_000, 4_000) for _ in range(10)]
        assert len(set(delays)) == len(delays)

    def test_equal_bounds(self):
        policy = PacingPolicy(rng=random.Random(1))
        assert policy.next_delay(1_500, 1_500) == 1.5

    def test_reversed_bounds_swapped(self):
        policy = PacingPolicy(rng=random.Random(3))
        assert 1.0 <= policy.next_delay(3_000, 1_000) <= 3.0

    def test_negative_bounds_rejected(self):
        with pytest.raises(ConfigurationError):
            PacingPolicy().next_delay(-1, 100)

    def test_default_source_is_random(self):
        policy = PacingPolicy()
        assert 0.0 <= policy.next_delay(0, 10) <= 0.01


class TestLocationGap:
    """Tests for the larger inter-location gap."""

    def test_floor_plus_jitter(self):
        policy = PacingPolicy(location_delay_floor_ms=3_000, location_delay_jitter_ms=2_000, rng=random.Random(5))
        for _ in range(50):
            assert 3.0 <= policy.location_gap() <= 5.0

    def test_page_delay_uses_configured_bounds(self):
        policy = PacingPolicy(min_page_delay_ms=100, max_page_delay_ms=200, rng=random.Random(5))
        assert 0.1 <= policy.page_delay() <= 0.2


class TestPause:
    """Tests for interruptible waiting."""

    def test_uses_injected_sleeper(self):
        sleeper = RecordingSleeper()
        policy = PacingPolicy(sleeper=sleeper)

        assert asyncio.run(policy.pause(2.5)) is True
        assert sleeper.delays == [2.5]

    def test_completes_without_cancellation(self):
        sleeper = RecordingSleeper()
        policy = PacingPolicy(sleeper=sleeper)

        async def scenario():
            return await policy.pause(1.0, asyncio.Event())

        assert asyncio.run(scenario()) is True

    def test_already_cancelled(self):
        sleeper = RecordingSleeper()
        policy = PacingPolicy(sleeper=sleeper)

        async def scenario():
            event = asyncio.Event()
            event.set()
            return await policy.pause(1.0, event)

        assert asyncio.run(scenario()) is False
        assert sleeper.delays == []

    def test_cancelled_mid_wait(self):
        async def scenario():
            event = asyncio.Event()
            sleeper = RecordingSleeper(on_sleep=event.set)
            policy = PacingPolicy(sleeper=sleeper)
            return await policy.pause(30.0, event)

        assert asyncio.run(scenario()) is False
