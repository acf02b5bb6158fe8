"""Randomized request pacing.

Uniform inter-request timing is exactly what DataDome looks for, so every gap
is drawn fresh from a random source. The random source and the sleeper are
injectable so the controller can be tested without real elapsed time.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class PacingPolicy:
    """Produces randomized delays and waits them out."""

    def __init__(
        self,
        min_page_delay_ms: int = 2_000,
        max_page_delay_ms: int = 4_000,
        location_delay_floor_ms: int = 3_000,
        location_delay_jitter_ms: int = 2_000,
        rng: random.Random | None = None,
        sleeper: Sleeper | None = None,
    ):
        self.min_page_delay_ms = min_page_delay_ms
        self.max_page_delay_ms = max_page_delay_ms
        self.location_delay_floor_ms = location_delay_floor_ms
        self.location_delay_jitter_ms = location_delay_jitter_ms
        self._rng = rng or random.SystemRandom()
        self._sleep = sleeper or asyncio.sleep

    def next_delay(self, min_ms: int, max_ms: int) -> float:
        """Draw a delay in seconds, uniform within [min_ms, max_ms].

        Raises:
            ConfigurationError: If either bound is negative.
        """
        if min_ms < 0 or max_ms < 0:
            raise ConfigurationError(f"delay bounds must be >= 0, got ({min_ms}, {max_ms})")
        if min_ms > max_ms:
            min_ms, max_ms = max_ms, min_ms
        return self._rng.uniform(min_ms, max_ms) / 1000

    def page_delay(self) -> float:
        """Gap between two pages of the same location."""
        return self.next_delay(self.min_page_delay_ms, self.max_page_delay_ms)

    def location_gap(self) -> float:
        """Gap between two locations: a fixed floor plus random jitter."""
        return self.next_delay(
            self.location_delay_floor_ms,
            self.location_delay_floor_ms + self.location_delay_jitter_ms,
        )

    async def pause(self, seconds: float, cancel_event: asyncio.Event | None = None) -> bool:
        """Wait for the given delay.

        Returns:
            False if the cancel event fired before or during the wait.
        """
        if cancel_event is None:
            await self._sleep(seconds)
            return True
        if cancel_event.is_set():
            return False

        sleep_task = asyncio.ensure_future(self._sleep(seconds))
        cancel_task = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({sleep_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pending = [task for task in (sleep_task, cancel_task) if not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        if cancel_event.is_set():
            logger.info("Pacing interrupted by cancellation")
            return False
        return True
