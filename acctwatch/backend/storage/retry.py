"""
storage/retry.py

Bounded exponential-backoff retry around a single cycle write.

Policy:
  - Up to ``max_retries`` attempts in total (first try included).
  - Every attempt resends the whole cycle; there is no partial retry.
  - Between attempts sleep backoff_delay(n): exponential growth from
    ``initial_delay`` with a random factor of ±``randomization``, capped
    at ``max_delay``.
  - When every attempt fails, WriteFailure is raised and the cycle's data
    is dropped. Nothing is queued for the next cycle.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import AbstractSet, Awaitable, Callable, Mapping

from ..metrics import METRICS
from ..models import TrafficCounters

logger = logging.getLogger(__name__)

WriteFn = Callable[[AbstractSet[str], Mapping[str, TrafficCounters]], Awaitable[int]]

DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY = 0.5
DEFAULT_MULTIPLIER = 1.5
DEFAULT_RANDOMIZATION = 0.5
DEFAULT_MAX_DELAY = 30.0


class WriteFailure(Exception):
    """All write attempts for a cycle failed; the cycle's data is lost."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"Write failed after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


def backoff_delay(
    attempt: int,
    initial: float = DEFAULT_INITIAL_DELAY,
    multiplier: float = DEFAULT_MULTIPLIER,
    randomization: float = DEFAULT_RANDOMIZATION,
    max_delay: float = DEFAULT_MAX_DELAY,
    rng: random.Random | None = None,
) -> float:
    """
    Seconds to wait after failed attempt number ``attempt`` (1-based).

    Examples (randomization=0):
        >>> backoff_delay(1, randomization=0)
        0.5
        >>> backoff_delay(3, randomization=0)
        1.125
    """
    base = initial * multiplier ** (attempt - 1)
    if randomization:
        r = rng or random
        base *= r.uniform(1 - randomization, 1 + randomization)
    return min(base, max_delay)


class RetryingSink:
    """
    Wraps a storage write function with the retry policy above.

    Args:
        write_fn:    async (local_addresses, counters) -> points accepted.
        max_retries: Total attempts per cycle, must be >= 1.
        sleep:       Awaitable sleep, injectable for tests.
        rng:         Random source for jitter, injectable for tests.
    """

    def __init__(
        self,
        write_fn: WriteFn,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
        multiplier: float = DEFAULT_MULTIPLIER,
        randomization: float = DEFAULT_RANDOMIZATION,
        max_delay: float = DEFAULT_MAX_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        if max_retries < 1:
            raise ValueError("Invalid max retries value. Expected positive value")
        self._write_fn = write_fn
        self.max_retries = max_retries
        self._initial_delay = initial_delay
        self._multiplier = multiplier
        self._randomization = randomization
        self._max_delay = max_delay
        self._sleep = sleep
        self._rng = rng

    async def write_cycle(
        self,
        local_addresses: AbstractSet[str],
        counters: Mapping[str, TrafficCounters],
    ) -> int:
        """
        Write the whole cycle, retrying on failure.

        Returns:
            Number of points accepted by the successful attempt.

        Raises:
            WriteFailure: once ``max_retries`` attempts have failed.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._write_fn(local_addresses, counters)
            except Exception as exc:
                METRICS.write_attempts_failed.inc()
                if attempt >= self.max_retries:
                    raise WriteFailure(attempt, exc) from exc
                delay = backoff_delay(
                    attempt,
                    initial=self._initial_delay,
                    multiplier=self._multiplier,
                    randomization=self._randomization,
                    max_delay=self._max_delay,
                    rng=self._rng,
                )
                logger.warning(
                    "Write attempt %d/%d failed (%s) — retrying in %.2fs",
                    attempt, self.max_retries, exc, delay,
                )
                await self._sleep(delay)
