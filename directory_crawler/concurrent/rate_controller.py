"""
Concurrency ceiling, adaptive shrinking on block signals, and retry backoff.
"""

import random
import threading
from typing import Any, Dict, Optional

from directory_crawler.utils.logging import get_logger
from .models import HARD_MAX_CONCURRENCY


logger = get_logger(__name__)


def clamp_concurrency(requested: Any, hard_max: int = HARD_MAX_CONCURRENCY, default: int = 10) -> int:
    """
    Worker count for a requested concurrency.

    Non-numeric or non-positive requests fall back to ``default``; the
    result never exceeds ``hard_max``.
    """
    try:
        value = int(float(requested))
    except (TypeError, ValueError):
        value = default
    if value < 1:
        value = default
    return max(1, min(hard_max, value))


def compute_backoff_delay(retry_count: int,
                          base: float = 1.0,
                          jitter: float = 0.3,
                          min_delay: float = 0.5,
                          max_delay: float = 60.0,
                          rng: Optional[random.Random] = None) -> float:
    """
    Exponential backoff with jitter.

    ``base * 2**retry_count * (1 ± jitter)``, floored at ``min_delay`` and
    capped at ``max_delay``.
    """
    rng = rng or random
    factor = 1.0 + rng.uniform(-jitter, jitter)
    delay = base * (2 ** max(0, retry_count)) * factor
    return min(max(delay, min_delay), max_delay)


class RateController:
    """
    Adaptive concurrency limit shared by all workers.

    Every fetch holds a permit. A block signal shrinks the limit by one
    (never under ``min_concurrency``); ``recovery_successes`` consecutive
    successes grow it back by one, never over the configured ceiling.
    """

    def __init__(self, max_concurrency: int, min_concurrency: int = 1, recovery_successes: int = 10):
        self.max_concurrency = max(1, max_concurrency)
        self.min_concurrency = max(1, min(min_concurrency, self.max_concurrency))
        self.recovery_successes = recovery_successes

        self._condition = threading.Condition()
        self._limit = self.max_concurrency
        self._active = 0
        self._success_streak = 0
        self._block_signals = 0

        logger.info(f"Rate controller initialized: max concurrency {self.max_concurrency}, "
                    f"min {self.min_concurrency}")

    @property
    def current_limit(self) -> int:
        with self._condition:
            return self._limit

    @property
    def active(self) -> int:
        with self._condition:
            return self._active

    def acquire(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for a permit.

        Returns:
            False if ``timeout`` passed without a permit
        """
        with self._condition:
            acquired = self._condition.wait_for(lambda: self._active < self._limit, timeout=timeout)
            if acquired:
                self._active += 1
            return acquired

    def release(self) -> None:
        with self._condition:
            if self._active > 0:
                self._active -= 1
            else:
                logger.warning("Permit released without being held")
            self._condition.notify()

    def record_success(self) -> None:
        with self._condition:
            self._success_streak += 1
            if self._success_streak >= self.recovery_successes and self._limit < self.max_concurrency:
                self._limit += 1
                self._success_streak = 0
                logger.debug(f"Concurrency limit raised to {self._limit}")
                self._condition.notify()

    def record_block(self) -> None:
        with self._condition:
            self._block_signals += 1
            self._success_streak = 0
            if self._limit > self.min_concurrency:
                self._limit -= 1
                logger.info(f"Block signal, concurrency limit lowered to {self._limit}")

    def get_statistics(self) -> Dict[str, Any]:
        with self._condition:
            return {
                "max_concurrency": self.max_concurrency,
                "current_limit": self._limit,
                "active": self._active,
                "block_signals": self._block_signals,
            }
