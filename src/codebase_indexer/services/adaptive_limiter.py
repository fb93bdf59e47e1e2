"""
Adaptive concurrency limiter for outbound embedding requests.

The window of requests allowed in flight grows by one after each healthy
completion and is halved when a request fails, is throttled, or runs slower
than the latency target (additive increase, multiplicative decrease). The
limiter is independent of indexing and can gate any blocking call.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional

logger = logging.getLogger(__name__)


@dataclass
class LimiterStats:
    """Snapshot of limiter state."""

    limit: int
    in_flight: int
    max_in_flight: int
    total_calls: int
    total_failures: int
    decreases: int
    average_latency: float


class AdaptiveConcurrencyLimiter:
    """Thread-safe AIMD concurrency window.

    Usage:
        limiter = AdaptiveConcurrencyLimiter(min_limit=1, max_limit=8)

        with limiter.slot():
            provider.get_embeddings_batch(texts)
    """

    def __init__(
        self,
        min_limit: int = 1,
        max_limit: int = 8,
        initial_limit: Optional[int] = None,
        latency_target: Optional[float] = None,
    ):
        """Initialize limiter.

        Args:
            min_limit: Window never shrinks below this.
            max_limit: Window never grows above this.
            initial_limit: Starting window, defaults to ``min_limit``.
            latency_target: Seconds; slower successful calls shrink the window.
        """
        if min_limit < 1 or max_limit < min_limit:
            raise ValueError(
                f"Invalid limiter bounds: min_limit={min_limit}, max_limit={max_limit}"
            )
        self.min_limit = min_limit
        self.max_limit = max_limit
        self.latency_target = latency_target
        start = initial_limit if initial_limit is not None else min_limit
        self._limit = max(min_limit, min(max_limit, start))

        self._condition = threading.Condition()
        self._in_flight = 0
        self._max_in_flight = 0
        self._total_calls = 0
        self._total_failures = 0
        self._decreases = 0
        self._total_time = 0.0

    @property
    def limit(self) -> int:
        with self._condition:
            return self._limit

    @property
    def in_flight(self) -> int:
        with self._condition:
            return self._in_flight

    def acquire(self, timeout: Optional[float] = None) -> bool:
        """Block until a slot is free. Returns False if ``timeout`` elapsed."""
        with self._condition:
            acquired = self._condition.wait_for(
                lambda: self._in_flight < self._limit, timeout=timeout
            )
            if not acquired:
                return False
            self._in_flight += 1
            self._max_in_flight = max(self._max_in_flight, self._in_flight)
            self._total_calls += 1
            return True

    def release(self, success: bool, latency: float = 0.0) -> None:
        """Return a slot and adjust the window from the call's outcome."""
        with self._condition:
            self._in_flight -= 1
            self._total_time += latency
            slow = self.latency_target is not None and latency > self.latency_target
            if not success or slow:
                if not success:
                    self._total_failures += 1
                self._decrease()
            elif self._limit < self.max_limit:
                self._limit += 1
            self._condition.notify_all()

    def _decrease(self) -> None:
        new_limit = max(self.min_limit, self._limit // 2)
        if new_limit != self._limit:
            logger.debug(f"Concurrency window shrinking {self._limit} -> {new_limit}")
        self._limit = new_limit
        self._decreases += 1

    @contextmanager
    def slot(self) -> Iterator[None]:
        """Hold one slot for the duration of the block.

        Exceptions raised inside the block count as failures and propagate.
        """
        self.acquire()
        started = time.perf_counter()
        try:
            yield
        except BaseException:
            self.release(False, time.perf_counter() - started)
            raise
        else:
            self.release(True, time.perf_counter() - started)

    def get_stats(self) -> LimiterStats:
        with self._condition:
            completed = self._total_calls - self._in_flight
            return LimiterStats(
                limit=self._limit,
                in_flight=self._in_flight,
                max_in_flight=self._max_in_flight,
                total_calls=self._total_calls,
                total_failures=self._total_failures,
                decreases=self._decreases,
                average_latency=self._total_time / completed if completed else 0.0,
            )

    def as_dict(self) -> Dict[str, Any]:
        stats = self.get_stats()
        return {
            "limit": stats.limit,
            "in_flight": stats.in_flight,
            "max_concurrent": stats.max_in_flight,
            "total_calls": stats.total_calls,
            "failures": stats.total_failures,
            "avg_latency_ms": round(stats.average_latency * 1000, 1),
        }
