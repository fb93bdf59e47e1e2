"""Tests for AdaptiveConcurrencyLimiter."""

import threading
import time

import pytest

from codebase_indexer.services.adaptive_limiter import AdaptiveConcurrencyLimiter


class TestAdaptiveConcurrencyLimiter:
    def test_invalid_bounds_rejected(self):
        with pytest.raises(ValueError):
            AdaptiveConcurrencyLimiter(min_limit=0, max_limit=4)
        with pytest.raises(ValueError):
            AdaptiveConcurrencyLimiter(min_limit=5, max_limit=4)

    def test_window_grows_on_success_up_to_max(self):
        limiter = AdaptiveConcurrencyLimiter(min_limit=1, max_limit=3)

        for _ in range(5):
            with limiter.slot():
                pass

        assert limiter.limit == 3

    def test_window_halves_on_failure_down_to_min(self):
        limiter = AdaptiveConcurrencyLimiter(min_limit=2, max_limit=16, initial_limit=16)

        for expected in (8, 4, 2, 2):
            with pytest.raises(RuntimeError):
                with limiter.slot():
                    raise RuntimeError("throttled")
            assert limiter.limit == expected

        assert limiter.get_stats().total_failures == 4

    def test_slow_success_shrinks_window(self):
        limiter = AdaptiveConcurrencyLimiter(min_limit=1, max_limit=8, initial_limit=8, latency_target=0.5)
        limiter.acquire()

        limiter.release(True, latency=2.0)

        assert limiter.limit == 4

    def test_acquire_times_out_when_window_full(self):
        limiter = AdaptiveConcurrencyLimiter(min_limit=1, max_limit=1)
        assert limiter.acquire()

        assert limiter.acquire(timeout=0.05) is False
        assert limiter.in_flight == 1

    def test_concurrency_never_exceeds_limit(self):
        limiter = AdaptiveConcurrencyLimiter(min_limit=2, max_limit=2)
        active = []
        peak = []
        lock = threading.Lock()

        def work():
            with limiter.slot():
                with lock:
                    active.append(1)
                    peak.append(len(active))
                time.sleep(0.01)
                with lock:
                    active.pop()

        threads = [threading.Thread(target=work) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert max(peak) <= 2
        assert limiter.get_stats().max_in_flight <= 2
        assert limiter.in_flight == 0

    def test_as_dict_reports_counters(self):
        limiter = AdaptiveConcurrencyLimiter(min_limit=1, max_limit=4)
        with limiter.slot():
            pass

        stats = limiter.as_dict()

        assert stats["total_calls"] == 1
        assert stats["failures"] == 0
        assert stats["limit"] == 2
