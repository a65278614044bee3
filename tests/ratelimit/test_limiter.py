"""
Unit tests for the admission limiter (bucketed sliding window).

Deterministic tests drive a fake clock with the sweeper disabled; the
blocking scenarios run against the real monotonic clock.
"""

import asyncio
import threading
import time
from datetime import timedelta

import pytest

from registry_gateway.ratelimit.config import InvalidConfiguration, TimeUnit
from registry_gateway.ratelimit.limiter import AdmissionLimiter, configure
from registry_gateway.ratelimit.metrics import get_metrics_collector


@pytest.fixture
def limiter(clock):
    """3 requests per second, manual clock, no background sweep."""
    limiter = AdmissionLimiter(1.0, 3, clock=clock, start_sweeper=False, name="unit")
    yield limiter
    limiter.close()


def test_limiter_initialization(limiter):
    """Test that limiter initializes correctly."""
    status = limiter.get_status()

    assert limiter.limit == 3
    assert limiter.window_seconds == 1.0
    assert status["available"] == 3
    assert status["granted_in_window"] == 0
    assert status["sweeper_running"] is False


@pytest.mark.parametrize("limit", [0, -1, 2.5, True, "3"])
def test_invalid_limit(limit):
    """Test that non-positive or non-integer limits are rejected."""
    with pytest.raises(InvalidConfiguration):
        AdmissionLimiter(1.0, limit, start_sweeper=False)


@pytest.mark.parametrize("window", [0, -1.0, float("nan"), float("inf"), timedelta(0), "1s"])
def test_invalid_window(window):
    """Test that non-positive, non-finite or malformed windows are rejected."""
    with pytest.raises(InvalidConfiguration):
        AdmissionLimiter(window, 1, start_sweeper=False)


def test_configure_rejects_zero_limit():
    """Test that configure() fails fast on limit=0."""
    with pytest.raises(InvalidConfiguration):
        configure(TimeUnit.SECONDS, 0)


def test_configure_with_time_unit():
    """Test configuring the window with a TimeUnit."""
    limiter = configure(TimeUnit.MINUTES, 5, start_sweeper=False)
    assert limiter.window_seconds == 60.0
    assert limiter.limit == 5


def test_window_from_timedelta():
    """Test configuring the window with a timedelta."""
    limiter = AdmissionLimiter(timedelta(milliseconds=250), 1, start_sweeper=False)
    assert limiter.window_seconds == 0.25


def test_try_acquire_until_saturated(limiter):
    """Test that non-blocking admission stops at the limit."""
    for i in range(3):
        assert limiter.try_acquire() is True, f"Failed to acquire slot {i+1}"

    assert limiter.try_acquire() is False
    assert limiter.available() == 0
    assert get_metrics_collector().get_counter("admission_grants_total", {"limiter": "unit"}) == 3


def test_capacity_not_restored_inside_window(limiter, clock):
    """Test that capacity stays exhausted inside the window."""
    for _ in range(3):
        limiter.try_acquire()

    clock.advance(0.5)

    assert limiter.try_acquire() is False
    assert limiter.granted_in_window() == 3


def test_capacity_restored_after_window(limiter, clock):
    """Test that capacity returns once the window has passed."""
    for _ in range(3):
        limiter.try_acquire()

    clock.advance(1.2)

    assert limiter.available() == 3
    assert limiter.try_acquire() is True


def test_grants_age_out_individually(clock):
    """Test that each grant leaves the window on its own schedule."""
    limiter = AdmissionLimiter(1.0, 2, clock=clock, start_sweeper=False)

    assert limiter.try_acquire()
    clock.advance(0.5)
    assert limiter.try_acquire()
    assert limiter.try_acquire() is False

    # First grant has left the window, second has not
    clock.advance(0.7)
    assert limiter.granted_in_window() == 1
    assert limiter.try_acquire() is True
    assert limiter.try_acquire() is False


def test_time_until_available(limiter, clock):
    """Test the reported wait until the next free slot."""
    assert limiter.time_until_available() == 0.0

    for _ in range(3):
        limiter.try_acquire()

    assert 0.9 <= limiter.time_until_available() <= 1.15

    clock.advance(0.4)
    assert 0.5 <= limiter.time_until_available() <= 0.75


def test_sweep_evicts_stale_buckets(limiter, clock):
    """Test that sweep() drops stale buckets and updates the gauge."""
    limiter.try_acquire()
    clock.advance(0.3)
    limiter.try_acquire()

    assert limiter.sweep() == 0

    clock.advance(1.5)
    assert limiter.sweep() == 2
    assert limiter.get_status()["ledger_buckets"] == 0
    assert get_metrics_collector().get_gauge("admission_available_slots", {"limiter": "unit"}) == 3


def test_grants_in_same_bucket_share_ledger_entry(limiter, clock):
    """Test that grants close together share one ledger bucket."""
    limiter.try_acquire()
    clock.advance(0.01)
    limiter.try_acquire()

    status = limiter.get_status()
    assert status["granted_in_window"] == 2
    assert status["granted_total"] == 2
    assert status["ledger_buckets"] <= 2


def test_acquire_timeout_does_not_consume_grant():
    """Test that an abandoned blocking wait records nothing."""
    limiter = AdmissionLimiter(5.0, 1, name="timeout")

    try:
        assert limiter.acquire() is True

        start = time.monotonic()
        assert limiter.acquire(timeout=0.1) is False
        assert time.monotonic() - start >= 0.09

        status = limiter.get_status()
        assert status["granted_in_window"] == 1
        assert status["granted_total"] == 1

        collector = get_metrics_collector()
        assert collector.get_counter("admission_wait_abandoned_total", {"limiter": "timeout"}) == 1
        assert collector.get_counter("admission_throttled_total", {"limiter": "timeout"}) == 1
    finally:
        limiter.close()


def test_five_callers_three_slots():
    """limit=3 per second: three callers pass at once, two wait for the window."""
    limiter = AdmissionLimiter(1.0, 3)
    barrier = threading.Barrier(5)
    elapsed = []
    lock = threading.Lock()
    start = time.monotonic()

    def caller():
        barrier.wait()
        limiter.acquire()
        with lock:
            elapsed.append(time.monotonic() - start)

    threads = [threading.Thread(target=caller) for _ in range(5)]
    try:
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)
    finally:
        limiter.close()

    elapsed.sort()
    assert len(elapsed) == 5
    assert all(e < 0.5 for e in elapsed[:3])
    assert all(e >= 0.99 for e in elapsed[3:])


def test_second_caller_waits_for_first_grant_to_expire():
    """limit=1 per second: B, arriving 0.1s after A, is admitted ~1s after A."""
    limiter = AdmissionLimiter(1.0, 1)

    try:
        limiter.acquire()
        granted_a = time.monotonic()

        time.sleep(0.1)
        limiter.acquire()
        granted_b = time.monotonic()
    finally:
        limiter.close()

    assert granted_b - granted_a >= 0.99


class RecordingLimiter(AdmissionLimiter):
    """Limiter that keeps the clock reading of every grant it records."""

    def __init__(self, *args, **kwargs):
        self.grant_times = []
        super().__init__(*args, **kwargs)

    def _try_grant_locked(self, now):
        granted = super()._try_grant_locked(now)
        if granted:
            self.grant_times.append(now)
        return granted


def max_grants_in_any_window(grant_times, window):
    """Largest number of grant times falling in some [t, t + window) interval."""
    times = sorted(grant_times)
    return max(
        sum(1 for other in times if start <= other < start + window)
        for start in times
    )


def test_concurrent_access_never_exceeds_limit():
    """Test that 30 threads against 4 per 0.3s never see more than 4 grants in any window."""
    limiter = RecordingLimiter(0.3, 4, bucket_count=3, name="concurrent")

    start = time.monotonic()
    threads = [threading.Thread(target=limiter.acquire) for _ in range(30)]
    try:
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)
    finally:
        elapsed = time.monotonic() - start
        limiter.close()

    assert len(limiter.grant_times) == 30
    assert get_metrics_collector().get_counter("admission_grants_total", {"limiter": "concurrent"}) == 30
    assert max_grants_in_any_window(limiter.grant_times, 0.3) <= 4
    # 8 rounds of at most 4 grants need at least 7 window rotations
    assert elapsed >= 7 * 0.3 - 0.01


def test_window_check_detects_stale_eviction(clock):
    """Test that evicting buckets before a full window has passed would be caught."""

    class EarlyEvictingLimiter(RecordingLimiter):
        def _bucket_expiry(self, index):
            return (index + 1) * self._bucket_width

    limiter = EarlyEvictingLimiter(1.0, 2, clock=clock, start_sweeper=False)
    for _ in range(6):
        limiter.try_acquire()
        clock.advance(0.2)

    assert max_grants_in_any_window(limiter.grant_times, 1.0) > 2


def test_background_sweep_reclaims_capacity():
    """Test that the sweep thread reclaims capacity without callers."""
    limiter = AdmissionLimiter(0.3, 1, name="sweep-test")

    try:
        assert limiter.get_status()["sweeper_running"] is True
        limiter.acquire()

        time.sleep(0.8)

        gauge = get_metrics_collector().get_gauge("admission_available_slots", {"limiter": "sweep-test"})
        assert gauge == 1
        assert limiter.try_acquire() is True
    finally:
        limiter.close()


def test_acquire_async_waits_for_window():
    """Test that the coroutine variant waits for the window."""
    limiter = AdmissionLimiter(0.5, 2)

    async def run():
        start = time.monotonic()
        await asyncio.gather(*(limiter.acquire_async() for _ in range(3)))
        return time.monotonic() - start

    try:
        elapsed = asyncio.run(run())
    finally:
        limiter.close()

    assert elapsed >= 0.49
    assert limiter.get_status()["granted_total"] == 3


def test_cancelled_async_wait_holds_no_reservation():
    """Test that cancelling an async wait consumes no grant."""
    limiter = AdmissionLimiter(5.0, 1, name="cancel")

    async def run():
        assert limiter.try_acquire()
        task = asyncio.ensure_future(limiter.acquire_async())
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    try:
        asyncio.run(run())
        assert limiter.granted_in_window() == 1
        assert limiter.get_status()["granted_total"] == 1
    finally:
        limiter.close()

    assert get_metrics_collector().get_counter("admission_wait_abandoned_total", {"limiter": "cancel"}) == 1


def test_close_is_idempotent():
    """Test that close() stops the sweeper and can be repeated."""
    with AdmissionLimiter(1.0, 1) as limiter:
        assert limiter.closed is False

    assert limiter.closed is True
    limiter.close()
    assert limiter.get_status()["sweeper_running"] is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
