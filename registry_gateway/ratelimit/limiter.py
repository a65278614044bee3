"""
Admission Limiter

Bounds outgoing requests to at most ``limit`` per trailing window. Grants are
accounted in a bucketed usage ledger guarded by a condition variable; callers
over quota block until the oldest bucket ages out of the window instead of
being rejected. A background ticker sweeps stale buckets once per window so
capacity is reclaimed even when nobody is calling.
"""

import asyncio
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from .config import DEFAULT_BUCKET_COUNT, QuotaConfig, WindowSpec
from .metrics import (
    record_grant,
    record_throttled,
    record_wait_abandoned,
    update_available_slots,
)

logger = logging.getLogger(__name__)


class AdmissionLimiter:
    """
    Blocking sliding-window admission control.

    The ledger maps a bucket index (monotonic time divided by the bucket
    width) to the number of grants admitted in that bucket. A bucket stays
    in the ledger until its end is a full window in the past, so the sum of
    the ledger is never lower than the number of grants in any trailing
    window.
    """

    def __init__(
        self,
        window_duration: WindowSpec,
        limit: int,
        *,
        bucket_count: int = DEFAULT_BUCKET_COUNT,
        name: str = "registry",
        clock: Callable[[], float] = time.monotonic,
        start_sweeper: bool = True,
    ):
        """
        Initialize the limiter and start its sweep ticker.

        Args:
            window_duration: Window length in seconds, a timedelta or a TimeUnit
            limit: Maximum grants per window (>= 1)
            bucket_count: Number of ledger buckets per window
            name: Label used in logs and metrics
            clock: Monotonic time source in seconds
            start_sweeper: Start the background sweep thread

        Raises:
            InvalidConfiguration: If limit or window are not positive
        """
        self.config = QuotaConfig.build(window_duration, limit, bucket_count)
        self.name = name
        self._clock = clock
        self._bucket_width = self.config.bucket_width

        self._ledger: Dict[int, int] = {}
        self._granted_total = 0
        self._condition = threading.Condition(threading.Lock())

        self._stopped = threading.Event()
        self._sweeper: Optional[threading.Thread] = None
        if start_sweeper:
            self._sweeper = threading.Thread(
                target=self._run_sweeper,
                name=f"admission-sweeper-{name}",
                daemon=True,
            )
            self._sweeper.start()

        logger.info(
            f"Admission limiter '{name}' configured: {self.config.limit} requests "
            f"per {self.config.window_seconds}s ({self.config.bucket_count} buckets)"
        )

    @property
    def limit(self) -> int:
        return self.config.limit

    @property
    def window_seconds(self) -> float:
        return self.config.window_seconds

    # Ledger bookkeeping, all called with the condition held

    def _bucket_index(self, now: float) -> int:
        return int(now // self._bucket_width)

    def _bucket_expiry(self, index: int) -> float:
        # The bucket's latest possible grant leaves the window at this instant
        return (index + 1) * self._bucket_width + self.config.window_seconds

    def _evict_locked(self, now: float) -> int:
        stale = [index for index in self._ledger if self._bucket_expiry(index) <= now]
        evicted = 0
        for index in stale:
            evicted += self._ledger.pop(index)
        return evicted

    def _outstanding_locked(self) -> int:
        return sum(self._ledger.values())

    def _try_grant_locked(self, now: float) -> bool:
        self._evict_locked(now)
        if self._outstanding_locked() >= self.config.limit:
            return False

        index = self._bucket_index(now)
        self._ledger[index] = self._ledger.get(index, 0) + 1
        self._granted_total += 1
        return True

    def _wait_time_locked(self, now: float) -> float:
        if not self._ledger:
            return 0.0
        oldest = min(self._ledger)
        return max(0.0, self._bucket_expiry(oldest) - now)

    # Admission

    def try_acquire(self) -> bool:
        """
        Make a single non-blocking admission attempt.

        Returns:
            True if a grant was recorded, False if the window is saturated
        """
        with self._condition:
            granted = self._try_grant_locked(self._clock())

        if granted:
            record_grant(self.name)
        return granted

    def acquire(self, timeout: Optional[float] = None) -> bool:
        """
        Block until a slot is free in the trailing window, then record the grant.

        Args:
            timeout: Maximum seconds to wait. None waits for as long as it takes.

        Returns:
            True once admitted. False only if ``timeout`` elapsed first, in
            which case nothing was recorded.
        """
        deadline = None if timeout is None else self._clock() + timeout
        throttled = False
        granted = False

        with self._condition:
            while True:
                now = self._clock()
                granted = self._try_grant_locked(now)
                if granted:
                    break

                wait_for = self._wait_time_locked(now)
                if deadline is not None:
                    remaining = deadline - now
                    if remaining <= 0:
                        break
                    wait_for = min(wait_for, remaining)

                if not throttled:
                    throttled = True
                    logger.info(
                        f"Request limit reached on '{self.name}' ({self.config.limit} per "
                        f"{self.config.window_seconds}s), waiting {wait_for:.3f}s for capacity"
                    )
                    record_throttled(self.name)

                self._condition.wait(wait_for)

        if not granted:
            logger.info(f"Admission wait on '{self.name}' abandoned after {timeout}s")
            record_wait_abandoned(self.name)
            return False

        record_grant(self.name)
        logger.debug(f"Admission granted on '{self.name}'")
        return True

    async def acquire_async(self) -> None:
        """
        Cooperative variant of acquire() for asyncio callers.

        The event loop is never blocked on the window. Cancelling the
        awaiting task leaves the ledger untouched.
        """
        throttled = False

        while True:
            with self._condition:
                now = self._clock()
                if self._try_grant_locked(now):
                    break
                wait_for = self._wait_time_locked(now)

            if not throttled:
                throttled = True
                logger.info(f"Request limit reached on '{self.name}', awaiting capacity")
                record_throttled(self.name)

            try:
                await asyncio.sleep(wait_for)
            except asyncio.CancelledError:
                record_wait_abandoned(self.name)
                raise

        record_grant(self.name)

    # Sweep

    def sweep(self) -> int:
        """
        Evict buckets that left the trailing window and wake waiting callers.

        Returns:
            Number of grants released by this sweep
        """
        with self._condition:
            evicted = self._evict_locked(self._clock())
            available = self.config.limit - self._outstanding_locked()
            self._condition.notify_all()

        update_available_slots(self.name, available)
        if evicted:
            logger.debug(f"Sweep on '{self.name}' released {evicted} grants, {available} slots free")
        return evicted

    def _run_sweeper(self) -> None:
        while not self._stopped.wait(self.config.window_seconds):
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Sweep on '{self.name}' failed: {e}")

    def close(self) -> None:
        """Stop the sweep ticker. Safe to call more than once."""
        if self._stopped.is_set():
            return

        self._stopped.set()
        sweeper = self._sweeper
        if sweeper is not None and sweeper is not threading.current_thread():
            sweeper.join(timeout=1.0)
        logger.info(f"Admission limiter '{self.name}' stopped")

    @property
    def closed(self) -> bool:
        return self._stopped.is_set()

    def __enter__(self) -> "AdmissionLimiter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # Introspection

    def granted_in_window(self) -> int:
        """Grants still counted against the current window."""
        with self._condition:
            self._evict_locked(self._clock())
            return self._outstanding_locked()

    def available(self) -> int:
        """Slots that can be granted right now without waiting."""
        return self.config.limit - self.granted_in_window()

    def time_until_available(self) -> float:
        """Seconds until the next slot frees up, 0.0 if one is free now."""
        with self._condition:
            now = self._clock()
            self._evict_locked(now)
            if self._outstanding_locked() < self.config.limit:
                return 0.0
            return self._wait_time_locked(now)

    def get_status(self) -> Dict[str, Any]:
        """
        Get current limiter status.

        Returns:
            Dict with keys: limit, window_seconds, bucket_count, granted_in_window,
            available, retry_after, granted_total, ledger_buckets, sweeper_running
        """
        with self._condition:
            now = self._clock()
            self._evict_locked(now)
            outstanding = self._outstanding_locked()
            retry_after = 0.0 if outstanding < self.config.limit else self._wait_time_locked(now)

            return {
                "limit": self.config.limit,
                "window_seconds": self.config.window_seconds,
                "bucket_count": self.config.bucket_count,
                "granted_in_window": outstanding,
                "available": self.config.limit - outstanding,
                "retry_after": retry_after,
                "granted_total": self._granted_total,
                "ledger_buckets": len(self._ledger),
                "sweeper_running": self._sweeper is not None and not self._stopped.is_set(),
            }


def configure(window_duration: WindowSpec, limit: int, **kwargs) -> AdmissionLimiter:
    """
    Construct an admission limiter.

    The limiter starts a background sweep thread. Call close() when done,
    or use the limiter as a context manager.

    Args:
        window_duration: Window length in seconds, a timedelta or a TimeUnit
        limit: Maximum grants per window
        **kwargs: Passed through to AdmissionLimiter

    Raises:
        InvalidConfiguration: If limit < 1 or window <= 0
    """
    return AdmissionLimiter(window_duration, limit, **kwargs)
