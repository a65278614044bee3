"""
Quota Configuration Module

Immutable description of how many admissions the limiter may grant per
window, plus the time unit helpers used to express the window.
"""

import math
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Union

DEFAULT_BUCKET_COUNT = 10


class InvalidConfiguration(ValueError):
    """Raised when a limiter is configured with a non-positive limit or window."""
    pass


class TimeUnit(Enum):
    """Length of one window, in seconds."""

    MILLISECONDS = 0.001
    SECONDS = 1.0
    MINUTES = 60.0
    HOURS = 3600.0
    DAYS = 86400.0

    def to_seconds(self, amount: float = 1) -> float:
        return self.value * amount


WindowSpec = Union[int, float, timedelta, TimeUnit]


def window_to_seconds(window: WindowSpec) -> float:
    """
    Normalize a window specification to seconds.

    Args:
        window: Number of seconds, a timedelta, or a TimeUnit (one unit long)

    Returns:
        Window length in seconds

    Raises:
        InvalidConfiguration: If the value cannot be interpreted as a duration
    """
    if isinstance(window, TimeUnit):
        return window.to_seconds()
    if isinstance(window, timedelta):
        return window.total_seconds()
    if isinstance(window, bool) or not isinstance(window, (int, float)):
        raise InvalidConfiguration(f"Unsupported window duration: {window!r}")
    return float(window)


@dataclass(frozen=True)
class QuotaConfig:
    """At most ``limit`` grants in any trailing ``window_seconds`` interval."""

    window_seconds: float
    limit: int
    bucket_count: int = DEFAULT_BUCKET_COUNT

    def __post_init__(self):
        self.validate()

    @classmethod
    def build(
        cls,
        window: WindowSpec,
        limit: int,
        bucket_count: int = DEFAULT_BUCKET_COUNT,
    ) -> "QuotaConfig":
        """Create a validated config from any supported window specification."""
        return cls(
            window_seconds=window_to_seconds(window),
            limit=limit,
            bucket_count=bucket_count,
        )

    @classmethod
    def from_settings(cls, settings) -> "QuotaConfig":
        """Load the quota from a Settings instance."""
        return cls.build(
            settings.RATE_LIMIT_WINDOW_SEC,
            settings.RATE_LIMIT_REQUESTS,
            settings.RATE_LIMIT_BUCKETS,
        )

    @property
    def bucket_width(self) -> float:
        return self.window_seconds / self.bucket_count

    def validate(self) -> None:
        """Validate configuration values."""
        if isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit < 1:
            raise InvalidConfiguration(f"limit must be a positive integer, got {self.limit!r}")

        window = self.window_seconds
        if isinstance(window, bool) or not isinstance(window, (int, float)):
            raise InvalidConfiguration(f"window duration must be a number of seconds, got {window!r}")
        if not window > 0 or not math.isfinite(window):
            raise InvalidConfiguration(f"window duration must be positive and finite, got {window!r}")

        if isinstance(self.bucket_count, bool) or not isinstance(self.bucket_count, int) or self.bucket_count < 1:
            raise InvalidConfiguration(f"bucket_count must be a positive integer, got {self.bucket_count!r}")
