import pytest

from registry_gateway.ratelimit.metrics import get_metrics_collector


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def reset_metrics():
    """Start every test with empty metrics."""
    get_metrics_collector().reset_metrics()
    yield
